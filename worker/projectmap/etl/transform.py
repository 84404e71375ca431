"""Utilities for transforming project rows and feed payloads into map entities."""

import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

from projectmap.models import ChangeEvent, Coordinates, LocatedEntity

logger = logging.getLogger(__name__)

DEFAULT_PROFIT_MARGIN = 20.0
UNKNOWN_CLIENT = "Unknown Client"

STATUS_COLORS = {
    "planned": "#a855f7",
    "active": "#10b981",
    "on-hold": "#f59e0b",
    "completed": "#3b82f6",
    "cancelled": "#ef4444",
}
DEFAULT_STATUS_COLOR = "#6b7280"

EVENT_TYPES = {"INSERT", "UPDATE", "DELETE"}


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.debug("Unable to parse start_date %r", value)
        return None


def extract_coordinates(row: Dict[str, Any]) -> Optional[Coordinates]:
    """Return (lng, lat) when the row carries both components."""
    lat = _safe_float(row.get("latitude"))
    lng = _safe_float(row.get("longitude"))
    if lat is None or lng is None:
        return None
    return (lng, lat)


def to_located_entity(row: Dict[str, Any], profit_margin: float = DEFAULT_PROFIT_MARGIN) -> LocatedEntity:
    client_name = row.get("client_name")
    return LocatedEntity(
        id=str(row.get("id")),
        name=row.get("name") or "",
        client_name=str(client_name) if client_name else UNKNOWN_CLIENT,
        status=row.get("status") or "planned",
        total_amount=_safe_float(row.get("budget")) or 0.0,
        start_date=_parse_date(row.get("start_date")),
        address=row.get("address") or "",
        coordinates=extract_coordinates(row),
        profit_margin=profit_margin,
    )


def parse_change_event(payload: Dict[str, Any]) -> Optional[ChangeEvent]:
    """Convert a decoded feed payload into a ChangeEvent, or None when unusable."""
    event_type = str(payload.get("type") or payload.get("eventType") or "").upper()
    if event_type not in EVENT_TYPES:
        logger.warning("Ignoring change with unknown event type: %s", event_type or payload)
        return None

    new = payload.get("new") if isinstance(payload.get("new"), dict) else None
    old = payload.get("old") if isinstance(payload.get("old"), dict) else None
    if event_type in {"INSERT", "UPDATE"} and not new:
        logger.warning("%s change without a new record; skipping", event_type)
        return None
    if event_type == "DELETE" and not old:
        logger.warning("DELETE change without an old record; skipping")
        return None
    return ChangeEvent(event_type=event_type, new=new, old=old)


def format_currency(amount: Optional[float]) -> str:
    """Format an amount as whole US dollars, e.g. ``$12,500``."""
    value = _safe_float(amount) or 0.0
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.0f}"


def status_color(status: str) -> str:
    return STATUS_COLORS.get(status, DEFAULT_STATUS_COLOR)


def status_label(status: str) -> str:
    if not status:
        return ""
    return (status[0].upper() + status[1:]).replace("-", " ", 1)
