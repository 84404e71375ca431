"""Client utilities for the Overpass API building lookups."""

import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://overpass-api.de/api/interpreter"
QUERY_TIMEOUT_SECONDS = 15


class OverpassError(RuntimeError):
    """Raised when the Overpass API returns a response we cannot use."""


def build_building_query(lat: float, lng: float, radius_m: int = 100) -> str:
    return (
        f"[out:json][timeout:{QUERY_TIMEOUT_SECONDS}];"
        "("
        f'way["building"](around:{radius_m},{lat},{lng});'
        f'relation["building"](around:{radius_m},{lat},{lng});'
        ");"
        "out geom;"
    )


def buildings_near(
    lat: float,
    lng: float,
    radius_m: int = 100,
    base_url: Optional[str] = None,
    timeout: float = QUERY_TIMEOUT_SECONDS + 5,
) -> List[Dict[str, Any]]:
    """Return building elements (with inline geometry) around a point."""
    query = build_building_query(lat, lng, radius_m)
    logger.debug("Overpass query: %s", query)
    response = _SESSION.post(base_url or _BASE_URL, data={"data": query}, timeout=timeout)
    response.raise_for_status()
    try:
        payload = response.json()
    except ValueError as exc:
        raise OverpassError("Overpass returned invalid JSON") from exc
    if not isinstance(payload, dict):
        raise OverpassError("Overpass returned an unexpected payload")
    elements = payload.get("elements") or []
    logger.info("Overpass returned %d building elements near %s,%s", len(elements), lat, lng)
    return elements
