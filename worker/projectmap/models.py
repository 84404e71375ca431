"""Core data models shared by the project map engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

Coordinates = Tuple[float, float]  # (lng, lat)

PROJECT_STATUSES = ("planned", "active", "on-hold", "completed", "cancelled")


@dataclass(slots=True)
class LocatedEntity:
    """A project record placed (or waiting to be placed) on the map."""

    id: str
    name: str
    client_name: str = "Unknown Client"
    status: str = "planned"
    total_amount: float = 0.0
    start_date: Optional[date] = None
    address: str = ""
    coordinates: Optional[Coordinates] = None
    profit_margin: Optional[float] = None

    @property
    def is_located(self) -> bool:
        return self.coordinates is not None

    @property
    def needs_geocoding(self) -> bool:
        return self.coordinates is None and bool(self.address and self.address.strip())


@dataclass(slots=True)
class Cluster:
    """Projects sharing one exact coordinate pair."""

    coordinate_key: str
    coordinates: Coordinates
    members: List[LocatedEntity]
    dominant_status: str

    @property
    def is_aggregate(self) -> bool:
        return len(self.members) > 1

    @property
    def primary(self) -> LocatedEntity:
        return self.members[0]


@dataclass(slots=True)
class FootprintResult:
    """Building footprint (or stand-in lot) for the activated coordinate."""

    coordinates: Optional[Coordinates] = None
    polygon: Optional[List[Coordinates]] = None
    area_estimate: float = 0.0
    is_approximate: Optional[bool] = None
    is_loading: bool = False
    centroid: Optional[Coordinates] = None
    tags: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def has_data(self) -> bool:
        return self.polygon is not None


@dataclass(slots=True)
class ChangeEvent:
    """One notification from the project change feed."""

    event_type: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None


@dataclass(slots=True)
class Notification:
    """Transient banner announcing a realtime change."""

    kind: str
    project_name: str
    expires_at: float

    @property
    def message(self) -> str:
        return f'Project "{self.project_name}" {self.kind}'
