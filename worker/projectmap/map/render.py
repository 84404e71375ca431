"""Toolkit-neutral render descriptors for markers, popups and map chrome."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from projectmap.etl.transform import format_currency, status_color, status_label
from projectmap.models import PROJECT_STATUSES, Cluster, Coordinates, LocatedEntity

MARKER_SHAPE = "pin"
CLUSTER_SHAPE = "badged-pin"
BADGE_BACKGROUND = "#000"
BADGE_TEXT_COLOR = "#fff"
POPUP_OFFSET = 25


@dataclass(frozen=True)
class RenderDescriptor:
    marker_id: str
    coordinates: Coordinates
    shape: str
    color: str
    badge_text: Optional[str] = None
    badge_border_color: Optional[str] = None


@dataclass(frozen=True)
class PopupEntry:
    name: str
    client_name: str
    amount: str
    status_label: str
    status_color: str
    margin: Optional[str] = None


@dataclass(frozen=True)
class PopupContent:
    marker_id: str
    coordinates: Coordinates
    title: Optional[str]
    entries: List[PopupEntry] = field(default_factory=list)
    footer: Optional[str] = None

    def as_text(self) -> str:
        lines = [self.title] if self.title else []
        for entry in self.entries:
            parts = [entry.amount]
            if entry.margin:
                parts.append(entry.margin)
            parts.append(entry.status_label)
            lines.append(f"{entry.name} ({entry.client_name}) - " + " · ".join(parts))
        if self.footer:
            lines.append(self.footer)
        return "\n".join(lines)


def describe_cluster(cluster: Cluster) -> RenderDescriptor:
    if not cluster.is_aggregate:
        return RenderDescriptor(
            marker_id=cluster.coordinate_key,
            coordinates=cluster.coordinates,
            shape=MARKER_SHAPE,
            color=status_color(cluster.primary.status),
        )
    color = status_color(cluster.dominant_status)
    return RenderDescriptor(
        marker_id=cluster.coordinate_key,
        coordinates=cluster.coordinates,
        shape=CLUSTER_SHAPE,
        color=color,
        badge_text=str(len(cluster.members)),
        badge_border_color=color,
    )


def _entry(entity: LocatedEntity, with_margin: bool) -> PopupEntry:
    margin = None
    if with_margin:
        margin = f"{entity.profit_margin if entity.profit_margin is not None else 20:g}% margin"
    return PopupEntry(
        name=entity.name,
        client_name=entity.client_name,
        amount=format_currency(entity.total_amount),
        status_label=status_label(entity.status),
        status_color=status_color(entity.status),
        margin=margin,
    )


def describe_popup(cluster: Cluster) -> PopupContent:
    """Hover summary; cluster members are listed in member order."""
    if not cluster.is_aggregate:
        return PopupContent(
            marker_id=cluster.coordinate_key,
            coordinates=cluster.coordinates,
            title=None,
            entries=[_entry(cluster.primary, with_margin=True)],
        )
    count = len(cluster.members)
    return PopupContent(
        marker_id=cluster.coordinate_key,
        coordinates=cluster.coordinates,
        title=f"{count} Projects at this location",
        entries=[_entry(member, with_margin=False) for member in cluster.members],
    )


def more_at_location(remainder: int) -> Optional[str]:
    if remainder <= 0:
        return None
    return f"+{remainder} more project{'s' if remainder > 1 else ''} at this location"


def legend() -> List[Dict[str, str]]:
    return [{"status": s, "label": status_label(s), "color": status_color(s)} for s in PROJECT_STATUSES]


def project_count_label(count: int) -> str:
    return f"{count} {'Project' if count == 1 else 'Projects'}"


def marker_feature(descriptor: RenderDescriptor, members: Sequence[LocatedEntity]) -> Dict[str, Any]:
    """GeoJSON point feature for one marker, used by the CLI export."""
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": list(descriptor.coordinates)},
        "properties": {
            "marker_id": descriptor.marker_id,
            "shape": descriptor.shape,
            "color": descriptor.color,
            "badge": descriptor.badge_text,
            "projects": [{"id": m.id, "name": m.name, "status": m.status} for m in members],
        },
    }
