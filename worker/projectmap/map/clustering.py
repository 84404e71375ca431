"""Group located projects by exact coordinate identity."""

import logging
from typing import Dict, Iterable, List, Sequence

from projectmap.models import Cluster, Coordinates, LocatedEntity

logger = logging.getLogger(__name__)


def coordinate_key(coordinates: Coordinates) -> str:
    """Canonical ``"<lng>,<lat>"`` key. Exact float identity, no tolerance."""
    lng, lat = coordinates
    return f"{_fmt(lng)},{_fmt(lat)}"


def _fmt(value: float) -> str:
    # -105.0 and -105 must produce the same key
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def group_by_coordinates(entities: Iterable[LocatedEntity]) -> Dict[str, List[LocatedEntity]]:
    groups: Dict[str, List[LocatedEntity]] = {}
    for entity in entities:
        if entity.coordinates is None:
            continue
        groups.setdefault(coordinate_key(entity.coordinates), []).append(entity)
    return groups


def dominant_status(members: Sequence[LocatedEntity]) -> str:
    """Most frequent status; ties go to the status counted first."""
    counts: Dict[str, int] = {}
    for member in members:
        counts[member.status] = counts.get(member.status, 0) + 1
    best = None
    for status, count in counts.items():
        if best is None or count > counts[best]:
            best = status
    if best is None:
        raise ValueError("dominant_status requires at least one member")
    return best


def build_clusters(entities: Iterable[LocatedEntity]) -> List[Cluster]:
    """Recompute every cluster from scratch."""
    clusters: List[Cluster] = []
    for key, members in group_by_coordinates(entities).items():
        if len(members) > 1:
            logger.warning(
                "Found %d projects at coordinates %s: %s",
                len(members),
                key,
                [member.name for member in members],
            )
        clusters.append(
            Cluster(
                coordinate_key=key,
                coordinates=members[0].coordinates,
                members=members,
                dominant_status=dominant_status(members),
            )
        )
    return clusters
