"""Building footprint enrichment for an activated map coordinate."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from projectmap.core.config import Settings, get_settings
from projectmap.models import Coordinates, FootprintResult
from projectmap.vendors import overpass

logger = logging.getLogger(__name__)

# Rough feet-per-degree scalar at mid latitudes; planar, not geodesic.
FEET_PER_DEGREE = 364000
# Half-width of the stand-in lot, about 50 ft at mid latitudes.
LOT_HALF_WIDTH_DEG = 0.00015
NOMINAL_LOT_AREA_SQFT = 2500.0

FOOTPRINT_STYLE = {"color": "#336699", "fill_opacity": 0.3, "line_width": 2, "dasharray": None}
APPROXIMATE_LOT_STYLE = {"color": "#F9D71C", "fill_opacity": 0.1, "line_width": 2, "dasharray": [2, 2]}

BuildingFetcher = Callable[[float, float], List[Dict[str, Any]]]


def close_ring(vertices: Sequence[Coordinates]) -> List[Coordinates]:
    ring = [tuple(vertex) for vertex in vertices]
    if ring and ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring


def polygon_area_sqft(ring: Sequence[Coordinates]) -> float:
    """Shoelace area of a closed ring after scaling degrees to feet."""
    area = 0.0
    for i in range(len(ring) - 1):
        x1, y1 = ring[i]
        x2, y2 = ring[i + 1]
        area += (x1 * FEET_PER_DEGREE) * (y2 * FEET_PER_DEGREE) - (x2 * FEET_PER_DEGREE) * (y1 * FEET_PER_DEGREE)
    return abs(area / 2)


def polygon_centroid(ring: Sequence[Coordinates]) -> Coordinates:
    """Vertex mean of a closed ring, ignoring the closing vertex."""
    points = ring[:-1]
    if not points:
        raise ValueError("centroid requires at least one vertex")
    return (
        sum(x for x, _ in points) / len(points),
        sum(y for _, y in points) / len(points),
    )


def approximate_lot(lat: float, lng: float) -> List[Coordinates]:
    d = LOT_HALF_WIDTH_DEG
    return [
        (lng - d, lat - d),
        (lng + d, lat - d),
        (lng + d, lat + d),
        (lng - d, lat + d),
        (lng - d, lat - d),
    ]


def _element_vertices(element: Dict[str, Any]) -> List[Coordinates]:
    nodes = element.get("geometry")
    if not nodes and element.get("type") == "relation":
        # Relations carry their rings on members; use the first outer way.
        for member in element.get("members") or []:
            if member.get("role", "outer") == "outer" and member.get("geometry"):
                nodes = member["geometry"]
                break
    vertices: List[Coordinates] = []
    for node in nodes or []:
        lon, lat = node.get("lon"), node.get("lat")
        if lon is None or lat is None:
            continue
        vertices.append((float(lon), float(lat)))
    return vertices


class FootprintResolver:
    """Look up the building at a coordinate, falling back to a nominal lot."""

    def __init__(self, fetcher: Optional[BuildingFetcher] = None, settings: Optional[Settings] = None) -> None:
        self._settings = settings
        self._fetcher = fetcher or self._overpass_fetch

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _overpass_fetch(self, lat: float, lng: float) -> List[Dict[str, Any]]:
        return overpass.buildings_near(
            lat,
            lng,
            radius_m=self.settings.footprint_search_radius_m,
            base_url=self.settings.overpass_url,
        )

    async def fetch_elements(self, lat: float, lng: float) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._fetcher, lat, lng)

    async def resolve(self, lat: float, lng: float) -> FootprintResult:
        coordinates = (lng, lat)
        logger.info("Fetching building data for %s, %s", lat, lng)
        try:
            elements = await self.fetch_elements(lat, lng)
            return self._from_elements(elements, lat, lng)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error fetching building footprint for %s, %s: %s", lat, lng, exc)
            return FootprintResult(coordinates=coordinates, polygon=None, area_estimate=0.0, is_approximate=None)

    def _from_elements(self, elements: List[Dict[str, Any]], lat: float, lng: float) -> FootprintResult:
        coordinates = (lng, lat)
        vertices = _element_vertices(elements[0]) if elements else []
        if len(vertices) < 3:
            if elements:
                logger.warning("First building element has no usable geometry; using approximate lot")
            else:
                logger.info("No buildings found near %s, %s", lat, lng)
            return FootprintResult(
                coordinates=coordinates,
                polygon=approximate_lot(lat, lng),
                area_estimate=NOMINAL_LOT_AREA_SQFT,
                is_approximate=True,
                tags={"type": "approximate_lot", "note": "Estimated property boundary"},
            )

        building = elements[0]
        ring = close_ring(vertices)
        tags = dict(building.get("tags") or {})
        tags["id"] = building.get("id")
        return FootprintResult(
            coordinates=coordinates,
            polygon=ring,
            area_estimate=polygon_area_sqft(ring),
            is_approximate=False,
            centroid=polygon_centroid(ring),
            tags=tags,
        )


class FootprintLayer:
    """The single footprint overlay on the map; remove before install."""

    def __init__(self) -> None:
        self.result: Optional[FootprintResult] = None
        self.installs = 0
        self.removals = 0

    @property
    def is_installed(self) -> bool:
        return self.result is not None

    def remove(self) -> None:
        if self.result is not None:
            self.result = None
            self.removals += 1

    def install(self, result: FootprintResult) -> None:
        self.remove()
        if result.polygon is None:
            return
        self.result = result
        self.installs += 1

    @property
    def style(self) -> Optional[Dict[str, Any]]:
        if self.result is None:
            return None
        return APPROXIMATE_LOT_STYLE if self.result.is_approximate else FOOTPRINT_STYLE

    def to_geojson(self) -> Optional[Dict[str, Any]]:
        if self.result is None:
            return None
        return {
            "type": "Feature",
            "properties": dict(self.result.tags),
            "geometry": {"type": "Polygon", "coordinates": [[list(v) for v in self.result.polygon]]},
        }
