"""Initial viewport selection for the rendered markers."""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from projectmap.models import Coordinates

# Centre of the contiguous US, shown until the first fit.
DEFAULT_CENTER: Coordinates = (-98.5795, 39.8283)
DEFAULT_ZOOM = 4

WIDE_LAT_SPREAD = 10
WIDE_LNG_SPREAD = 15
WIDE_PADDING = 100
WIDE_MAX_ZOOM = 6
TIGHT_PADDING = 50


@dataclass(frozen=True)
class ViewportFit:
    bounds: Tuple[float, float, float, float]  # min_lng, min_lat, max_lng, max_lat
    padding: int
    max_zoom: Optional[int]
    lat_spread: float
    lng_spread: float

    @property
    def is_wide(self) -> bool:
        return self.max_zoom is not None


def fit_viewport(coordinates: Sequence[Coordinates]) -> Optional[ViewportFit]:
    """Bounding box plus zoom policy; None when there is nothing to fit."""
    if not coordinates:
        return None

    lngs = [lng for lng, _ in coordinates]
    lats = [lat for _, lat in coordinates]
    bounds = (min(lngs), min(lats), max(lngs), max(lats))
    lat_spread = bounds[3] - bounds[1]
    lng_spread = bounds[2] - bounds[0]

    if lat_spread > WIDE_LAT_SPREAD or lng_spread > WIDE_LNG_SPREAD:
        return ViewportFit(bounds, WIDE_PADDING, WIDE_MAX_ZOOM, lat_spread, lng_spread)
    return ViewportFit(bounds, TIGHT_PADDING, None, lat_spread, lng_spread)
