"""Client utilities for the Photon geocoding API (OpenStreetMap based)."""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://photon.komoot.io/api/"


class PhotonError(RuntimeError):
    """Raised when Photon returns a response we cannot use."""


def search(address: str, base_url: Optional[str] = None, limit: int = 1, timeout: float = 10) -> Dict[str, Any]:
    """Run a free-text search and return the GeoJSON FeatureCollection."""
    params = {"q": address, "limit": limit}
    response = _SESSION.get(base_url or _BASE_URL, params=params, timeout=timeout)
    response.raise_for_status()
    try:
        payload = response.json()
    except ValueError as exc:
        raise PhotonError(f"Photon returned invalid JSON for {address!r}") from exc
    if not isinstance(payload, dict):
        raise PhotonError(f"Photon returned an unexpected payload for {address!r}")
    return payload


def first_coordinates(payload: Dict[str, Any]) -> Optional[tuple]:
    """Return (lng, lat) of the first feature, or None when there is none."""
    features = payload.get("features") or []
    if not features:
        return None
    geometry = (features[0] or {}).get("geometry") or {}
    coords = geometry.get("coordinates")
    if not isinstance(coords, (list, tuple)) or len(coords) < 2:
        raise PhotonError("First Photon feature has no usable coordinates")
    try:
        return (float(coords[0]), float(coords[1]))
    except (TypeError, ValueError) as exc:
        raise PhotonError("First Photon feature has non-numeric coordinates") from exc
