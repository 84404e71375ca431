"""Hover, click and drag handling for rendered markers.

Each marker has an explicit state record in a table keyed by marker id
(the cluster's coordinate key). Transitions are pure functions over those
records; the controller applies them and owns the two exclusive
resources: the detail panel selection and the footprint layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional

from projectmap.core.footprint import FootprintLayer, FootprintResolver
from projectmap.map.render import PopupContent, describe_popup, more_at_location
from projectmap.models import Cluster, Coordinates, FootprintResult, LocatedEntity

logger = logging.getLogger(__name__)

IDLE = "idle"
HOVERED = "hovered"
ACTIVATED = "activated"

CLOSE_ZOOM = 18
FLY_DURATION_MS = 1500


class DeferredCapabilityError(NotImplementedError):
    """Raised for capabilities that are intentionally not available yet."""


@dataclass(frozen=True)
class MarkerState:
    marker_id: str
    phase: str = IDLE
    popup: Optional[PopupContent] = None
    draggable: bool = False
    dragged_to: Optional[Coordinates] = None


@dataclass(frozen=True)
class CameraMove:
    center: Coordinates
    zoom: int = CLOSE_ZOOM
    duration_ms: int = FLY_DURATION_MS


@dataclass(frozen=True)
class DetailPanel:
    entity: LocatedEntity
    remainder: int = 0

    @property
    def more_label(self) -> Optional[str]:
        return more_at_location(self.remainder)


def hover_enter(state: MarkerState, popup: PopupContent) -> MarkerState:
    # Replacing the popup field is what keeps popups from stacking.
    phase = HOVERED if state.phase == IDLE else state.phase
    return replace(state, phase=phase, popup=popup)


def hover_leave(state: MarkerState) -> MarkerState:
    phase = IDLE if state.phase == HOVERED else state.phase
    return replace(state, phase=phase, popup=None)


def activate(state: MarkerState) -> MarkerState:
    return replace(state, phase=ACTIVATED, popup=None, draggable=True)


def deactivate(state: MarkerState) -> MarkerState:
    return replace(state, phase=IDLE, popup=None, draggable=False)


def drag_end(state: MarkerState, coordinates: Coordinates) -> MarkerState:
    if not state.draggable:
        return state
    return replace(state, dragged_to=coordinates)


def persist_dragged_position(entity: LocatedEntity, coordinates: Coordinates) -> None:
    """Writing dragged coordinates back to the record store is not supported."""
    raise DeferredCapabilityError(
        f"Saving dragged coordinates for project {entity.id} is not supported; "
        "the new position only lives in the current view."
    )


def detail_path(entity: LocatedEntity) -> str:
    return f"/projects/{entity.id}"


class InteractionController:
    def __init__(self, resolver: FootprintResolver, layer: Optional[FootprintLayer] = None) -> None:
        self.resolver = resolver
        self.layer = layer or FootprintLayer()
        self.clusters: Dict[str, Cluster] = {}
        self.states: Dict[str, MarkerState] = {}
        self.panel: Optional[DetailPanel] = None
        self.footprint: Optional[FootprintResult] = None
        self.camera: Optional[CameraMove] = None
        self.active_marker: Optional[str] = None
        self.active_coordinates: Optional[Coordinates] = None

    # ---------- markers ----------

    def sync(self, clusters: Iterable[Cluster]) -> None:
        """Rebuild the marker table after the clusters were recomputed."""
        self.clusters = {cluster.coordinate_key: cluster for cluster in clusters}
        states: Dict[str, MarkerState] = {}
        for key in self.clusters:
            previous = self.states.get(key)
            if previous is not None and key == self.active_marker:
                states[key] = replace(previous, popup=None)
            else:
                states[key] = MarkerState(marker_id=key)
        self.states = states

    def state(self, marker_id: str) -> MarkerState:
        return self.states[marker_id]

    @property
    def visible_popups(self) -> List[PopupContent]:
        return [state.popup for state in self.states.values() if state.popup is not None]

    def hover_enter(self, marker_id: str) -> Optional[PopupContent]:
        cluster = self.clusters.get(marker_id)
        if cluster is None:
            return None
        popup = describe_popup(cluster)
        self.states[marker_id] = hover_enter(self.states[marker_id], popup)
        return popup

    def hover_leave(self, marker_id: str) -> None:
        if marker_id in self.states:
            self.states[marker_id] = hover_leave(self.states[marker_id])

    # ---------- activation ----------

    def select(self, marker_id: str) -> Cluster:
        """Synchronous part of a click: panel, camera and layer bookkeeping."""
        cluster = self.clusters[marker_id]
        if self.active_marker is not None and self.active_marker in self.states:
            self.states[self.active_marker] = deactivate(self.states[self.active_marker])
        self.states[marker_id] = activate(self.states[marker_id])
        self.layer.remove()

        self.active_marker = marker_id
        self.active_coordinates = cluster.coordinates
        self.panel = DetailPanel(entity=cluster.primary, remainder=len(cluster.members) - 1)
        self.camera = CameraMove(center=cluster.coordinates)
        self.footprint = FootprintResult(coordinates=cluster.coordinates, is_loading=True)
        return cluster

    async def click(self, marker_id: str) -> bool:
        """Activate a marker or cluster and load its footprint.

        Returns True when the resolved footprint was installed, False when it
        arrived after another activation and was discarded.
        """
        cluster = self.select(marker_id)
        lng, lat = cluster.coordinates
        result = await self.resolver.resolve(lat, lng)
        return self.receive_footprint(result)

    def receive_footprint(self, result: FootprintResult) -> bool:
        if self.panel is None or result.coordinates != self.active_coordinates:
            logger.debug("Discarding stale footprint for %s", result.coordinates)
            return False
        self.footprint = result
        self.layer.install(result)
        return True

    def drag_end(self, marker_id: str, lng: float, lat: float) -> Optional[Coordinates]:
        state = self.states.get(marker_id)
        if state is None or not state.draggable:
            return None
        self.states[marker_id] = drag_end(state, (lng, lat))
        # TODO: persist once the record store exposes a coordinate update; see persist_dragged_position.
        logger.info("Marker %s moved to %s, %s (view only, not saved)", marker_id, lng, lat)
        return (lng, lat)

    def close_panel(self) -> None:
        if self.active_marker is not None and self.active_marker in self.states:
            self.states[self.active_marker] = deactivate(self.states[self.active_marker])
        self.panel = None
        self.footprint = None
        self.active_marker = None
        self.active_coordinates = None
        self.layer.remove()

    def background_click(self) -> None:
        if self.panel is not None:
            self.close_panel()

    def apply_filter(self, visible_ids: Iterable[str]) -> None:
        """Keep the panel open unless its project left the visible set."""
        if self.panel is None:
            return
        if self.panel.entity.id not in set(visible_ids):
            logger.debug("Detailed project %s filtered out; closing panel", self.panel.entity.id)
            self.close_panel()
