"""Map session: owns the pipeline, the change feed and the view state for one organization."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from projectmap.core import db
from projectmap.core.config import Settings, get_settings
from projectmap.core.db import RecordStoreError
from projectmap.core.feed import FeedSubscription
from projectmap.core.footprint import FootprintResolver
from projectmap.core.geocoder import Geocoder
from projectmap.core.reconciler import RealtimeReconciler
from projectmap.etl.transform import to_located_entity
from projectmap.map.clustering import build_clusters
from projectmap.map.interaction import InteractionController
from projectmap.map.render import describe_cluster, legend, project_count_label
from projectmap.map.viewport import DEFAULT_CENTER, DEFAULT_ZOOM, ViewportFit, fit_viewport
from projectmap.models import Cluster, LocatedEntity

logger = logging.getLogger(__name__)

LOAD_ERROR_MESSAGE = "Failed to load projects"

_MAP_STYLES = {
    "project-popup": {"background": "#1E1E1E", "border": "1px solid #333", "border-radius": "8px", "z-index": "1000"},
    "custom-marker": {"filter": "drop-shadow(0 2px 4px rgba(0, 0, 0, 0.3))"},
    "cluster-marker": {"filter": "drop-shadow(0 2px 4px rgba(0, 0, 0, 0.3))"},
}
_MAP_CONTROLS = [{"control": "navigation", "position": "top-right", "margin_top": 16, "margin_right": 16}]


class MapResources:
    """Process-wide map styles and control container, shared by all sessions.

    Created by the first session that starts and torn down when the last
    one closes.
    """

    _instance: Optional["MapResources"] = None

    def __init__(self) -> None:
        self.styles: Dict[str, Dict[str, str]] = {}
        self.controls: List[Dict[str, Any]] = []
        self.refs = 0

    @classmethod
    def acquire(cls) -> "MapResources":
        if cls._instance is None:
            instance = cls()
            instance.styles = {name: dict(props) for name, props in _MAP_STYLES.items()}
            instance.controls = [dict(control) for control in _MAP_CONTROLS]
            cls._instance = instance
            logger.debug("Map resources initialised")
        cls._instance.refs += 1
        return cls._instance

    def release(self) -> None:
        self.refs -= 1
        if self.refs <= 0:
            self.styles.clear()
            self.controls.clear()
            if MapResources._instance is self:
                MapResources._instance = None
            logger.debug("Map resources torn down")


class MapSession:
    def __init__(
        self,
        organization_id: str,
        *,
        geocoder: Optional[Geocoder] = None,
        resolver: Optional[FootprintResolver] = None,
        reconciler: Optional[RealtimeReconciler] = None,
        settings: Optional[Settings] = None,
        subscription_factory=FeedSubscription,
    ) -> None:
        self.organization_id = organization_id
        self._settings = settings
        self.geocoder = geocoder or Geocoder(settings=settings)
        self.reconciler = reconciler or RealtimeReconciler(
            notification_ttl=self.settings.notification_ttl_seconds,
            profit_margin=self.settings.default_profit_margin,
        )
        self.reconciler.on_change = self.refresh
        self.controller = InteractionController(resolver or FootprintResolver(settings=settings))
        self._subscription_factory = subscription_factory
        self.subscription: Optional[FeedSubscription] = None
        self._consumer: Optional[asyncio.Task] = None
        self._resources: Optional[MapResources] = None

        self.error: Optional[str] = None
        self.selected_status = "all"
        self.filtered_ids: Optional[List[str]] = None
        self.located: List[LocatedEntity] = []
        self.visible: List[LocatedEntity] = []
        self.clusters: List[Cluster] = []
        self.viewport: Optional[ViewportFit] = None
        self._first_load = True

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def entities(self) -> List[LocatedEntity]:
        return self.reconciler.entities

    # ---------- lifecycle ----------

    async def start(self, subscribe: bool = True) -> None:
        if self._resources is None:
            self._resources = MapResources.acquire()
        await self.load()
        if subscribe and self.error is None:
            self.subscribe()

    async def load(self) -> None:
        """Initial fetch. A failure here replaces the whole map with an error."""
        try:
            rows = await asyncio.to_thread(db.fetch_projects, self.organization_id)
        except (RecordStoreError, RuntimeError) as exc:
            logger.error("Error fetching projects: %s", exc)
            self.error = LOAD_ERROR_MESSAGE
            return

        await asyncio.to_thread(db.log_missing_planned, self.organization_id, rows)
        margin = self.settings.default_profit_margin
        entities = [to_located_entity(row, profit_margin=margin) for row in rows if row.get("address")]
        missing = [e.name for e in entities if e.status == "planned" and e.coordinates is None]
        if missing:
            logger.warning("Planned projects missing coordinates: %s", missing)

        self.error = None
        self.reconciler.load(entities)
        await self.refresh()

    def subscribe(self) -> None:
        self.unsubscribe()
        subscription = self._subscription_factory(self.organization_id, settings=self.settings)
        subscription.open()
        self.subscription = subscription
        if subscription.is_open:
            self._consumer = asyncio.create_task(self._consume(subscription))

    async def _consume(self, subscription: FeedSubscription) -> None:
        async for event in subscription.events():
            try:
                await self.reconciler.apply(event)
            except RecordStoreError as exc:
                logger.error("Error fetching changed project: %s", exc)
                self.error = LOAD_ERROR_MESSAGE
            except Exception:  # noqa: BLE001
                logger.exception("Failed to apply %s change", event.event_type)

    def unsubscribe(self) -> None:
        if self.subscription is not None:
            self.subscription.close()
            self.subscription = None
        if self._consumer is not None:
            self._consumer.cancel()
            self._consumer = None

    async def change_scope(self, organization_id: str) -> None:
        """Switch organization: tear down the old feed before anything else."""
        self.unsubscribe()
        self.controller.close_panel()
        self.organization_id = organization_id
        await self.load()
        if self.error is None:
            self.subscribe()

    async def close(self) -> None:
        self.unsubscribe()
        self.controller.close_panel()
        if self._resources is not None:
            self._resources.release()
            self._resources = None

    async def __aenter__(self) -> "MapSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---------- pipeline ----------

    async def refresh(self) -> None:
        """Geocode the raw collection and rebuild every derived view."""
        self.located = await self.geocoder.geocode(self.reconciler.entities)
        self.rederive()

    def _matches_filter(self, entity: LocatedEntity) -> bool:
        if self.filtered_ids:
            return entity.id in set(self.filtered_ids)
        return self.selected_status == "all" or entity.status == self.selected_status

    def rederive(self) -> None:
        self.visible = [e for e in self.located if e.coordinates is not None and self._matches_filter(e)]
        logger.info("Filtered %s projects: %d", self.selected_status, len(self.visible))
        self.clusters = build_clusters(self.visible)
        self.controller.sync(self.clusters)
        self.controller.apply_filter(e.id for e in self.visible)

        if self.visible and self._first_load:
            self.viewport = fit_viewport([e.coordinates for e in self.visible])
            self._first_load = False

    def set_filter(self, status: str = "all", project_ids: Optional[Iterable[str]] = None) -> None:
        self.selected_status = status or "all"
        self.filtered_ids = list(project_ids) if project_ids else None
        if self.located:
            self.rederive()

    # ---------- view ----------

    def visible_count(self) -> int:
        return sum(1 for entity in self.reconciler.entities if self._matches_filter(entity))

    def render(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error, "markers": []}

        panel = self.controller.panel
        footprint = self.controller.footprint
        notification = self.reconciler.notification
        return {
            "error": None,
            "initial_view": {"center": DEFAULT_CENTER, "zoom": DEFAULT_ZOOM},
            "viewport": self.viewport,
            "camera": self.controller.camera,
            "markers": [describe_cluster(cluster) for cluster in self.clusters],
            "popups": self.controller.visible_popups,
            "count_label": project_count_label(self.visible_count()),
            "legend": legend(),
            "notification": notification.message if notification else None,
            "panel": panel,
            "footprint": footprint,
            "footprint_layer": self.controller.layer.to_geojson(),
            "footprint_style": self.controller.layer.style,
        }
