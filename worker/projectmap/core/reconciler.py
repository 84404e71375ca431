"""Apply the project change feed to the locally held project collection."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from projectmap.core import db
from projectmap.etl.transform import DEFAULT_PROFIT_MARGIN, extract_coordinates, to_located_entity
from projectmap.models import ChangeEvent, LocatedEntity, Notification

logger = logging.getLogger(__name__)

NOTIFICATION_TTL_SECONDS = 3.0

RecordFetcher = Callable[[str], Optional[Dict[str, Any]]]


class RealtimeReconciler:
    """Owns the raw (pre-geocoding) project list and keeps it in step with the feed.

    Only the initial load and :meth:`apply` mutate ``entities``. After every
    applied change ``on_change`` is called so derived views can be rebuilt.
    """

    def __init__(
        self,
        fetch_record: Optional[RecordFetcher] = None,
        on_change: Optional[Callable[[], Any]] = None,
        notification_ttl: float = NOTIFICATION_TTL_SECONDS,
        profit_margin: float = DEFAULT_PROFIT_MARGIN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.entities: List[LocatedEntity] = []
        self._fetch_record = fetch_record or db.fetch_project
        self.on_change = on_change
        self._ttl = notification_ttl
        self._profit_margin = profit_margin
        self._clock = clock
        self._notification: Optional[Notification] = None

    def load(self, entities: List[LocatedEntity]) -> None:
        self.entities = list(entities)

    def find(self, project_id: str) -> Optional[LocatedEntity]:
        for entity in self.entities:
            if entity.id == project_id:
                return entity
        return None

    @property
    def notification(self) -> Optional[Notification]:
        if self._notification is not None and self._clock() >= self._notification.expires_at:
            self._notification = None
        return self._notification

    def _notify(self, kind: str, project_name: str) -> None:
        # Replaces whatever is showing; notifications never queue.
        self._notification = Notification(kind=kind, project_name=project_name, expires_at=self._clock() + self._ttl)

    async def apply(self, event: ChangeEvent) -> bool:
        """Apply one event. Returns True when the collection changed."""
        if event.event_type == "INSERT":
            changed = await self._apply_insert(event.new or {})
        elif event.event_type == "UPDATE":
            changed = self._apply_update(event.new or {})
        elif event.event_type == "DELETE":
            changed = self._apply_delete(event.old or {})
        else:
            logger.warning("Unsupported change type %s", event.event_type)
            changed = False

        if changed and self.on_change is not None:
            result = self.on_change()
            if asyncio.iscoroutine(result):
                await result
        return changed

    async def _apply_insert(self, partial: Dict[str, Any]) -> bool:
        project_id = partial.get("id")
        if project_id is None:
            logger.warning("INSERT change without an id; skipping")
            return False

        # The feed only carries the bare row; fetch it with the client join.
        row = await asyncio.to_thread(self._fetch_record, str(project_id))
        if not row:
            logger.info("Inserted project %s no longer exists; skipping", project_id)
            return False
        if not row.get("address"):
            logger.debug("Inserted project %s has no address; not mapped", project_id)
            return False

        entity = to_located_entity(row, profit_margin=self._profit_margin)
        if self.find(entity.id) is not None:
            # Same id delivered twice; the later copy wins in place.
            self.entities = [entity if e.id == entity.id else e for e in self.entities]
        else:
            self.entities.append(entity)
        self._notify("added", entity.name)
        logger.info("Project %s added (%s)", entity.name, entity.id)
        return True

    def _apply_update(self, partial: Dict[str, Any]) -> bool:
        project_id = str(partial.get("id"))
        entity = self.find(project_id)
        if entity is None:
            logger.debug("UPDATE for unknown project %s; ignoring", project_id)
            return False

        entity.name = partial.get("name") or entity.name
        entity.status = partial.get("status") or entity.status
        if partial.get("budget") is not None:
            entity.total_amount = float(partial["budget"])
        entity.address = partial.get("address") or entity.address
        coordinates = extract_coordinates(partial)
        if coordinates is not None:
            entity.coordinates = coordinates

        self._notify("updated", entity.name)
        logger.info("Project %s updated (%s)", entity.name, entity.id)
        return True

    def _apply_delete(self, partial: Dict[str, Any]) -> bool:
        project_id = str(partial.get("id"))
        entity = self.find(project_id)
        if entity is None:
            logger.debug("DELETE for unknown project %s; ignoring", project_id)
            return False

        self.entities = [e for e in self.entities if e.id != project_id]
        self._notify("deleted", entity.name)
        logger.info("Project %s deleted (%s)", entity.name, entity.id)
        return True
