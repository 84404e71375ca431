"""Project change feed over PostgreSQL LISTEN/NOTIFY.

The trigger side publishes JSON payloads on the feed channel:

    {"type": "UPDATE", "organization_id": "...", "new": {...}, "old": {...}}

A subscription is scoped to one organization. It owns a dedicated
autocommit connection, registered as a reader on the event loop, and must
be closed when the scope changes or the session ends.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, List, Optional

import psycopg2
from psycopg2 import extensions

from projectmap.core.config import Settings, get_settings
from projectmap.etl.transform import parse_change_event
from projectmap.models import ChangeEvent

logger = logging.getLogger(__name__)

CONNECTED = "connected"
CONNECTING = "connecting"
DISCONNECTED = "disconnected"
ERROR = "error"

_CLOSED = object()


class FeedSubscription:
    def __init__(
        self,
        organization_id: str,
        settings: Optional[Settings] = None,
        connect: Optional[Callable[[str], Any]] = None,
    ) -> None:
        if not organization_id:
            raise ValueError("organization_id is required for a feed subscription")
        self.organization_id = str(organization_id)
        self._settings = settings or get_settings()
        self._connect = connect or psycopg2.connect
        self._conn = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.status = DISCONNECTED
        self.last_error: Optional[str] = None

    @property
    def channel(self) -> str:
        return self._settings.feed_channel

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Connect, LISTEN and register with the running loop."""
        if self._conn is not None:
            return
        self.status = CONNECTING
        try:
            conn = self._connect(self._settings.database_url)
            conn.set_isolation_level(extensions.ISOLATION_LEVEL_AUTOCOMMIT)
            with conn.cursor() as cur:
                cur.execute(f"LISTEN {self.channel};")
        except psycopg2.Error as exc:
            self.status = ERROR
            self.last_error = str(exc)
            logger.error("Failed to subscribe to %s for organization %s: %s", self.channel, self.organization_id, exc)
            return

        self._conn = conn
        self._loop = loop or asyncio.get_running_loop()
        self._loop.add_reader(conn.fileno(), self._on_readable)
        self.status = CONNECTED
        self.last_error = None
        logger.info("Subscribed to %s for organization %s", self.channel, self.organization_id)

    def _on_readable(self) -> None:
        for event in self.drain():
            self._queue.put_nowait(event)

    def drain(self) -> List[ChangeEvent]:
        """Poll the connection and decode pending notifications for this organization."""
        if self._conn is None:
            return []
        try:
            self._conn.poll()
        except psycopg2.Error as exc:
            self.status = ERROR
            self.last_error = str(exc)
            logger.error("Change feed connection failed: %s", exc)
            conn = self._conn
            self._detach()
            self._conn = None
            conn.close()
            self._queue.put_nowait(_CLOSED)
            return []

        events: List[ChangeEvent] = []
        while self._conn.notifies:
            notify = self._conn.notifies.pop(0)
            event = self._decode(notify.payload)
            if event is not None:
                events.append(event)
        return events

    def _decode(self, raw: str) -> Optional[ChangeEvent]:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Ignoring undecodable change payload: %.200s", raw)
            return None
        if not isinstance(payload, dict):
            return None
        if str(payload.get("organization_id")) != self.organization_id:
            logger.debug("Ignoring change for organization %s", payload.get("organization_id"))
            return None
        logger.debug("Realtime project change: %s", payload)
        return parse_change_event(payload)

    async def events(self) -> AsyncIterator[ChangeEvent]:
        """Yield events in delivery order until the subscription is closed."""
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    def _detach(self) -> None:
        if self._loop is not None and self._conn is not None:
            self._loop.remove_reader(self._conn.fileno())
        self._loop = None

    def close(self) -> None:
        """UNLISTEN and drop the connection. Safe to call twice."""
        if self._conn is None:
            return
        conn = self._conn
        self._detach()
        try:
            with conn.cursor() as cur:
                cur.execute(f"UNLISTEN {self.channel};")
        except psycopg2.Error as exc:
            logger.warning("UNLISTEN failed for %s: %s", self.channel, exc)
        finally:
            conn.close()
            self._conn = None
            self.status = DISCONNECTED
            self._queue.put_nowait(_CLOSED)
            logger.info("Unsubscribed from %s for organization %s", self.channel, self.organization_id)
