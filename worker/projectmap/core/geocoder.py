"""Concurrent address geocoding for project entities."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Sequence

import requests

from projectmap.core.config import Settings, get_settings
from projectmap.models import Coordinates, LocatedEntity
from projectmap.vendors import photon

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Optional[Coordinates]]


class Geocoder:
    """Resolve entity addresses to coordinates, one isolated lookup per entity.

    Lookups are blocking HTTP calls pushed onto worker threads, so every
    lookup is its own suspension point on the event loop. A failed lookup
    never affects the others: the entity simply stays unlocated for the
    rest of the session.
    """

    def __init__(self, lookup: Optional[Lookup] = None, settings: Optional[Settings] = None) -> None:
        self._settings = settings
        self._lookup = lookup or self._photon_lookup
        # project id -> address that could not be resolved this session
        self._failed: Dict[str, str] = {}
        self.calls = 0

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _photon_lookup(self, address: str) -> Optional[Coordinates]:
        payload = photon.search(
            address,
            base_url=self.settings.photon_url,
            limit=1,
            timeout=self.settings.http_timeout,
        )
        return photon.first_coordinates(payload)

    async def resolve(self, address: str) -> Optional[Coordinates]:
        self.calls += 1
        return await asyncio.to_thread(self._lookup, address)

    async def _geocode_one(self, entity: LocatedEntity) -> LocatedEntity:
        if entity.coordinates is not None:
            return entity
        if not entity.address or not entity.address.strip():
            logger.warning("Skipping project with empty address: %s", entity.name)
            return entity
        if self._failed.get(entity.id) == entity.address:
            logger.debug("Not retrying unresolved address for %s", entity.name)
            return entity

        try:
            coordinates = await self.resolve(entity.address)
        except requests.RequestException as exc:
            logger.error("Geocoding failed for %s: %s", entity.address, exc)
            coordinates = None
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to geocode %s: %s", entity.address, exc)
            coordinates = None
        else:
            if coordinates is None:
                logger.info("No geocoding candidates for %s", entity.address)

        if coordinates is None:
            self._failed[entity.id] = entity.address
            return entity
        return replace(entity, coordinates=coordinates)

    async def geocode(self, entities: Sequence[LocatedEntity]) -> List[LocatedEntity]:
        """Return a new list, same order as ``entities``, with resolvable entities located."""
        results = await asyncio.gather(*(self._geocode_one(entity) for entity in entities))
        located = list(results)

        unlocated = [entity for entity in located if entity.coordinates is None]
        if unlocated:
            logger.info(
                "Projects without coordinates: %s",
                [{"name": e.name, "status": e.status, "address": e.address} for e in unlocated],
            )
        return located
