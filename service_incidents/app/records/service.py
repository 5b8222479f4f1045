"""
Cache-aside record service for incidents.

Reads consult the Cache Layer first and fall back to the Record Store on a
miss, repopulating the cache with a fixed TTL. Writes go to the Record Store
and then delete the affected cache keys; they never write to the cache, so
the next read repopulates it lazily.

Two concurrent misses on the same key may both query the store and both
populate the cache. Both values are correct snapshots and the last writer
wins, so no lock guards population.

The cache is an optimisation only. A cache failure on read is treated as a
miss, and a cache failure on invalidation is logged and leaves an entry that
expires within one TTL. Record Store failures always propagate.
"""

from typing import List, Optional

from pydantic import ValidationError as SchemaError

from shared.errors import CacheError, NotFound, ValidationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..cache.redis_cache import ALL_INCIDENTS_KEY, incident_key
from .models import INCIDENT_LIST, Incident, IncidentFields


DEFAULT_TTL_SECONDS = 60


class RecordService:
    """Cache-aside CRUD over incidents.

    ``store`` provides ``list_incidents``, ``get_incident``,
    ``insert_incident``, ``update_incident`` and ``delete_incident``;
    ``cache`` provides ``get``, ``setex`` and ``delete`` and raises
    ``CacheError`` when unreachable.
    """

    def __init__(self, store, cache, ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.logger = get_logger("incidents.records")

    async def list_all(self) -> List[Incident]:
        """All incidents, newest first."""
        cached = await self._cache_get(ALL_INCIDENTS_KEY, kind="collection")
        if cached is not None:
            try:
                incidents = INCIDENT_LIST.validate_json(cached)
            except SchemaError:
                self.logger.warning("Discarding unreadable cache entry", key=ALL_INCIDENTS_KEY)
            else:
                self.logger.debug("Serving incidents from cache")
                return incidents

        self.logger.debug("Fetching incidents from store")
        incidents = await self.store.list_incidents()
        await self._cache_set(
            ALL_INCIDENTS_KEY,
            INCIDENT_LIST.dump_json(incidents).decode("utf-8"),
            kind="collection",
        )
        return incidents

    async def get_by_id(self, incident_id: int) -> Incident:
        """One incident; raises NotFound. Missing records are never cached."""
        key = incident_key(incident_id)
        cached = await self._cache_get(key, kind="record")
        if cached is not None:
            try:
                incident = Incident.model_validate_json(cached)
            except SchemaError:
                self.logger.warning("Discarding unreadable cache entry", key=key)
            else:
                self.logger.debug("Serving incident from cache", incident_id=incident_id)
                return incident

        self.logger.debug("Fetching incident from store", incident_id=incident_id)
        incident = await self.store.get_incident(incident_id)
        if incident is None:
            raise NotFound("Incident not found.", {"id": incident_id})

        await self._cache_set(key, incident.model_dump_json(), kind="record")
        return incident

    async def create(self, fields: IncidentFields) -> Incident:
        self._require_title(fields)
        incident = await self.store.insert_incident(fields)
        await self._invalidate(incident.id)

        self.logger.info("Incident created", incident_id=incident.id)
        return incident

    async def update(self, incident_id: int, fields: IncidentFields) -> Incident:
        """Replace all mutable fields of an incident; raises NotFound."""
        self._require_title(fields)
        incident = await self.store.update_incident(incident_id, fields)
        if incident is None:
            raise NotFound("Incident not found.", {"id": incident_id})

        await self._invalidate(incident_id)

        self.logger.info("Incident updated", incident_id=incident_id)
        return incident

    async def delete(self, incident_id: int) -> None:
        """Delete an incident; raises NotFound."""
        if not await self.store.delete_incident(incident_id):
            raise NotFound("Incident not found.", {"id": incident_id})

        await self._invalidate(incident_id)

        self.logger.info("Incident deleted", incident_id=incident_id)

    @staticmethod
    def _require_title(fields: IncidentFields) -> None:
        if not fields.title or not fields.title.strip():
            raise ValidationError("Title is required.", {"field": "title"})

    async def _cache_get(self, key: str, kind: str) -> Optional[str]:
        """Cache lookup that degrades to a miss when the cache is down."""
        try:
            value = await self.cache.get(key)
        except CacheError as e:
            self.logger.warning("Cache read failed, using store", key=key, error=e.message)
            if self.metrics:
                self.metrics.record_cache_access(kind, "error")
            return None

        if self.metrics:
            self.metrics.record_cache_access(kind, "hit" if value is not None else "miss")
        return value

    async def _cache_set(self, key: str, value: str, kind: str) -> None:
        """Populate the cache; a failure leaves the key absent."""
        try:
            await self.cache.setex(key, self.ttl_seconds, value)
        except CacheError as e:
            self.logger.warning("Cache write failed", key=key, error=e.message)
            if self.metrics:
                self.metrics.record_error("CACHE_WRITE_FAILED")
            return

        self.logger.debug("Cache populated", key=key, kind=kind, ttl=self.ttl_seconds)

    async def _invalidate(self, incident_id: int) -> None:
        """Drop the collection key and the record key after a write."""
        keys = (ALL_INCIDENTS_KEY, incident_key(incident_id))
        try:
            await self.cache.delete(*keys)
        except CacheError as e:
            # Stale entries expire within one TTL.
            self.logger.warning(
                "Cache invalidation failed",
                keys=list(keys),
                ttl=self.ttl_seconds,
                error=e.message
            )
            self._record_invalidation("error")
            return

        self.logger.debug("Cache invalidated", keys=list(keys))
        self._record_invalidation("ok")

    def _record_invalidation(self, result: str) -> None:
        """Count one invalidation per key kind dropped by a write."""
        if self.metrics:
            for kind in ("collection", "record"):
                self.metrics.record_cache_invalidation(kind, result)
