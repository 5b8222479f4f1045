"""
Unit tests for the cache-aside RecordService.
"""

import asyncio

import pytest

from service_incidents.app.cache.redis_cache import ALL_INCIDENTS_KEY, incident_key
from service_incidents.app.records.models import IncidentFields
from service_incidents.app.records.service import RecordService
from service_incidents.tests.fakes import FakeCache, FakeClock, FakeStore
from shared.errors import ExternalServiceError, NotFound, ValidationError
from shared.metrics import MetricsCollector


class TestRecordService:
    """Test cases for RecordService."""

    @pytest.fixture
    def clock(self):
        return FakeClock(1000.0)

    @pytest.fixture
    def store(self):
        return FakeStore()

    @pytest.fixture
    def cache(self, clock):
        return FakeCache(clock)

    @pytest.fixture
    def service(self, store, cache):
        """Create RecordService over in-memory fakes."""
        return RecordService(store, cache, ttl_seconds=60, metrics=MetricsCollector("incidents"))

    @pytest.mark.asyncio
    async def test_create_returns_stored_incident(self, service, store):
        """Test create assigns an id and persists the record."""
        incident = await service.create(IncidentFields(title="Fire", reporter="ops", resource_id="r-1"))

        assert incident.id == 1
        assert incident.title == "Fire"
        assert incident.reporter == "ops"
        assert incident.date is not None
        assert store.incidents[1].title == "Fire"

    @pytest.mark.asyncio
    async def test_create_requires_title(self, service, store, cache):
        """Test create rejects missing or blank titles without touching backends."""
        for fields in (IncidentFields(), IncidentFields(title=""), IncidentFields(title="   ")):
            with pytest.raises(ValidationError):
                await service.create(fields)

        assert store.total_calls == 0
        assert cache.ops == []

    @pytest.mark.asyncio
    async def test_update_requires_title(self, service, store):
        """Test update rejects an empty title."""
        await service.create(IncidentFields(title="Fire"))

        with pytest.raises(ValidationError):
            await service.update(1, IncidentFields(title=""))

        assert store.calls["update_incident"] == 0
        assert store.incidents[1].title == "Fire"

    @pytest.mark.asyncio
    async def test_get_by_id_hit_skips_store(self, service, store, cache):
        """Test a populated record key is served without a store query."""
        await service.create(IncidentFields(title="Fire"))

        first = await service.get_by_id(1)
        assert store.calls["get_incident"] == 1
        assert cache.contains(incident_key(1))

        second = await service.get_by_id(1)
        assert store.calls["get_incident"] == 1
        assert second == first

    @pytest.mark.asyncio
    async def test_list_all_hit_skips_store(self, service, store, cache):
        """Test a populated collection key is served without a store query."""
        await service.create(IncidentFields(title="Fire"))
        await service.create(IncidentFields(title="Flood"))

        first = await service.list_all()
        second = await service.list_all()

        assert store.calls["list_incidents"] == 1
        assert cache.contains(ALL_INCIDENTS_KEY)
        assert [i.title for i in first] == ["Flood", "Fire"]
        assert second == first

    @pytest.mark.asyncio
    async def test_repeated_reads_serialize_identically(self, service):
        """Test a miss and the following hit produce the same JSON."""
        await service.create(IncidentFields(title="Fire", description="Server room", resource_id=7))

        miss = await service.get_by_id(1)
        hit = await service.get_by_id(1)

        assert miss.model_dump_json() == hit.model_dump_json()
        assert hit.resource_id == "7"

    @pytest.mark.asyncio
    async def test_get_by_id_not_found_is_not_cached(self, service, store, cache):
        """Test NotFound is raised on every call and never stored."""
        for _ in range(2):
            with pytest.raises(NotFound):
                await service.get_by_id(99)

        assert store.calls["get_incident"] == 2
        assert not cache.contains(incident_key(99))

    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self, service, store, clock):
        """Test an entry is re-fetched once its TTL has elapsed."""
        await service.create(IncidentFields(title="Fire"))
        await service.get_by_id(1)
        await service.list_all()

        clock.advance(59)
        await service.get_by_id(1)
        await service.list_all()
        assert store.calls["get_incident"] == 1
        assert store.calls["list_incidents"] == 1

        clock.advance(2)
        await service.get_by_id(1)
        await service.list_all()
        assert store.calls["get_incident"] == 2
        assert store.calls["list_incidents"] == 2

    @pytest.mark.asyncio
    async def test_create_invalidates_collection(self, service, cache):
        """Test create drops the collection key so the new record is listed."""
        await service.create(IncidentFields(title="Fire"))
        assert len(await service.list_all()) == 1

        await service.create(IncidentFields(title="Flood"))
        assert not cache.contains(ALL_INCIDENTS_KEY)
        assert ("delete", (ALL_INCIDENTS_KEY, incident_key(2))) in cache.ops

        listed = await service.list_all()
        assert [i.title for i in listed] == ["Flood", "Fire"]

    @pytest.mark.asyncio
    async def test_update_invalidates_both_keys(self, service, cache):
        """Test update drops the collection and record keys."""
        await service.create(IncidentFields(title="Fire"))
        await service.get_by_id(1)
        await service.list_all()

        await service.update(1, IncidentFields(title="Fire contained"))

        assert not cache.contains(ALL_INCIDENTS_KEY)
        assert not cache.contains(incident_key(1))
        assert (await service.get_by_id(1)).title == "Fire contained"
        assert [i.title for i in await service.list_all()] == ["Fire contained"]

    @pytest.mark.asyncio
    async def test_update_replaces_all_fields(self, service):
        """Test omitted fields are cleared on update."""
        await service.create(IncidentFields(title="Fire", reporter="ops", type="outage"))

        updated = await service.update(1, IncidentFields(title="Fire contained"))

        assert updated.reporter is None
        assert updated.type is None
        assert updated.updated_at > updated.date

    @pytest.mark.asyncio
    async def test_update_missing_raises_not_found(self, service, cache):
        """Test update of an unknown id leaves the cache alone."""
        with pytest.raises(NotFound):
            await service.update(42, IncidentFields(title="Ghost"))

        assert cache.ops == []

    @pytest.mark.asyncio
    async def test_delete_invalidates_both_keys(self, service, cache):
        """Test delete drops the collection and record keys."""
        await service.create(IncidentFields(title="Fire"))
        await service.get_by_id(1)
        await service.list_all()

        await service.delete(1)

        assert not cache.contains(ALL_INCIDENTS_KEY)
        assert not cache.contains(incident_key(1))
        assert await service.list_all() == []

    @pytest.mark.asyncio
    async def test_delete_missing_raises_not_found(self, service, store):
        """Test delete of an unknown id raises NotFound."""
        with pytest.raises(NotFound):
            await service.delete(5)

        assert store.calls["delete_incident"] == 1

    @pytest.mark.asyncio
    async def test_end_to_end_lifecycle(self, service, store):
        """Test create, cached read, update, re-read and delete."""
        created = await service.create(IncidentFields(title="Fire"))
        assert created.id == 1

        fetched = await service.get_by_id(1)
        assert fetched == created
        before = store.total_calls
        assert await service.get_by_id(1) == created
        assert store.total_calls == before

        await service.update(1, IncidentFields(title="Fire contained"))

        before = store.calls["get_incident"]
        refreshed = await service.get_by_id(1)
        assert refreshed.title == "Fire contained"
        assert store.calls["get_incident"] == before + 1
        assert (await service.get_by_id(1)).title == "Fire contained"
        assert store.calls["get_incident"] == before + 1

        await service.delete(1)
        with pytest.raises(NotFound):
            await service.get_by_id(1)

    @pytest.mark.asyncio
    async def test_concurrent_misses_both_read_store(self, service, store, cache):
        """Test concurrent misses each fall through and the cache ends populated."""
        await service.create(IncidentFields(title="Fire"))

        first, second = await asyncio.gather(service.get_by_id(1), service.get_by_id(1))

        assert first == second
        assert 1 <= store.calls["get_incident"] <= 2
        assert cache.contains(incident_key(1))

    @pytest.mark.asyncio
    async def test_unreadable_cache_entry_treated_as_miss(self, service, store, cache):
        """Test a corrupt cache value falls back to the store and is replaced."""
        await service.create(IncidentFields(title="Fire"))
        await cache.setex(incident_key(1), 60, "{not json")
        await cache.setex(ALL_INCIDENTS_KEY, 60, '[{"id": "x"}]')

        incident = await service.get_by_id(1)
        incidents = await service.list_all()

        assert incident.title == "Fire"
        assert [i.id for i in incidents] == [1]
        assert store.calls["get_incident"] == 1
        assert store.calls["list_incidents"] == 1
        assert cache.raw(incident_key(1)) == incident.model_dump_json()

    @pytest.mark.asyncio
    async def test_undecodable_cache_entry_treated_as_miss(self, service, store, cache):
        """Test a non-UTF-8 value, as decoded with replacement, falls back to the store."""
        await service.create(IncidentFields(title="Fire"))
        await cache.setex(incident_key(1), 60, b"\xff\xfe\x00{".decode("utf-8", errors="replace"))

        incident = await service.get_by_id(1)

        assert incident.title == "Fire"
        assert store.calls["get_incident"] == 1

    @pytest.mark.asyncio
    async def test_invalidation_metrics_per_key_kind(self, service, cache):
        """Test each write counts one invalidation for each key kind."""
        await service.create(IncidentFields(title="Fire"))
        await service.update(1, IncidentFields(title="Fire contained"))
        cache.fail = True
        await service.delete(1)

        registry = service.metrics.registry
        for kind in ("collection", "record"):
            assert registry.get_sample_value(
                "cache_invalidations_total", {"kind": kind, "result": "ok"}
            ) == 2
            assert registry.get_sample_value(
                "cache_invalidations_total", {"kind": kind, "result": "error"}
            ) == 1


class TestRecordServiceDegraded:
    """Test cases for RecordService with failing backends."""

    @pytest.fixture
    def store(self):
        return FakeStore()

    @pytest.fixture
    def cache(self):
        return FakeCache()

    @pytest.fixture
    def service(self, store, cache):
        return RecordService(store, cache, ttl_seconds=60)

    @pytest.mark.asyncio
    async def test_reads_fall_back_to_store_when_cache_down(self, service, store, cache):
        """Test cache failures on read behave as misses."""
        await service.create(IncidentFields(title="Fire"))
        cache.fail = True

        assert (await service.get_by_id(1)).title == "Fire"
        assert (await service.get_by_id(1)).title == "Fire"
        assert [i.title for i in await service.list_all()] == ["Fire"]

        assert store.calls["get_incident"] == 2
        assert store.calls["list_incidents"] == 1

    @pytest.mark.asyncio
    async def test_writes_succeed_when_cache_down(self, service, store, cache):
        """Test a failed invalidation does not fail the write."""
        cache.fail = True

        created = await service.create(IncidentFields(title="Fire"))
        updated = await service.update(created.id, IncidentFields(title="Fire contained"))
        await service.delete(created.id)

        assert updated.title == "Fire contained"
        assert store.incidents == {}

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, service, store, cache):
        """Test store failures surface as ExternalServiceError and are not cached."""
        store.fail = True

        with pytest.raises(ExternalServiceError):
            await service.list_all()
        with pytest.raises(ExternalServiceError):
            await service.get_by_id(1)
        with pytest.raises(ExternalServiceError):
            await service.create(IncidentFields(title="Fire"))

        assert cache.entries == {}
        assert not any(op == "delete" for op, _ in cache.ops)

    @pytest.mark.asyncio
    async def test_store_failure_on_cache_hit_is_not_reached(self, service, store, cache):
        """Test a cache hit serves reads even while the store is down."""
        await service.create(IncidentFields(title="Fire"))
        await service.get_by_id(1)
        store.fail = True

        assert (await service.get_by_id(1)).title == "Fire"
