"""
Property-based tests for the result cache policy.

The policy lives in CacheService and is shared by every backend, so it is
tested here against an in-memory backend with a controllable clock.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from io import StringIO
from typing import Optional

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from dnc_checker.cache_service import (
    BACKEND_ALIASES,
    CacheService,
    DisabledCacheService,
    create_auto_cache_service,
    create_cache_service,
    is_valid_payload,
    is_valid_record,
    parse_backend_name,
    parse_timestamp,
    select_backend,
    should_cache,
)
from dnc_checker.audit_logger import AuditLogger
from dnc_checker.config import CacheConfig, MySQLConfig
from dnc_checker.enums import CacheBackendType, CacheErrorCode, LogLevel
from dnc_checker.exceptions import CacheUnavailable
from dnc_checker.models import CacheEntry


T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

DEFINITIVE_PAYLOAD = {
    "phoneNumber": "98297150",
    "status": "not_registered",
    "response": "El número no figura inscripto",
    "isInRecord": False,
}


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class MemoryCacheService(CacheService):
    """Cache backend over a dict; can be switched to fail every hook."""

    backend_type = CacheBackendType.RELATIONAL

    def __init__(self, down: bool = False, **kwargs) -> None:
        super().__init__(**kwargs)
        self.records: dict[str, dict] = {}
        self.down = down
        self.closed = False

    def _check(self) -> None:
        if self.down:
            raise CacheUnavailable(code=CacheErrorCode.CONNECTION_ERROR.value, message="store down")

    def _fetch(self, phone_number: str) -> Optional[dict]:
        self._check()
        return self.records.get(phone_number)

    def _store(self, phone_number: str, record: dict) -> None:
        self._check()
        self.records[phone_number] = record

    def _delete(self, phone_number: str) -> bool:
        self._check()
        return self.records.pop(phone_number, None) is not None

    def _ping(self) -> None:
        self._check()

    def _purge_older_than(self, cutoff: datetime) -> int:
        self._check()
        stale = [k for k, r in self.records.items() if parse_timestamp(r["timestamp"]) < cutoff]
        for key in stale:
            del self.records[key]
        return len(stale)

    def _collect_stats(self) -> dict:
        return {"total_entries": len(self.records)}

    def _close(self) -> None:
        self.closed = True


class TestCacheTtlProperty:
    """
    Property 14: Entries younger than max_age_hours are served; older ones are not.
    """

    def test_documented_boundary(self) -> None:
        clock = FakeClock()
        cache = MemoryCacheService(max_age_hours=24, clock=clock)

        assert asyncio.run(cache.set("98297150", DEFINITIVE_PAYLOAD))
        entry = CacheEntry("98297150", T0, DEFINITIVE_PAYLOAD)

        clock.advance(hours=23)
        assert cache.is_valid(entry)
        hit = asyncio.run(cache.get("98297150"))
        assert hit is not None
        assert hit.payload == DEFINITIVE_PAYLOAD
        assert hit.age_hours(clock()) == pytest.approx(23)

        clock.advance(hours=2)
        assert not cache.is_valid(entry)
        assert asyncio.run(cache.get("98297150")) is None
        # Stale records are discarded on read
        assert "98297150" not in cache.records

    @given(
        max_age=st.floats(min_value=0.5, max_value=72, allow_nan=False),
        age=st.floats(min_value=0, max_value=100, allow_nan=False),
    )
    @settings(max_examples=100)
    def test_validity_matches_age(self, max_age: float, age: float) -> None:
        """
        Property 14a: is_valid is exactly age < max_age_hours.
        """
        clock = FakeClock(T0 + timedelta(hours=age))
        cache = MemoryCacheService(max_age_hours=max_age, clock=clock)
        entry = CacheEntry("98297150", T0, DEFINITIVE_PAYLOAD)

        assert cache.is_valid(entry) == (entry.age_hours(clock()) < max_age)

    def test_explicit_max_age_overrides_configured(self) -> None:
        clock = FakeClock(T0 + timedelta(hours=10))
        cache = MemoryCacheService(max_age_hours=24, clock=clock)
        entry = CacheEntry("98297150", T0, DEFINITIVE_PAYLOAD)

        assert cache.is_valid(entry)
        assert not cache.is_valid(entry, max_age_hours=6)

    def test_clear_expired_removes_only_stale(self) -> None:
        clock = FakeClock()
        cache = MemoryCacheService(max_age_hours=24, clock=clock)
        asyncio.run(cache.set("11111111", DEFINITIVE_PAYLOAD))
        clock.advance(hours=20)
        asyncio.run(cache.set("22222222", DEFINITIVE_PAYLOAD))
        clock.advance(hours=5)

        assert asyncio.run(cache.clear_expired()) == 1
        assert set(cache.records) == {"22222222"}


class TestNoCachingOfErrorsProperty:
    """
    Property 15: Error and empty results never reach the store.
    """

    @given(
        error=st.one_of(st.none(), st.sampled_from(["code_not_found", "frame_not_found", "tokens_not_found"])),
        response=st.sampled_from(["", "El número no figura inscripto"]),
    )
    @settings(max_examples=100)
    def test_only_definitive_results_are_stored(self, error: Optional[str], response: str) -> None:
        cache = MemoryCacheService(clock=FakeClock())
        payload = dict(DEFINITIVE_PAYLOAD, response=response)
        if error:
            payload["error"] = error

        stored = asyncio.run(cache.set("98297150", payload))

        expected = error is None and bool(response)
        assert stored == expected == should_cache(payload)
        assert ("98297150" in cache.records) == expected

    def test_error_does_not_replace_existing_record(self) -> None:
        cache = MemoryCacheService(clock=FakeClock())
        asyncio.run(cache.set("98297150", DEFINITIVE_PAYLOAD))
        before = dict(cache.records["98297150"])

        asyncio.run(cache.set("98297150", {"error": "code_not_found", "response": ""}))

        assert cache.records["98297150"] == before


class TestSoftFailureProperty:
    """
    Property 16: A failing backend never raises out of the cache.
    """

    def test_unreachable_backend_is_absorbed(self) -> None:
        cache = MemoryCacheService(down=True, clock=FakeClock())

        assert asyncio.run(cache.get("98297150")) is None
        assert asyncio.run(cache.set("98297150", DEFINITIVE_PAYLOAD)) is False
        assert asyncio.run(cache.clear("98297150")) is False
        assert asyncio.run(cache.clear_expired()) == 0
        assert asyncio.run(cache.ping()) is False

        stats = asyncio.run(cache.get_stats())
        assert stats.enabled
        assert not stats.backend_reachable
        assert stats.total_entries is None

    @pytest.mark.parametrize(
        "record",
        [
            {"phoneNumber": "98297150", "timestamp": "not a date", "data": {"response": "x"}},
            {"phoneNumber": "98297150", "timestamp": T0.isoformat(), "data": {}},
            {"phoneNumber": "98297150", "data": {"response": "x"}},
            {},
        ],
    )
    def test_malformed_record_is_discarded(self, record: dict) -> None:
        cache = MemoryCacheService(clock=FakeClock())
        cache.records["98297150"] = record

        assert asyncio.run(cache.get("98297150")) is None
        assert "98297150" not in cache.records

    @pytest.mark.parametrize(
        "payload",
        [
            dict(DEFINITIVE_PAYLOAD, status="REGISTERED"),
            dict(DEFINITIVE_PAYLOAD, status=["registered"]),
            dict(DEFINITIVE_PAYLOAD, captchaSolveAttempts="many"),
            dict(DEFINITIVE_PAYLOAD, durationMs=None),
        ],
    )
    def test_unreadable_payload_is_discarded(self, payload: dict) -> None:
        cache = MemoryCacheService(clock=FakeClock())
        cache.records["98297150"] = {
            "phoneNumber": "98297150",
            "timestamp": T0.isoformat(),
            "data": payload,
        }

        assert not is_valid_payload(payload)
        assert asyncio.run(cache.get("98297150")) is None
        assert "98297150" not in cache.records

    def test_disabled_cache_is_inert(self) -> None:
        cache = DisabledCacheService()

        assert not cache.enabled
        assert asyncio.run(cache.set("98297150", DEFINITIVE_PAYLOAD)) is False
        assert asyncio.run(cache.get("98297150")) is None
        assert asyncio.run(cache.clear("98297150")) is False
        stats = asyncio.run(cache.get_stats())
        assert not stats.enabled
        assert stats.backend == CacheBackendType.DISABLED.value

    def test_context_manager_closes_backend(self) -> None:
        cache = MemoryCacheService(clock=FakeClock())

        async def use() -> None:
            async with cache:
                await cache.set("98297150", DEFINITIVE_PAYLOAD)

        asyncio.run(use())
        assert cache.closed


class TestRecordLayout:

    def test_stored_record_layout(self) -> None:
        cache = MemoryCacheService(clock=FakeClock())
        asyncio.run(cache.set("98297150", DEFINITIVE_PAYLOAD))

        record = cache.records["98297150"]
        assert record == {
            "phoneNumber": "98297150",
            "timestamp": T0.isoformat(),
            "data": DEFINITIVE_PAYLOAD,
        }
        assert is_valid_record(record)

    def test_key_prefix(self) -> None:
        assert MemoryCacheService().generate_key("98297150") == "phone-cache-98297150"

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2024-03-01T12:00:00+00:00", T0),
            ("2024-03-01T12:00:00Z", T0),
            ("2024-03-01T09:00:00-03:00", T0),
            ("2024-03-01T12:00:00", T0),
            (datetime(2024, 3, 1, 12, 0), T0),
            ("garbage", None),
            (12345, None),
        ],
    )
    def test_parse_timestamp(self, value, expected) -> None:
        assert parse_timestamp(value) == expected


class TestBackendSelectionProperty:
    """
    Property 17: Backend priority is relational, document, blob, disabled.
    """

    @given(
        has_mysql=st.booleans(),
        has_mongo=st.booleans(),
        has_blob=st.booleans(),
    )
    @settings(max_examples=50)
    def test_priority_order(self, has_mysql: bool, has_mongo: bool, has_blob: bool) -> None:
        config = CacheConfig(
            mysql=MySQLConfig(host="db", user="u", database="d") if has_mysql else None,
            mongodb_url="mongodb://localhost:27017" if has_mongo else None,
            blob_token="vercel_blob_rw_x" if has_blob else None,
        )

        if has_mysql:
            expected = CacheBackendType.RELATIONAL
        elif has_mongo:
            expected = CacheBackendType.DOCUMENT
        elif has_blob:
            expected = CacheBackendType.BLOB
        else:
            expected = CacheBackendType.DISABLED

        assert select_backend(config) == expected

    def test_disabled_config_wins(self) -> None:
        config = CacheConfig(enabled=False, mongodb_url="mongodb://localhost:27017")
        assert select_backend(config) == CacheBackendType.DISABLED
        assert isinstance(create_auto_cache_service(config), DisabledCacheService)

    def test_explicit_backend_overrides_priority(self) -> None:
        config = CacheConfig(
            backend="blob",
            mysql=MySQLConfig(host="db", user="u", database="d"),
            blob_token="vercel_blob_rw_x",
        )
        assert select_backend(config) == CacheBackendType.BLOB

    def test_no_settings_is_disabled(self) -> None:
        assert isinstance(create_auto_cache_service(CacheConfig()), DisabledCacheService)

    @pytest.mark.parametrize(
        "backend",
        [CacheBackendType.RELATIONAL, CacheBackendType.DOCUMENT, CacheBackendType.BLOB],
    )
    def test_missing_settings_raise(self, backend: CacheBackendType) -> None:
        with pytest.raises(ValueError):
            create_cache_service(backend, CacheConfig())

    def test_document_and_blob_services_are_built(self) -> None:
        from dnc_checker.blob_cache import BlobCacheService
        from dnc_checker.mongodb_cache import MongoDBCacheService

        config = CacheConfig(
            max_age_hours=12,
            mongodb_url="mongodb://localhost:27017",
            blob_token="vercel_blob_rw_x",
        )

        document = create_cache_service(CacheBackendType.DOCUMENT, config)
        blob = create_cache_service(CacheBackendType.BLOB, config)
        try:
            assert isinstance(document, MongoDBCacheService)
            assert isinstance(blob, BlobCacheService)
            assert document.max_age_hours == blob.max_age_hours == 12
        finally:
            asyncio.run(blob.close())

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("mysql", CacheBackendType.RELATIONAL),
            ("mongodb", CacheBackendType.DOCUMENT),
            ("vercel-blob", CacheBackendType.BLOB),
            ("Document", CacheBackendType.DOCUMENT),
            (" blob ", CacheBackendType.BLOB),
            ("redis", None),
        ],
    )
    def test_backend_names_and_aliases(self, name: str, expected) -> None:
        assert parse_backend_name(name) == expected

    def test_every_alias_maps_to_a_backend(self) -> None:
        assert set(BACKEND_ALIASES.values()) <= set(CacheBackendType)

    def test_unknown_explicit_backend_disables_cache(self) -> None:
        config = CacheConfig(backend="redis", mongodb_url="mongodb://localhost:27017")
        stream = StringIO()
        logger = AuditLogger(output_format="json", output_stream=stream)

        with pytest.raises(ValueError):
            select_backend(config)
        cache = create_auto_cache_service(config, logger=logger)

        assert isinstance(cache, DisabledCacheService)
        assert [(e.level, e.data) for e in logger.entries] == [(LogLevel.WARN, {"backend": "redis"})]

    @pytest.mark.parametrize("backend", ["mysql", "relational", "mongodb", "vercel-blob"])
    def test_incomplete_explicit_backend_disables_cache(self, backend: str) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())

        cache = create_auto_cache_service(CacheConfig(backend=backend), logger=logger)

        assert isinstance(cache, DisabledCacheService)
        assert logger.entries[0].level == LogLevel.WARN
