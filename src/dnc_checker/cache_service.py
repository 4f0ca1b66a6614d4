"""
Result cache for registry checks.

CacheService holds the caching policy shared by every backend: which
results are worth storing, when a stored record is stale, and the rule
that a cache failure never fails a check. Backends only implement the
synchronous storage hooks, which are run on the default executor.

Every backend persists the same record layout per phone number:
{"phoneNumber": str, "timestamp": ISO-8601 str, "data": result payload}.
"""

import asyncio
import functools
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from .audit_logger import AuditLogger, LoggingMixin
from .config import CacheConfig
from .enums import CacheBackendType, LogLevel
from .exceptions import CacheUnavailable
from .models import CacheEntry, CacheStats, PhoneCheckResult


KEY_PREFIX = "phone-cache"

# Backend names accepted in CACHE_BACKEND besides the enum values
BACKEND_ALIASES = {
    "mysql": CacheBackendType.RELATIONAL,
    "sql": CacheBackendType.RELATIONAL,
    "mongodb": CacheBackendType.DOCUMENT,
    "mongo": CacheBackendType.DOCUMENT,
    "vercel-blob": CacheBackendType.BLOB,
    "none": CacheBackendType.DISABLED,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into UTC; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def is_valid_record(record: Any) -> bool:
    """Structural check of a persisted record."""
    return (
        isinstance(record, dict)
        and isinstance(record.get("timestamp"), str)
        and isinstance(record.get("phoneNumber"), str)
        and isinstance(record.get("data"), dict)
        and bool(record["data"])
    )


def is_valid_payload(payload: dict) -> bool:
    """True if a cached payload can be rebuilt into a PhoneCheckResult."""
    try:
        PhoneCheckResult.from_payload(payload)
    except (ValueError, TypeError):
        return False
    return True


def should_cache(payload: dict) -> bool:
    """Only definitive results are cached: no error and a non-empty response."""
    if payload.get("error") or payload.get("simulated"):
        return False
    return bool(payload.get("response"))


class CacheService(LoggingMixin, ABC):
    """
    Base class for cache backends.

    Public operations are async and never raise for backend failures:
    a failed read is a miss and a failed write is skipped. Subclasses raise
    CacheUnavailable from their hooks when the store cannot be used.
    """

    COMPONENT = "CacheService"
    backend_type: CacheBackendType

    def __init__(
        self,
        max_age_hours: float = 24.0,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the cache service.

        Args:
            max_age_hours: Records this old or older are stale
            clock: Returns the current timezone-aware time
            logger: Optional audit logger
        """
        self._max_age_hours = max_age_hours
        self._clock = clock
        self._logger = logger

    @property
    def max_age_hours(self) -> float:
        return self._max_age_hours

    @property
    def enabled(self) -> bool:
        return True

    def generate_key(self, phone_number: str) -> str:
        return f"{KEY_PREFIX}-{phone_number}"

    def is_valid(self, entry: CacheEntry, max_age_hours: Optional[float] = None) -> bool:
        """True if the entry is younger than max_age_hours (default: configured age)."""
        max_age = self._max_age_hours if max_age_hours is None else max_age_hours
        return entry.age_hours(self._clock()) < max_age

    # Storage hooks, called on the executor

    @abstractmethod
    def _fetch(self, phone_number: str) -> Optional[dict]:
        """Return the stored record, or None if there is none."""

    @abstractmethod
    def _store(self, phone_number: str, record: dict) -> None:
        """Insert or replace the record for a phone number."""

    @abstractmethod
    def _delete(self, phone_number: str) -> bool:
        """Delete the record; True if one existed."""

    @abstractmethod
    def _ping(self) -> None:
        """Raise CacheUnavailable if the store cannot be reached."""

    def _purge_older_than(self, cutoff: datetime) -> int:
        """Delete records written before cutoff; returns how many."""
        return 0

    def _collect_stats(self) -> dict:
        """Backend-specific statistics (total_entries, oldest_entry, newest_entry)."""
        return {}

    def _close(self) -> None:
        pass

    async def _run(self, hook: Callable, *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(hook, *args))

    def _to_entry(self, record: Any) -> Optional[CacheEntry]:
        if not is_valid_record(record) or not is_valid_payload(record["data"]):
            return None
        timestamp = parse_timestamp(record["timestamp"])
        if timestamp is None:
            return None
        return CacheEntry(
            phone_number=record["phoneNumber"],
            timestamp=timestamp,
            payload=record["data"],
        )

    # Public operations

    async def get(self, phone_number: str) -> Optional[CacheEntry]:
        """
        Look up a fresh cached result.

        Returns:
            CacheEntry if a structurally valid, non-stale record exists;
            None on a miss, a stale or malformed record, or a backend failure
        """
        try:
            record = await self._run(self._fetch, phone_number)
        except CacheUnavailable as e:
            self._log_warn(
                f"Cache read failed for {phone_number}, treating as miss",
                {"code": e.code, "error": e.message, "backend": self.backend_type.value},
            )
            return None

        if record is None:
            self._log_debug(f"Cache miss for {phone_number}")
            return None

        entry = self._to_entry(record)
        if entry is None:
            self._log_warn(f"Invalid cache record for {phone_number}, discarding")
            await self._discard(phone_number)
            return None

        age_hours = entry.age_hours(self._clock())
        if not self.is_valid(entry):
            self._log_info(
                f"Cached result for {phone_number} is stale ({age_hours:.1f}h), discarding",
                {"age_hours": round(age_hours, 2), "max_age_hours": self._max_age_hours},
            )
            await self._discard(phone_number)
            return None

        self._log_info(
            f"Cache hit for {phone_number} ({age_hours:.1f}h old)",
            {"age_hours": round(age_hours, 2)},
        )
        return entry

    async def _discard(self, phone_number: str) -> None:
        try:
            await self._run(self._delete, phone_number)
        except CacheUnavailable as e:
            self._log_debug(
                f"Could not discard cache record for {phone_number}",
                {"code": e.code, "error": e.message},
            )

    async def set(self, phone_number: str, payload: dict) -> bool:
        """
        Store a result payload if it is definitive.

        Returns:
            True if the record was written
        """
        if not should_cache(payload):
            self._log_debug(f"Not caching result for {phone_number} (error or empty response)")
            return False

        entry = CacheEntry(phone_number=phone_number, timestamp=self._clock(), payload=payload)
        try:
            await self._run(self._store, phone_number, entry.to_record())
        except CacheUnavailable as e:
            self._log_warn(
                f"Cache write failed for {phone_number}",
                {"code": e.code, "error": e.message, "backend": self.backend_type.value},
            )
            return False

        self._log_info(f"Cached result for {phone_number}")
        return True

    async def clear(self, phone_number: str) -> bool:
        """Delete the record for one phone number; True if one was removed."""
        try:
            return bool(await self._run(self._delete, phone_number))
        except CacheUnavailable as e:
            self._log_warn(
                f"Cache clear failed for {phone_number}",
                {"code": e.code, "error": e.message},
            )
            return False

    async def clear_expired(self) -> int:
        """Delete every stale record; returns the number removed."""
        cutoff = self._clock() - timedelta(hours=self._max_age_hours)
        try:
            removed = await self._run(self._purge_older_than, cutoff)
        except CacheUnavailable as e:
            self._log_warn("Expired cache cleanup failed", {"code": e.code, "error": e.message})
            return 0
        self._log_info(f"Removed {removed} expired cache records", {"removed": removed})
        return removed

    async def ping(self) -> bool:
        try:
            await self._run(self._ping)
        except CacheUnavailable as e:
            self._log_warn("Cache backend unreachable", {"code": e.code, "error": e.message})
            return False
        return True

    async def get_stats(self) -> CacheStats:
        reachable = await self.ping()
        stats: dict = {}
        if reachable:
            try:
                stats = await self._run(self._collect_stats)
            except CacheUnavailable as e:
                self._log_warn("Cache statistics unavailable", {"code": e.code, "error": e.message})
        return CacheStats(
            enabled=self.enabled,
            backend_reachable=reachable,
            max_age_hours=self._max_age_hours,
            backend=self.backend_type.value,
            total_entries=stats.get("total_entries"),
            oldest_entry=stats.get("oldest_entry"),
            newest_entry=stats.get("newest_entry"),
        )

    async def close(self) -> None:
        try:
            await self._run(self._close)
        except CacheUnavailable as e:
            self._log_debug("Error closing cache backend", {"error": e.message})

    async def __aenter__(self) -> "CacheService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class DisabledCacheService(CacheService):
    """Cache that stores nothing; every read is a miss."""

    backend_type = CacheBackendType.DISABLED

    @property
    def enabled(self) -> bool:
        return False

    def _fetch(self, phone_number: str) -> Optional[dict]:
        return None

    def _store(self, phone_number: str, record: dict) -> None:
        pass

    def _delete(self, phone_number: str) -> bool:
        return False

    def _ping(self) -> None:
        pass

    async def get(self, phone_number: str) -> Optional[CacheEntry]:
        return None

    async def set(self, phone_number: str, payload: dict) -> bool:
        return False

    async def get_stats(self) -> CacheStats:
        return CacheStats(
            enabled=False,
            backend_reachable=False,
            max_age_hours=self._max_age_hours,
            backend=self.backend_type.value,
        )


def create_cache_service(
    backend: CacheBackendType,
    config: CacheConfig,
    logger: Optional[AuditLogger] = None,
) -> CacheService:
    """
    Create a cache service for an explicit backend.

    Raises:
        ValueError: If the backend's connection settings are missing
    """
    if not config.enabled or backend == CacheBackendType.DISABLED:
        return DisabledCacheService(config.max_age_hours, logger=logger)

    if backend == CacheBackendType.RELATIONAL:
        from .sql_cache import SQLCacheService

        if config.mysql is None:
            raise ValueError("Relational cache requires MySQL host, user and database")
        return SQLCacheService.from_mysql_config(
            config.mysql, max_age_hours=config.max_age_hours, logger=logger
        )

    if backend == CacheBackendType.DOCUMENT:
        from .mongodb_cache import MongoDBCacheService

        if not config.mongodb_url:
            raise ValueError("Document cache requires a MongoDB connection string")
        return MongoDBCacheService(
            url=config.mongodb_url,
            database=config.mongodb_database,
            collection=config.mongodb_collection,
            max_age_hours=config.max_age_hours,
            logger=logger,
        )

    if backend == CacheBackendType.BLOB:
        from .blob_cache import BlobCacheService

        if not config.blob_token:
            raise ValueError("Blob cache requires BLOB_READ_WRITE_TOKEN")
        return BlobCacheService(
            token=config.blob_token,
            api_url=config.blob_api_url,
            max_age_hours=config.max_age_hours,
            logger=logger,
        )

    raise ValueError(f"Unknown cache backend: {backend}")


def parse_backend_name(name: str) -> Optional[CacheBackendType]:
    """Map a configured backend name or alias to a backend; None if unknown."""
    normalized = name.strip().lower()
    if normalized in BACKEND_ALIASES:
        return BACKEND_ALIASES[normalized]
    try:
        return CacheBackendType(normalized)
    except ValueError:
        return None


def select_backend(config: CacheConfig) -> CacheBackendType:
    """
    Backend priority: relational, document, blob, disabled.

    Raises:
        ValueError: If an explicitly configured backend name is unknown
    """
    if not config.enabled:
        return CacheBackendType.DISABLED
    if config.backend:
        backend = parse_backend_name(config.backend)
        if backend is None:
            raise ValueError(f"Unknown cache backend: {config.backend}")
        return backend
    if config.mysql is not None:
        return CacheBackendType.RELATIONAL
    if config.mongodb_url:
        return CacheBackendType.DOCUMENT
    if config.blob_token:
        return CacheBackendType.BLOB
    return CacheBackendType.DISABLED


def create_auto_cache_service(
    config: CacheConfig,
    logger: Optional[AuditLogger] = None,
) -> CacheService:
    """
    Create the highest-priority cache backend the configuration allows.

    An unknown or incompletely configured backend disables caching instead
    of failing the caller.
    """
    try:
        backend = select_backend(config)
        cache = create_cache_service(backend, config, logger)
    except ValueError as e:
        if logger:
            logger.log(
                level=LogLevel.WARN,
                component=CacheService.COMPONENT,
                message=f"Cache disabled: {e}",
                data={"backend": config.backend},
            )
        return DisabledCacheService(config.max_age_hours, logger=logger)

    if logger:
        logger.log(
            level=LogLevel.INFO,
            component=CacheService.COMPONENT,
            message=f"Using {backend.value} cache backend",
            data={"backend": backend.value, "max_age_hours": config.max_age_hours},
        )
    return cache
