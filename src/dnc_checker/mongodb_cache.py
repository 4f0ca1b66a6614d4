"""Document cache backend (MongoDB)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from .audit_logger import AuditLogger
from .cache_service import CacheService, parse_timestamp
from .enums import CacheBackendType, CacheErrorCode
from .exceptions import CacheUnavailable


INDEX_OPTIONS_CONFLICT = 85


def _naive_utc(value: datetime) -> datetime:
    # BSON dates carry no zone; pymongo reads them back as naive UTC
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class MongoDBCacheService(CacheService):
    """
    Cache stored as one document per phone number.

    A TTL index on timestamp lets the server expire records on its own;
    reads still apply the staleness check since TTL deletion is lazy.
    """

    COMPONENT = "MongoDBCache"
    backend_type = CacheBackendType.DOCUMENT

    def __init__(
        self,
        url: Optional[str] = None,
        database: str = "no_llamar_cache",
        collection: str = "phone_cache",
        max_age_hours: float = 24.0,
        client: Optional[MongoClient] = None,
        server_selection_timeout_ms: int = 5000,
        logger: Optional[AuditLogger] = None,
        **kwargs,
    ) -> None:
        """
        Initialize the document cache.

        Args:
            url: MongoDB connection string
            database: Database name
            collection: Collection name
            max_age_hours: Staleness threshold, also used for the TTL index
            client: Optional pre-built client, used instead of url
            server_selection_timeout_ms: Connection timeout for a new client
            logger: Optional audit logger
        """
        super().__init__(max_age_hours=max_age_hours, logger=logger, **kwargs)
        if client is None and not url:
            raise ValueError("Either url or client is required")
        self._url = url
        self._client = client
        self._owns_client = client is None
        self._database_name = database
        self._collection_name = collection
        self._timeout_ms = server_selection_timeout_ms
        self._indexes_ready = False

    def _collection(self) -> Collection:
        if self._client is None:
            self._client = MongoClient(self._url, serverSelectionTimeoutMS=self._timeout_ms)
        collection = self._client[self._database_name][self._collection_name]
        if not self._indexes_ready:
            try:
                self._ensure_indexes(collection)
            except PyMongoError as e:
                raise self._error(e, "connect")
            self._indexes_ready = True
        return collection

    def _ensure_indexes(self, collection: Collection) -> None:
        ttl_seconds = int(self.max_age_hours * 3600)
        try:
            collection.create_index([("timestamp", ASCENDING)], expireAfterSeconds=ttl_seconds)
        except OperationFailure as e:
            if e.code != INDEX_OPTIONS_CONFLICT:
                raise
            # TTL index exists with another max age
            collection.database.command(
                "collMod",
                collection.name,
                index={"keyPattern": {"timestamp": ASCENDING}, "expireAfterSeconds": ttl_seconds},
            )
            self._log_info(
                "Updated cache TTL index",
                {"expire_after_seconds": ttl_seconds},
            )
        collection.create_index([("phoneNumber", ASCENDING)])

    def _error(self, error: PyMongoError, operation: str) -> CacheUnavailable:
        code = (
            CacheErrorCode.CONNECTION_ERROR
            if isinstance(error, ConnectionFailure) or operation == "connect"
            else CacheErrorCode.QUERY_ERROR
        )
        return CacheUnavailable(
            code=code.value,
            message=f"Document cache {operation} failed: {error}",
            details={"operation": operation, "error_type": type(error).__name__},
        )

    def _fetch(self, phone_number: str) -> Optional[dict]:
        try:
            document = self._collection().find_one({"phoneNumber": phone_number}, {"_id": 0})
        except PyMongoError as e:
            raise self._error(e, "read")
        if document is None:
            return None

        # Timestamps are stored as BSON dates for the TTL index
        timestamp = parse_timestamp(document.get("timestamp"))
        document["timestamp"] = timestamp.isoformat() if timestamp else None
        return document

    def _store(self, phone_number: str, record: dict) -> None:
        document = dict(record, timestamp=_naive_utc(parse_timestamp(record["timestamp"])))
        try:
            self._collection().replace_one({"phoneNumber": phone_number}, document, upsert=True)
        except PyMongoError as e:
            raise self._error(e, "write")

    def _delete(self, phone_number: str) -> bool:
        try:
            result = self._collection().delete_many({"phoneNumber": phone_number})
        except PyMongoError as e:
            raise self._error(e, "delete")
        return result.deleted_count > 0

    def _purge_older_than(self, cutoff: datetime) -> int:
        try:
            result = self._collection().delete_many({"timestamp": {"$lt": _naive_utc(cutoff)}})
        except PyMongoError as e:
            raise self._error(e, "cleanup")
        return result.deleted_count

    def _ping(self) -> None:
        try:
            self._collection().database.command("ping")
        except PyMongoError as e:
            raise self._error(e, "connect")

    def _collect_stats(self) -> dict:
        try:
            collection = self._collection()
            total = collection.count_documents({})
            oldest = collection.find_one({}, sort=[("timestamp", ASCENDING)])
            newest = collection.find_one({}, sort=[("timestamp", DESCENDING)])
        except PyMongoError as e:
            raise self._error(e, "stats")

        def _iso(document: Optional[dict]) -> Optional[str]:
            timestamp = parse_timestamp(document.get("timestamp")) if document else None
            return timestamp.isoformat() if timestamp else None

        return {
            "total_entries": total,
            "oldest_entry": _iso(oldest),
            "newest_entry": _iso(newest),
        }

    def _close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
            self._indexes_ready = False
