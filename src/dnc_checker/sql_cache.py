"""
Relational cache backend (SQLAlchemy ORM).

One row per phone number in table phone_cache; writes are upserts, so the
latest check for a number wins.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, Text, create_engine, delete, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .audit_logger import AuditLogger
from .cache_service import CacheService, parse_timestamp
from .config import MySQLConfig
from .enums import CacheBackendType, CacheErrorCode
from .exceptions import CacheUnavailable


class Base(DeclarativeBase):
    pass


class PhoneCacheRecord(Base):
    """Cached check payload per phone number."""

    __tablename__ = "phone_cache"

    phone_number: Mapped[str] = mapped_column(String(20), primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)


class SQLCacheService(CacheService):
    """Cache stored in a relational database (MySQL in production)."""

    COMPONENT = "SQLCache"
    backend_type = CacheBackendType.RELATIONAL

    def __init__(
        self,
        url: str,
        max_age_hours: float = 24.0,
        connect_args: Optional[dict] = None,
        engine: Optional[Engine] = None,
        logger: Optional[AuditLogger] = None,
        **kwargs,
    ) -> None:
        """
        Initialize the relational cache.

        Args:
            url: SQLAlchemy database URL
            max_age_hours: Staleness threshold
            connect_args: Driver connection arguments (e.g. ssl)
            engine: Optional pre-built engine, used instead of url
            logger: Optional audit logger
        """
        super().__init__(max_age_hours=max_age_hours, logger=logger, **kwargs)
        self._engine = engine or create_engine(
            url,
            pool_pre_ping=True,
            connect_args=connect_args or {},
        )
        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._schema_ready = False

    @classmethod
    def from_mysql_config(
        cls,
        mysql: MySQLConfig,
        max_age_hours: float = 24.0,
        logger: Optional[AuditLogger] = None,
    ) -> SQLCacheService:
        connect_args = {"ssl": {"check_hostname": False}} if mysql.ssl else {}
        return cls(mysql.url, max_age_hours=max_age_hours, connect_args=connect_args, logger=logger)

    def _error(self, error: SQLAlchemyError, operation: str) -> CacheUnavailable:
        return CacheUnavailable(
            code=CacheErrorCode.QUERY_ERROR.value,
            message=f"Relational cache {operation} failed: {error}",
            details={"operation": operation, "error_type": type(error).__name__},
        )

    def _session(self) -> Session:
        if not self._schema_ready:
            try:
                Base.metadata.create_all(self._engine)
            except SQLAlchemyError as e:
                raise CacheUnavailable(
                    code=CacheErrorCode.CONNECTION_ERROR.value,
                    message=f"Relational cache unreachable: {e}",
                    details={"error_type": type(e).__name__},
                )
            self._schema_ready = True
        return self._session_factory()

    def _fetch(self, phone_number: str) -> Optional[dict]:
        try:
            with self._session() as session:
                row = session.get(PhoneCacheRecord, phone_number)
                if row is None:
                    return None
                timestamp = parse_timestamp(row.timestamp)
                payload_json = row.payload_json
        except SQLAlchemyError as e:
            raise self._error(e, "read")

        try:
            data = json.loads(payload_json)
        except json.JSONDecodeError:
            data = None
        return {
            "phoneNumber": phone_number,
            "timestamp": timestamp.isoformat() if timestamp else None,
            "data": data,
        }

    def _store(self, phone_number: str, record: dict) -> None:
        row = PhoneCacheRecord(
            phone_number=phone_number,
            timestamp=parse_timestamp(record["timestamp"]),
            payload_json=json.dumps(record["data"], ensure_ascii=False),
        )
        try:
            with self._session() as session, session.begin():
                session.merge(row)
        except SQLAlchemyError as e:
            raise self._error(e, "write")

    def _delete(self, phone_number: str) -> bool:
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    delete(PhoneCacheRecord).where(PhoneCacheRecord.phone_number == phone_number)
                )
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise self._error(e, "delete")

    def _purge_older_than(self, cutoff: datetime) -> int:
        try:
            with self._session() as session, session.begin():
                result = session.execute(
                    delete(PhoneCacheRecord).where(PhoneCacheRecord.timestamp < cutoff)
                )
                return result.rowcount
        except SQLAlchemyError as e:
            raise self._error(e, "cleanup")

    def _ping(self) -> None:
        try:
            with self._session() as session:
                session.execute(select(1))
        except SQLAlchemyError as e:
            raise CacheUnavailable(
                code=CacheErrorCode.CONNECTION_ERROR.value,
                message=f"Relational cache unreachable: {e}",
                details={"error_type": type(e).__name__},
            )

    def _collect_stats(self) -> dict:
        try:
            with self._session() as session:
                total, oldest, newest = session.execute(
                    select(
                        func.count(PhoneCacheRecord.phone_number),
                        func.min(PhoneCacheRecord.timestamp),
                        func.max(PhoneCacheRecord.timestamp),
                    )
                ).one()
        except SQLAlchemyError as e:
            raise self._error(e, "stats")

        oldest = parse_timestamp(oldest)
        newest = parse_timestamp(newest)
        return {
            "total_entries": int(total),
            "oldest_entry": oldest.isoformat() if oldest else None,
            "newest_entry": newest.isoformat() if newest else None,
        }

    def _close(self) -> None:
        self._engine.dispose()
