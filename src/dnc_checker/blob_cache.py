"""
Blob cache backend (Vercel Blob REST API).

Each phone number is one JSON blob at pathname phone-cache-{phone}.json,
written without a random suffix so the pathname is stable and overwritten
on refresh.
"""

import json
from datetime import datetime
from typing import Iterator, Optional

import httpx

from .audit_logger import AuditLogger
from .cache_service import KEY_PREFIX, CacheService, parse_timestamp
from .enums import CacheBackendType, CacheErrorCode
from .exceptions import CacheUnavailable


API_VERSION = "7"
LIST_PAGE_SIZE = 1000


class BlobCacheService(CacheService):
    """Cache stored in a blob store over HTTP."""

    COMPONENT = "BlobCache"
    backend_type = CacheBackendType.BLOB

    def __init__(
        self,
        token: str,
        api_url: str = "https://blob.vercel-storage.com",
        max_age_hours: float = 24.0,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
        logger: Optional[AuditLogger] = None,
        **kwargs,
    ) -> None:
        """
        Initialize the blob cache.

        Args:
            token: Read-write token for the blob store
            api_url: Blob API base URL
            max_age_hours: Staleness threshold
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport (tests use httpx.MockTransport)
            logger: Optional audit logger
        """
        super().__init__(max_age_hours=max_age_hours, logger=logger, **kwargs)
        self._api_url = api_url.rstrip("/")
        # Sent to the API only; blob contents are read from the public host
        self._api_headers = {
            "Authorization": f"Bearer {token}",
            "x-api-version": API_VERSION,
        }
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    def pathname(self, phone_number: str) -> str:
        return f"{self.generate_key(phone_number)}.json"

    def _request(
        self,
        method: str,
        url: str,
        headers: Optional[dict] = None,
        authenticated: bool = True,
        **kwargs,
    ) -> httpx.Response:
        request_headers = dict(self._api_headers) if authenticated else {}
        request_headers.update(headers or {})
        try:
            response = self._client.request(method, url, headers=request_headers, **kwargs)
        except httpx.HTTPError as e:
            raise CacheUnavailable(
                code=CacheErrorCode.CONNECTION_ERROR.value,
                message=f"Blob store unreachable: {e}",
                details={"method": method, "error_type": type(e).__name__},
            )
        if response.status_code >= 400 and response.status_code != 404:
            raise CacheUnavailable(
                code=CacheErrorCode.QUERY_ERROR.value,
                message=f"Blob store returned HTTP {response.status_code}",
                details={"method": method, "status_code": response.status_code},
            )
        return response

    def _json(self, response: httpx.Response) -> dict:
        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise CacheUnavailable(
                code=CacheErrorCode.QUERY_ERROR.value,
                message=f"Blob store returned malformed JSON: {e}",
                details={"url": str(response.request.url)},
            )

    def _head(self, pathname: str) -> Optional[dict]:
        """Blob metadata ({url, pathname, uploadedAt, ...}) or None if absent."""
        response = self._request("GET", f"{self._api_url}/", params={"url": pathname})
        if response.status_code == 404:
            return None
        return self._json(response)

    def _list(self) -> Iterator[dict]:
        cursor = None
        while True:
            params = {"prefix": f"{KEY_PREFIX}-", "limit": str(LIST_PAGE_SIZE)}
            if cursor:
                params["cursor"] = cursor
            page = self._json(self._request("GET", f"{self._api_url}/", params=params))
            yield from page.get("blobs", [])
            cursor = page.get("cursor")
            if not page.get("hasMore") or not cursor:
                return

    def _delete_urls(self, urls: list[str]) -> None:
        if urls:
            self._request("POST", f"{self._api_url}/delete", json={"urls": urls})

    def _fetch(self, phone_number: str) -> Optional[dict]:
        metadata = self._head(self.pathname(phone_number))
        if metadata is None or not metadata.get("url"):
            return None

        response = self._request("GET", metadata["url"], authenticated=False)
        if response.status_code == 404:
            return None
        try:
            return response.json()
        except json.JSONDecodeError:
            return {}

    def _store(self, phone_number: str, record: dict) -> None:
        self._request(
            "PUT",
            f"{self._api_url}/{self.pathname(phone_number)}",
            content=json.dumps(record, ensure_ascii=False).encode("utf-8"),
            headers={
                "x-content-type": "application/json",
                "x-add-random-suffix": "0",
                "x-allow-overwrite": "1",
            },
        )

    def _delete(self, phone_number: str) -> bool:
        metadata = self._head(self.pathname(phone_number))
        if metadata is None or not metadata.get("url"):
            return False
        self._delete_urls([metadata["url"]])
        return True

    def _purge_older_than(self, cutoff: datetime) -> int:
        stale = []
        for blob in self._list():
            uploaded = parse_timestamp(blob.get("uploadedAt"))
            if uploaded is not None and uploaded < cutoff:
                stale.append(blob["url"])
        self._delete_urls(stale)
        return len(stale)

    def _ping(self) -> None:
        self._request("GET", f"{self._api_url}/", params={"prefix": f"{KEY_PREFIX}-", "limit": "1"})

    def _collect_stats(self) -> dict:
        uploaded = [
            timestamp
            for timestamp in (parse_timestamp(blob.get("uploadedAt")) for blob in self._list())
            if timestamp is not None
        ]
        return {
            "total_entries": len(uploaded),
            "oldest_entry": min(uploaded).isoformat() if uploaded else None,
            "newest_entry": max(uploaded).isoformat() if uploaded else None,
        }

    def _close(self) -> None:
        self._client.close()
