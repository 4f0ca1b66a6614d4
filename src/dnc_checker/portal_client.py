"""
HTTP client for the registry portal.

Wraps an httpx.AsyncClient with the browser-like headers the portal
expects for each kind of request. Cookies are carried explicitly through
the caller's CookieJar; the underlying client's own cookie store is
cleared after every response so no state leaks between checks. Redirects
are followed here rather than by httpx so every hop's Set-Cookie reaches
the jar.
"""

import ssl
import time
from typing import Optional

import httpx

from .audit_logger import AuditLogger, LoggingMixin
from .config import PortalConfig
from .enums import TransportErrorCode
from .exceptions import TransportError
from .models import CookieJar


CHROME_120_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
CHROME_138_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/138.0.0.0 Safari/537.36"
)
CHROME_120_CH_UA = '"Not_A Brand";v="8", "Chromium";v="120", "Google Chrome";v="120"'
CHROME_138_CH_UA = '"Not)A;Brand";v="8", "Chromium";v="138", "Google Chrome";v="138"'

HTML_ACCEPT = (
    "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,"
    "image/webp,image/apng,*/*;q=0.8"
)
XHR_ACCEPT = "text/javascript, text/html, application/xml, text/xml, */*"
IMAGE_ACCEPT = "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded; charset=UTF-8"

TLS_FALLBACK_TIMEOUT = 15.0
MAX_REDIRECTS = 10


def create_permissive_ssl_context() -> ssl.SSLContext:
    """TLS 1.2 only, no certificate or hostname checks, legacy renegotiation allowed."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.maximum_version = ssl.TLSVersion.TLSv1_2
    context.options |= getattr(ssl, "OP_LEGACY_SERVER_CONNECT", 0x4)
    return context


def is_certificate_error(error: Exception) -> bool:
    message = str(error).lower()
    return "ssl" in message or "certificate" in message


class PortalClient(LoggingMixin):
    """
    One portal HTTP session.

    Use as an async context manager; the client is closed on exit.
    """

    COMPONENT = "PortalClient"

    def __init__(
        self,
        config: Optional[PortalConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the portal client.

        Args:
            config: Portal endpoints and timeouts
            transport: Optional httpx transport (tests use httpx.MockTransport)
            logger: Optional audit logger
        """
        self._config = config or PortalConfig()
        self._transport = transport
        self._logger = logger
        self._client: Optional[httpx.AsyncClient] = None
        self._used_tls_fallback = False

    async def __aenter__(self) -> "PortalClient":
        self._client = self._build_client(permissive=False)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def used_tls_fallback(self) -> bool:
        return self._used_tls_fallback

    def _build_client(self, permissive: bool) -> httpx.AsyncClient:
        timeout = self._config.timeout_seconds
        verify: object = False
        if permissive:
            timeout = max(timeout, TLS_FALLBACK_TIMEOUT)
            verify = create_permissive_ssl_context()
        return httpx.AsyncClient(
            verify=verify,
            timeout=httpx.Timeout(timeout),
            follow_redirects=False,
            transport=self._transport,
        )

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client(permissive=False)
        return self._client

    # Header profiles

    def navigation_headers(self, cookies: CookieJar, referer: Optional[str] = None) -> dict:
        headers = {
            "User-Agent": CHROME_120_UA,
            "Accept": HTML_ACCEPT,
            "Accept-Language": self._config.accept_language,
            "Upgrade-Insecure-Requests": "1",
            "Sec-Fetch-Dest": "iframe" if referer else "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "same-origin" if referer else "none",
            "sec-ch-ua": CHROME_120_CH_UA,
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"Windows"',
        }
        if referer:
            headers["Referer"] = referer
        else:
            headers["Sec-Fetch-User"] = "?1"
            headers["Cache-Control"] = "max-age=0"
        if len(cookies):
            headers["Cookie"] = cookies.render()
        return headers

    def xhr_headers(self, cookies: CookieJar, referer: str) -> dict:
        headers = {
            "User-Agent": CHROME_138_UA,
            "Accept": XHR_ACCEPT,
            "Accept-Language": self._config.accept_language,
            "Content-Type": FORM_CONTENT_TYPE,
            "Origin": self._config.origin,
            "Referer": referer,
            "X-Requested-With": "XMLHttpRequest",
            "Sec-Fetch-Dest": "empty",
            "Sec-Fetch-Mode": "cors",
            "Sec-Fetch-Site": "same-origin",
            "sec-ch-ua": CHROME_138_CH_UA,
            "sec-ch-ua-mobile": "?0",
            "sec-ch-ua-platform": '"Windows"',
        }
        if len(cookies):
            headers["Cookie"] = cookies.render()
        return headers

    def image_headers(self, cookies: CookieJar, referer: str) -> dict:
        headers = {
            "User-Agent": CHROME_138_UA,
            "Accept": IMAGE_ACCEPT,
            "Accept-Language": self._config.accept_language,
            "Referer": referer,
            "Sec-Fetch-Dest": "image",
            "Sec-Fetch-Mode": "no-cors",
            "Sec-Fetch-Site": "same-origin",
        }
        if len(cookies):
            headers["Cookie"] = cookies.render()
        return headers

    # Requests

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict,
        cookies: CookieJar,
        content: Optional[str] = None,
    ) -> httpx.Response:
        """
        Send one request and follow its redirects by hand.

        Set-Cookie headers of every hop are merged into the session jar and
        the jar is re-rendered onto each same-host redirected request.
        """
        client = self._ensure_client()
        start_time = time.perf_counter()
        merged = 0
        hops = 0
        request_url = httpx.URL(url)
        hop_method, hop_headers, hop_content = method, headers, content
        while True:
            try:
                response = await client.request(
                    hop_method, request_url, headers=hop_headers, content=hop_content
                )
            except httpx.HTTPError as e:
                raise self._to_transport_error(e, method, url)
            finally:
                client.cookies.clear()

            merged += cookies.merge_from_response(response)
            if not response.is_redirect or "location" not in response.headers:
                break
            if hops >= MAX_REDIRECTS:
                raise TransportError(
                    code=TransportErrorCode.NETWORK_ERROR.value,
                    message=f"Too many redirects (more than {MAX_REDIRECTS})",
                    details={"url": url, "method": method},
                )
            hops += 1
            next_url = response.url.join(response.headers["location"])
            hop_method, hop_headers, hop_content = self._redirect_request(
                response.status_code, hop_method, hop_headers, hop_content, cookies,
                same_host=next_url.host == request_url.host,
            )
            request_url = next_url

        self._log_debug(
            f"{method} {url} -> {response.status_code}",
            {
                "status_code": response.status_code,
                "cookies_merged": merged,
                "redirects": hops,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 1),
            },
        )

        if response.status_code >= 500:
            raise TransportError(
                code=TransportErrorCode.SERVER_ERROR.value,
                message=f"Portal server error: {response.status_code}",
                details={"url": url, "method": method, "status_code": response.status_code},
            )
        return response

    @staticmethod
    def _redirect_request(
        status_code: int,
        method: str,
        headers: dict,
        content: Optional[str],
        cookies: CookieJar,
        same_host: bool,
    ) -> tuple[str, dict, Optional[str]]:
        # 303, and 301/302 after a POST, continue as a bodiless GET
        headers = {k: v for k, v in headers.items() if k.lower() != "cookie"}
        if status_code == 303 or (status_code in (301, 302) and method == "POST"):
            method = "GET"
            content = None
            headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
        if same_host and len(cookies):
            headers["Cookie"] = cookies.render()
        return method, headers, content

    def _to_transport_error(self, error: httpx.HTTPError, method: str, url: str) -> TransportError:
        details = {"url": url, "method": method, "error_type": type(error).__name__}
        if isinstance(error, httpx.TimeoutException):
            return TransportError(
                code=TransportErrorCode.TIMEOUT.value,
                message=f"Portal request timed out after {self._config.timeout_seconds}s",
                details=details,
            )
        if isinstance(error, httpx.ConnectError) and is_certificate_error(error):
            return TransportError(
                code=TransportErrorCode.TLS_ERROR.value,
                message=f"TLS connection error: {error}",
                details=details,
            )
        return TransportError(
            code=TransportErrorCode.NETWORK_ERROR.value,
            message=f"Connection error: {error}",
            details=details,
        )

    async def fetch_portal(self, cookies: CookieJar) -> httpx.Response:
        """
        GET the portal entry page.

        A certificate-class connection failure is retried exactly once with
        the permissive TLS profile; the session stays on that client.
        """
        url = self._config.portal_url
        try:
            return await self._send("GET", url, self.navigation_headers(cookies), cookies)
        except TransportError as e:
            if e.code != TransportErrorCode.TLS_ERROR.value or self._used_tls_fallback:
                raise
            self._log_warn(
                "Portal TLS handshake failed, retrying with permissive profile",
                {"error": e.message},
            )

        if self._client is not None:
            await self._client.aclose()
        self._client = self._build_client(permissive=True)
        self._used_tls_fallback = True
        return await self._send("GET", url, self.navigation_headers(cookies), cookies)

    async def get_page(self, url: str, cookies: CookieJar, referer: str) -> httpx.Response:
        return await self._send("GET", url, self.navigation_headers(cookies, referer), cookies)

    async def post_form(
        self,
        url: str,
        body: str,
        cookies: CookieJar,
        referer: str,
    ) -> httpx.Response:
        return await self._send("POST", url, self.xhr_headers(cookies, referer), cookies, content=body)

    async def get_image(self, url: str, cookies: CookieJar, referer: str) -> bytes:
        response = await self._send("GET", url, self.image_headers(cookies, referer), cookies)
        return response.content

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
