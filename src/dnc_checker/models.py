"""
Data models for the do-not-call registry checker.

This module defines the data structures used for per-check session state,
CAPTCHA recognition candidates, check results and cache records.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from .enums import CaptchaSource, ProtocolStep, RegistryStatus


class CookieJar:
    """
    Ordered name -> value cookie store owned by a single check session.

    Later values overwrite earlier ones while the first-insertion order of
    names is kept, so the rendered Cookie header is stable across steps.
    """

    def __init__(self, cookies: Optional[dict[str, str]] = None) -> None:
        self._cookies: dict[str, str] = dict(cookies or {})

    def __len__(self) -> int:
        return len(self._cookies)

    def __contains__(self, name: str) -> bool:
        return name in self._cookies

    def __repr__(self) -> str:
        return f"CookieJar(names={list(self._cookies)!r})"

    def get(self, name: str) -> Optional[str]:
        return self._cookies.get(name)

    def merge(self, cookies: dict[str, str]) -> None:
        """Merge a name -> value mapping into the jar."""
        for name, value in cookies.items():
            self._cookies[name] = value

    def merge_set_cookie_headers(self, headers: Iterable[str]) -> int:
        """
        Merge raw Set-Cookie header values.

        Only the leading name=value pair of each header is kept; attributes
        (Path, Domain, Expires, ...) are ignored.

        Returns:
            Number of cookies merged
        """
        merged = 0
        for header in headers:
            pair = header.split(";", 1)[0]
            name, sep, value = pair.partition("=")
            name = name.strip()
            if not sep or not name:
                continue
            self._cookies[name] = value.strip()
            merged += 1
        return merged

    def merge_from_response(self, response) -> int:
        """Merge every Set-Cookie header of an httpx response."""
        return self.merge_set_cookie_headers(response.headers.get_list("set-cookie"))

    def as_dict(self) -> dict[str, str]:
        return dict(self._cookies)

    def render(self) -> str:
        """Render as a Cookie request header value."""
        return "; ".join(f"{name}={value}" for name, value in self._cookies.items())


@dataclass
class CheckSession:
    """Mutable state of one registry check; discarded when the check ends."""

    phone_number: str
    cookies: CookieJar = field(default_factory=CookieJar)
    tab_id: Optional[str] = None
    token_id: Optional[str] = None
    referer_url: Optional[str] = None  # Work-area URL
    attempts: int = 0  # Outer CAPTCHA cycles executed
    step: ProtocolStep = ProtocolStep.INIT
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    used_tls_fallback: bool = False


@dataclass
class CaptchaCandidate:
    """One cleaned OCR reading of a CAPTCHA image."""

    text: str
    confidence: float  # 0-100
    config_id: int  # Index of the recognition configuration
    config_name: str = ""
    # Ambiguous-character spellings; informational only
    alternatives: list[str] = field(default_factory=list)


@dataclass
class RankedCandidates:
    """Candidates ordered best-first."""

    candidates: list[CaptchaCandidate] = field(default_factory=list)
    source: CaptchaSource = CaptchaSource.OCR

    @property
    def alternatives(self) -> list[str]:
        return self.candidates[0].alternatives if self.candidates else []

    @property
    def chosen_text(self) -> str:
        return self.candidates[0].text if self.candidates else ""


@dataclass
class CaptchaChallenge:
    """One CAPTCHA image fetch and its recognition, per outer attempt."""

    captcha_name: str
    image_url: str
    ranked: Optional[RankedCandidates] = None
    inner_attempts: int = 0

    @property
    def chosen_text(self) -> str:
        return self.ranked.chosen_text if self.ranked else ""

    @property
    def source(self) -> Optional[CaptchaSource]:
        return self.ranked.source if self.ranked else None


@dataclass
class PhoneCheckResult:
    """Outcome of one protocol run; its payload is what the cache stores."""

    phone_number: str
    status: RegistryStatus
    response: str = ""  # Raw RAF_RESPUESTA_STR value
    is_in_record: bool = False
    captcha_solve_attempts: int = 0
    fallback_captchas: int = 0
    error: Optional[str] = None
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    duration_ms: float = 0.0
    used_tls_fallback: bool = False
    simulated: bool = False

    @property
    def is_definitive(self) -> bool:
        return not self.error and bool(self.response)

    def to_payload(self) -> dict:
        """JSON-safe representation used by the cache and the CLI."""
        payload = {
            "phoneNumber": self.phone_number,
            "status": self.status.value,
            "response": self.response,
            "isInRecord": self.is_in_record,
            "captchaSolveAttempts": self.captcha_solve_attempts,
            "fallbackCaptchas": self.fallback_captchas,
            "timestamp": self.timestamp,
            "durationMs": round(self.duration_ms, 1),
        }
        if self.error:
            payload["error"] = self.error
        if self.simulated:
            payload["simulated"] = True
        return payload

    @classmethod
    def from_payload(cls, payload: dict) -> "PhoneCheckResult":
        """Rebuild a result from a cached payload."""
        is_in_record = bool(payload.get("isInRecord", False))
        status_value = payload.get("status")
        if status_value:
            status = RegistryStatus(status_value)
        elif payload.get("response"):
            status = (
                RegistryStatus.REGISTERED if is_in_record
                else RegistryStatus.NOT_REGISTERED
            )
        else:
            status = RegistryStatus.UNKNOWN

        return cls(
            phone_number=str(payload.get("phoneNumber", "")),
            status=status,
            response=payload.get("response") or "",
            is_in_record=is_in_record,
            captcha_solve_attempts=int(payload.get("captchaSolveAttempts", 0)),
            fallback_captchas=int(payload.get("fallbackCaptchas", 0)),
            error=payload.get("error"),
            timestamp=payload.get("timestamp") or datetime.now(timezone.utc).isoformat(),
            duration_ms=float(payload.get("durationMs", 0.0)),
        )


@dataclass
class CacheEntry:
    """A cached payload for one phone number."""

    phone_number: str
    timestamp: datetime  # Timezone-aware UTC write time
    payload: dict

    def age_hours(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.timestamp).total_seconds() / 3600.0

    def to_record(self) -> dict:
        """Persisted layout shared by all backends."""
        return {
            "phoneNumber": self.phone_number,
            "timestamp": self.timestamp.isoformat(),
            "data": self.payload,
        }


@dataclass
class CacheStats:
    """Cache backend statistics."""

    enabled: bool
    backend_reachable: bool
    max_age_hours: float
    backend: str
    total_entries: Optional[int] = None
    oldest_entry: Optional[str] = None
    newest_entry: Optional[str] = None
