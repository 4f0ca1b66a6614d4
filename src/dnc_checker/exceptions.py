"""
Exception classes for the do-not-call registry checker.

All exceptions inherit from DncCheckerError and carry a machine-readable
code, a human-readable message and optional structured details.
"""

from typing import Optional


class DncCheckerError(Exception):
    """Base exception for all registry checker errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DncCheckerError):
    """Raised when a phone number cannot be validated or normalized."""

    pass


class TransportError(DncCheckerError):
    """Raised when the portal cannot be reached (timeout, DNS, TLS, 5xx)."""

    pass


class ProtocolStructureError(DncCheckerError):
    """Raised when a portal page lacks an expected structural element."""

    pass


class CaptchaUnsolvable(DncCheckerError):
    """Raised when the inner CAPTCHA retry budget is exhausted."""

    pass


class OCREngineError(DncCheckerError):
    """Raised when the OCR engine is unreachable or fails unrecoverably."""

    pass


class CacheUnavailable(DncCheckerError):
    """Raised by cache backends when the store cannot be reached.

    Never escapes the cache layer.
    """

    pass
