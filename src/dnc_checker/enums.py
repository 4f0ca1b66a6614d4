"""
Enumeration types for the do-not-call registry checker.

These enums provide type-safe constants for registry outcomes, protocol
steps, error codes and configuration options throughout the system.
"""

from enum import Enum


class RegistryStatus(Enum):
    """Outcome of a registry check."""

    REGISTERED = "registered"
    NOT_REGISTERED = "not_registered"
    UNKNOWN = "unknown"


class ProtocolStep(Enum):
    """States of the portal session state machine."""

    INIT = "init"
    PORTAL_FETCHED = "portal_fetched"
    FRAME_RESOLVED = "frame_resolved"
    URL_EXTRACTED = "url_extracted"
    TOKENS_PARSED = "tokens_parsed"
    PHONE_SUBMITTED = "phone_submitted"
    FORMS_CHECKED = "forms_checked"
    RESOLVED = "resolved"


class StructureErrorCode(Enum):
    """Structural failures reported in the result instead of raised."""

    FRAME_NOT_FOUND = "frame_not_found"
    CODE_NOT_FOUND = "code_not_found"
    TOKENS_NOT_FOUND = "tokens_not_found"


class TransportErrorCode(Enum):
    """Error codes for portal transport failures."""

    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    TLS_ERROR = "tls_error"
    SERVER_ERROR = "server_error"


class CaptchaSource(Enum):
    """Where a submitted CAPTCHA text came from."""

    OCR = "ocr"
    FALLBACK = "fallback"


class RecognitionMode(Enum):
    """OCR recognition configurations, tried in declaration order.

    Values are (page segmentation mode, engine mode) pairs.
    """

    SINGLE_LINE = (7, 3)
    SINGLE_WORD = (8, 1)
    SINGLE_CHAR = (10, 0)
    RAW_LINE = (13, 3)

    @property
    def psm(self) -> int:
        return self.value[0]

    @property
    def oem(self) -> int:
        return self.value[1]


class CacheBackendType(Enum):
    """Cache storage backends, in selection priority order."""

    RELATIONAL = "relational"
    DOCUMENT = "document"
    BLOB = "blob"
    DISABLED = "disabled"


class CacheErrorCode(Enum):
    """Error codes for cache backend failures."""

    CONNECTION_ERROR = "connection_error"
    QUERY_ERROR = "query_error"
    INVALID_RECORD = "invalid_record"


class PhoneValidationErrorCode(Enum):
    """Error codes for phone number validation failures."""

    EMPTY_INPUT = "empty_input"
    PARSE_ERROR = "parse_error"
    INVALID_NUMBER = "invalid_number"
    WRONG_REGION = "wrong_region"


class OCRErrorCode(Enum):
    """Error codes for OCR engine failures."""

    ENGINE_UNAVAILABLE = "engine_unavailable"
    RECOGNITION_FAILED = "recognition_failed"
    INVALID_IMAGE = "invalid_image"


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
