"""
DNC Checker - Uruguayan do-not-call registry (Registro No Llame) checker.

This package checks phone numbers against the URSEC registry portal by
driving its session protocol, solving the portal CAPTCHA with OCR, and
caching definitive results in a pluggable store.
"""

__version__ = "0.1.0"
__author__ = "DNC Checker Team"

from dnc_checker.exceptions import (
    DncCheckerError,
    ValidationError,
    TransportError,
    ProtocolStructureError,
    CaptchaUnsolvable,
    OCREngineError,
    CacheUnavailable,
)
from dnc_checker.enums import (
    RegistryStatus,
    ProtocolStep,
    StructureErrorCode,
    TransportErrorCode,
    CaptchaSource,
    RecognitionMode,
    CacheBackendType,
    CacheErrorCode,
    PhoneValidationErrorCode,
    OCRErrorCode,
    LogLevel,
)
from dnc_checker.config import (
    PortalConfig,
    CaptchaConfig,
    OCRConfig,
    MySQLConfig,
    CacheConfig,
    LoggingConfig,
    SystemConfig,
    load_config_from_env,
)
from dnc_checker.models import (
    CookieJar,
    CheckSession,
    CaptchaCandidate,
    RankedCandidates,
    CaptchaChallenge,
    PhoneCheckResult,
    CacheEntry,
    CacheStats,
)
from dnc_checker.audit_logger import (
    AuditLogger,
    LogEntry,
)
from dnc_checker.phone_validator import (
    PhoneValidator,
    PhoneValidationResult,
    PhoneValidationError,
)
from dnc_checker.ocr_engine import (
    OCREngine,
    RecognitionOutput,
    TesseractOCREngine,
    RemoteOCREngine,
    create_ocr_engine,
)
from dnc_checker.captcha_resolver import (
    CaptchaResolver,
    FallbackCaptchaGenerator,
    rank_candidates,
)
from dnc_checker.retry_manager import (
    RetryManager,
    RetryResult,
)
from dnc_checker.portal_client import (
    PortalClient,
)
from dnc_checker.session_protocol import (
    SessionProtocolEngine,
)
from dnc_checker.cache_service import (
    CacheService,
    DisabledCacheService,
    create_cache_service,
    create_auto_cache_service,
    parse_backend_name,
    select_backend,
)
from dnc_checker.i18n import (
    get_message,
    get_all_message_keys,
    has_translation,
    get_missing_translations,
    validate_translations,
    TRANSLATIONS,
    SUPPORTED_LANGUAGES,
    DEFAULT_LANGUAGE,
)
from dnc_checker.orchestrator import (
    CheckOrchestrator,
    OrchestratorResult,
)
from dnc_checker.cli import (
    main as cli_main,
    create_parser,
    load_config_from_file,
    save_config_to_file,
)
from dnc_checker.self_test import (
    SelfTest,
    SelfTestResult,
    CheckItemResult,
    ConfigValidationResult,
    run_self_test,
)

__all__ = [
    # Exceptions
    "DncCheckerError",
    "ValidationError",
    "TransportError",
    "ProtocolStructureError",
    "CaptchaUnsolvable",
    "OCREngineError",
    "CacheUnavailable",
    # Enums
    "RegistryStatus",
    "ProtocolStep",
    "StructureErrorCode",
    "TransportErrorCode",
    "CaptchaSource",
    "RecognitionMode",
    "CacheBackendType",
    "CacheErrorCode",
    "PhoneValidationErrorCode",
    "OCRErrorCode",
    "LogLevel",
    # Configuration
    "PortalConfig",
    "CaptchaConfig",
    "OCRConfig",
    "MySQLConfig",
    "CacheConfig",
    "LoggingConfig",
    "SystemConfig",
    "load_config_from_env",
    # Models
    "CookieJar",
    "CheckSession",
    "CaptchaCandidate",
    "RankedCandidates",
    "CaptchaChallenge",
    "PhoneCheckResult",
    "CacheEntry",
    "CacheStats",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Phone Validator
    "PhoneValidator",
    "PhoneValidationResult",
    "PhoneValidationError",
    # OCR
    "OCREngine",
    "RecognitionOutput",
    "TesseractOCREngine",
    "RemoteOCREngine",
    "create_ocr_engine",
    # CAPTCHA Resolver
    "CaptchaResolver",
    "FallbackCaptchaGenerator",
    "rank_candidates",
    # Retry Manager
    "RetryManager",
    "RetryResult",
    # Portal / Protocol
    "PortalClient",
    "SessionProtocolEngine",
    # Cache
    "CacheService",
    "DisabledCacheService",
    "create_cache_service",
    "create_auto_cache_service",
    "parse_backend_name",
    "select_backend",
    # I18n
    "get_message",
    "get_all_message_keys",
    "has_translation",
    "get_missing_translations",
    "validate_translations",
    "TRANSLATIONS",
    "SUPPORTED_LANGUAGES",
    "DEFAULT_LANGUAGE",
    # Orchestrator
    "CheckOrchestrator",
    "OrchestratorResult",
    # CLI
    "cli_main",
    "create_parser",
    "load_config_from_file",
    "save_config_to_file",
    # Self-Test
    "SelfTest",
    "SelfTestResult",
    "CheckItemResult",
    "ConfigValidationResult",
    "run_self_test",
]
