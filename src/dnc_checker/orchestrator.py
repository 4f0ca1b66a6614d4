"""
Check Orchestrator for the do-not-call registry checker.

This module coordinates the components of a registry check:
- Phone number validation and normalization
- Result cache lookup and refresh
- The portal session protocol, with CAPTCHA resolution on a worker pool

A cache hit answers without any portal traffic. A miss runs the protocol
and offers the result to the cache, which keeps only definitive results.
"""

import time
from dataclasses import dataclass
from typing import Optional

from .audit_logger import AuditLogger, LoggingMixin
from .cache_service import CacheService, DisabledCacheService, create_auto_cache_service
from .captcha_resolver import CaptchaResolver
from .config import SystemConfig
from .exceptions import ValidationError
from .models import PhoneCheckResult
from .ocr_engine import OCREngine, create_ocr_engine
from .phone_validator import PhoneValidator
from .session_protocol import SessionProtocolEngine


@dataclass
class OrchestratorResult:
    """Result of an orchestrated registry check."""

    phone_number: str  # Registry format
    result: PhoneCheckResult
    from_cache: bool
    cache_age_hours: Optional[float]
    duration_ms: float


class CheckOrchestrator(LoggingMixin):
    """
    Main entry point for registry checks.

    Owns the OCR worker pool and the cache connection; use as an async
    context manager so both are released.
    """

    COMPONENT = "CheckOrchestrator"

    def __init__(
        self,
        config: SystemConfig,
        cache: Optional[CacheService] = None,
        ocr_engine: Optional[OCREngine] = None,
        validator: Optional[PhoneValidator] = None,
        protocol: Optional[SessionProtocolEngine] = None,
        transport=None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the check orchestrator.

        Args:
            config: System configuration
            cache: Optional cache service; selected from config when omitted
            ocr_engine: Optional OCR engine; selected from config when omitted
            validator: Optional phone validator
            protocol: Optional pre-built protocol engine
            transport: Optional httpx transport for portal requests
            logger: Optional audit logger
        """
        self._config = config
        self._logger = logger
        self._validator = validator or PhoneValidator()

        if cache is None:
            # Simulation mode never touches external stores
            if config.simulation_mode:
                cache = DisabledCacheService(config.cache.max_age_hours, logger=logger)
            else:
                cache = create_auto_cache_service(config.cache, logger=logger)
        self._cache = cache

        self._resolver: Optional[CaptchaResolver] = None
        if protocol is None:
            self._resolver = CaptchaResolver(
                engine=ocr_engine or create_ocr_engine(config.ocr),
                max_workers=config.ocr.max_workers,
                logger=logger,
            )
            protocol = SessionProtocolEngine(
                resolver=self._resolver,
                portal_config=config.portal,
                captcha_config=config.captcha,
                transport=transport,
                simulation_mode=config.simulation_mode,
                logger=logger,
            )
        self._protocol = protocol

    async def __aenter__(self) -> "CheckOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._resolver is not None:
            self._resolver.close()
        await self._cache.close()

    async def check(self, raw_number: str, ignore_cache: bool = False) -> OrchestratorResult:
        """
        Check a phone number against the registry.

        Args:
            raw_number: Phone number in any format the validator accepts
            ignore_cache: Skip the cache lookup (the fresh result is still stored)

        Returns:
            OrchestratorResult with the check result and where it came from

        Raises:
            ValidationError: If the number is not a valid number for the region
            TransportError: If the portal cannot be reached
            CaptchaUnsolvable: If no usable CAPTCHA text could be produced
        """
        start_time = time.perf_counter()

        try:
            phone_number = self._validator.normalize_or_raise(raw_number)
        except ValidationError as e:
            self._log_error(
                f"Phone number validation failed: {e.message}",
                error=e,
                data={"raw_number": raw_number},
            )
            raise

        self._log_info(
            f"Starting check for {phone_number}",
            {"raw_number": raw_number, "ignore_cache": ignore_cache},
        )

        if not ignore_cache:
            entry = await self._cache.get(phone_number)
            if entry is not None:
                return OrchestratorResult(
                    phone_number=phone_number,
                    result=PhoneCheckResult.from_payload(entry.payload),
                    from_cache=True,
                    cache_age_hours=entry.age_hours(),
                    duration_ms=(time.perf_counter() - start_time) * 1000,
                )

        result = await self._protocol.run(phone_number)
        await self._cache.set(phone_number, result.to_payload())

        return OrchestratorResult(
            phone_number=phone_number,
            result=result,
            from_cache=False,
            cache_age_hours=None,
            duration_ms=(time.perf_counter() - start_time) * 1000,
        )

    @property
    def validator(self) -> PhoneValidator:
        return self._validator

    @property
    def cache(self) -> CacheService:
        return self._cache

    @property
    def config(self) -> SystemConfig:
        return self._config
