"""
Startup Self-Test module for the do-not-call registry checker.

Validates the configuration and verifies that the collaborators a check
depends on are usable: the registry portal, the OCR engine and the result
cache. An unreachable cache is reported as a warning only, since checks
still work without it.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

import httpx

from .cache_service import CacheService, create_cache_service, parse_backend_name, select_backend
from .config import SystemConfig
from .i18n import SUPPORTED_LANGUAGES, get_message
from .ocr_engine import OCREngine, create_ocr_engine


@dataclass
class CheckItemResult:
    """Result of one self-test check."""

    name: str  # 'portal', 'ocr', 'cache'
    success: bool
    response_time_ms: float
    detail: Optional[str] = None
    error: Optional[str] = None
    warning_only: bool = False  # A failure does not fail the self-test


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class SelfTestResult:
    """Complete self-test result."""

    success: bool
    config_validation: ConfigValidationResult
    checks: list[CheckItemResult] = field(default_factory=list)
    total_duration_ms: float = 0.0

    @property
    def failed_checks(self) -> list[CheckItemResult]:
        return [c for c in self.checks if not c.success]


class SelfTest:
    """
    Startup self-test.

    Performs:
    1. Configuration validation
    2. Portal reachability
    3. OCR engine availability
    4. Cache backend reachability (warning only)
    """

    # Timeout for connectivity tests (shorter than normal operations)
    CONNECTIVITY_TIMEOUT = 5.0

    def __init__(
        self,
        config: SystemConfig,
        ocr_engine: Optional[OCREngine] = None,
        cache: Optional[CacheService] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the self-test.

        Args:
            config: System configuration to validate and test
            ocr_engine: Optional OCR engine; selected from config when omitted
            cache: Optional cache service; selected from config when omitted
            transport: Optional httpx transport for the portal check
        """
        self._config = config
        self._ocr_engine = ocr_engine
        self._cache = cache
        self._transport = transport

    async def run(self) -> SelfTestResult:
        start_time = time.perf_counter()

        config_result = self.validate_config()
        if not config_result.valid:
            return SelfTestResult(
                success=False,
                config_validation=config_result,
                total_duration_ms=self._elapsed_ms(start_time),
            )

        checks = list(await asyncio.gather(
            self._test_portal(),
            self._test_ocr(),
            self._test_cache(),
        ))

        success = all(c.success or c.warning_only for c in checks)
        return SelfTestResult(
            success=success,
            config_validation=config_result,
            checks=checks,
            total_duration_ms=self._elapsed_ms(start_time),
        )

    def validate_config(self) -> ConfigValidationResult:
        """
        Validate the system configuration.

        Checks:
        - The portal URL uses HTTPS
        - CAPTCHA budgets are at least one attempt and length bounds are ordered
        - The cache backend name is known
        - The language is supported

        Returns:
            ConfigValidationResult with validation status
        """
        errors: list[str] = []
        warnings: list[str] = []
        config = self._config

        if urlparse(config.portal.portal_url).scheme.lower() != "https":
            errors.append(f"Portal URL must use HTTPS: {config.portal.portal_url}")
        if config.portal.timeout_seconds <= 0:
            errors.append("Portal timeout must be positive")

        captcha = config.captcha
        if captcha.max_outer_attempts < 1 or captcha.max_inner_attempts < 1:
            errors.append("CAPTCHA attempt budgets must be at least 1")
        if captcha.min_submit_length > captcha.max_submit_length:
            errors.append("CAPTCHA submit length bounds are inverted")
        if captcha.min_candidate_length > captcha.max_candidate_length:
            errors.append("CAPTCHA candidate length bounds are inverted")
        if not captcha.charset:
            errors.append("CAPTCHA charset is empty")

        if config.ocr.api_url and urlparse(config.ocr.api_url).scheme.lower() not in ("http", "https"):
            errors.append(f"OCR API URL is not an HTTP URL: {config.ocr.api_url}")

        if config.cache.backend and parse_backend_name(config.cache.backend) is None:
            errors.append(f"Unknown cache backend: {config.cache.backend}")
        if config.cache.max_age_hours <= 0:
            errors.append("Cache max age must be positive")
        if not config.cache.enabled:
            warnings.append("Result cache is disabled")

        if config.language not in SUPPORTED_LANGUAGES:
            errors.append(f"Unsupported language: {config.language}")
        if config.simulation_mode:
            warnings.append("Simulation mode is enabled - no registry checks are made")

        return ConfigValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    async def _test_portal(self) -> CheckItemResult:
        """
        Test that the portal answers.

        Certificates are not verified here: reachability is what matters, the
        protocol engine handles the TLS profile itself.
        """
        start_time = time.perf_counter()
        url = self._config.portal.portal_url

        try:
            async with httpx.AsyncClient(
                verify=False,
                timeout=httpx.Timeout(self.CONNECTIVITY_TIMEOUT),
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            return CheckItemResult(
                name="portal",
                success=False,
                response_time_ms=self._elapsed_ms(start_time),
                detail=url,
                error=f"Connection timed out after {self.CONNECTIVITY_TIMEOUT}s",
            )
        except httpx.HTTPError as e:
            return CheckItemResult(
                name="portal",
                success=False,
                response_time_ms=self._elapsed_ms(start_time),
                detail=url,
                error=f"Connection error: {e}",
            )

        # Any answer below 5xx means the server is up
        success = response.status_code < 500
        return CheckItemResult(
            name="portal",
            success=success,
            response_time_ms=self._elapsed_ms(start_time),
            detail=url,
            error=None if success else f"Server error: {response.status_code}",
        )

    async def _test_ocr(self) -> CheckItemResult:
        start_time = time.perf_counter()
        engine = self._ocr_engine or create_ocr_engine(self._config.ocr)

        loop = asyncio.get_running_loop()
        available = await loop.run_in_executor(None, engine.is_available)

        return CheckItemResult(
            name="ocr",
            success=available,
            response_time_ms=self._elapsed_ms(start_time),
            detail=type(engine).__name__,
            error=None if available else "OCR engine unavailable, fallback CAPTCHA text would be used",
        )

    async def _test_cache(self) -> CheckItemResult:
        start_time = time.perf_counter()
        owns_cache = self._cache is None
        try:
            # Built strictly so incomplete backend settings show up here
            cache = self._cache or create_cache_service(
                select_backend(self._config.cache), self._config.cache
            )
        except ValueError as e:
            return CheckItemResult(
                name="cache",
                success=False,
                response_time_ms=self._elapsed_ms(start_time),
                error=str(e),
                warning_only=True,
            )

        try:
            if not cache.enabled:
                return CheckItemResult(
                    name="cache",
                    success=True,
                    response_time_ms=self._elapsed_ms(start_time),
                    detail=cache.backend_type.value,
                    warning_only=True,
                )
            reachable = await cache.ping()
        finally:
            if owns_cache:
                await cache.close()

        return CheckItemResult(
            name="cache",
            success=reachable,
            response_time_ms=self._elapsed_ms(start_time),
            detail=cache.backend_type.value,
            error=None if reachable else "Cache backend unreachable, results will not be cached",
            warning_only=True,
        )

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.perf_counter() - start_time) * 1000

    def print_results(self, result: SelfTestResult, language: str = "es") -> None:
        """
        Print self-test results to stdout.

        Args:
            result: Self-test result to print
            language: Output language ('es' or 'en')
        """
        print(get_message("selftest.header", language))
        print("=" * 60)

        print(f"\n{get_message('selftest.config_validation', language)}")
        if result.config_validation.valid:
            print(f"  ✓ {get_message('selftest.config_valid', language)}")
        else:
            print(f"  ✗ {get_message('selftest.config_invalid', language)}")
            for error in result.config_validation.errors:
                print(f"    - {error}")

        if result.config_validation.warnings:
            print(f"\n  {get_message('selftest.warnings', language)}")
            for warning in result.config_validation.warnings:
                print(f"    - {warning}")

        if result.checks:
            print(f"\n{get_message('selftest.connectivity', language)}")
            for check in result.checks:
                if check.success:
                    status = "✓"
                elif check.warning_only:
                    status = "!"
                else:
                    status = "✗"
                label = get_message(f"selftest.check_{check.name}", language)
                detail = f" ({check.detail})" if check.detail else ""
                print(f"  {status} {label}{detail} ({check.response_time_ms:.0f}ms)")
                if check.error:
                    print(f"      {check.error}")

        print(f"\n{'-' * 60}")
        if result.success:
            print(f"✓ {get_message('selftest.success', language)}")
        else:
            print(f"✗ {get_message('selftest.failed', language)}")

        print(f"  {get_message('selftest.duration', language)}: {result.total_duration_ms:.0f}ms")


async def run_self_test(
    config: SystemConfig,
    print_output: bool = True,
    language: str = "es",
) -> SelfTestResult:
    """
    Convenience function to run self-test.

    Args:
        config: System configuration to test
        print_output: Whether to print results to stdout
        language: Output language

    Returns:
        SelfTestResult with test outcomes
    """
    self_test = SelfTest(config)
    result = await self_test.run()

    if print_output:
        self_test.print_results(result, language)

    return result
