"""
Property-based tests for simulation mode.

Uses Hypothesis to verify that simulation mode makes no network requests,
returns an explicitly simulated result and never writes to the cache.
"""

import asyncio

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from dnc_checker.cache_service import DisabledCacheService
from dnc_checker.captcha_resolver import CaptchaResolver
from dnc_checker.config import SystemConfig
from dnc_checker.enums import RecognitionMode, RegistryStatus
from dnc_checker.ocr_engine import RecognitionOutput
from dnc_checker.orchestrator import CheckOrchestrator
from dnc_checker.session_protocol import SessionProtocolEngine


class ForbiddenTransport(httpx.MockTransport):
    """Transport that records any request it is asked to send."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        super().__init__(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(500)


class CountingEngine:
    modes = (RecognitionMode.SINGLE_LINE,)

    def __init__(self) -> None:
        self.calls = 0

    def recognize(self, image_bytes: bytes, mode: RecognitionMode, charset: str) -> RecognitionOutput:
        self.calls += 1
        return RecognitionOutput(text="ABCDE", confidence=50.0)

    def is_available(self) -> bool:
        return True


@st.composite
def registry_number_strategy(draw) -> str:
    return "9" + draw(st.text(alphabet="0123456789", min_size=7, max_size=7))


class TestSimulationModeProperty:
    """
    Property 21: Simulation mode makes no network requests.
    """

    @given(phone=registry_number_strategy())
    @settings(max_examples=50)
    def test_protocol_simulation_makes_no_requests(self, phone: str) -> None:
        """
        Property 21a: A simulated protocol run sends nothing and runs no OCR.
        """
        transport = ForbiddenTransport()
        engine = CountingEngine()
        resolver = CaptchaResolver(engine, max_workers=1)
        protocol = SessionProtocolEngine(resolver, transport=transport, simulation_mode=True)
        try:
            result = asyncio.run(protocol.run(phone))
        finally:
            resolver.close()

        assert transport.requests == []
        assert engine.calls == 0
        assert result.simulated
        assert result.status == RegistryStatus.UNKNOWN
        assert result.phone_number == phone
        assert result.to_payload()["simulated"] is True

    def test_orchestrator_simulation_uses_disabled_cache(self) -> None:
        """
        Property 21b: In simulation mode the orchestrator never touches a cache store.
        """
        config = SystemConfig(simulation_mode=True)
        config.cache.mongodb_url = "mongodb://cache.invalid:27017"
        transport = ForbiddenTransport()

        orchestrator = CheckOrchestrator(config=config, ocr_engine=CountingEngine(), transport=transport)

        async def use():
            async with orchestrator:
                return await orchestrator.check("098297150")

        outcome = asyncio.run(use())

        assert isinstance(orchestrator.cache, DisabledCacheService)
        assert transport.requests == []
        assert outcome.result.simulated
        assert not outcome.from_cache

    def test_simulated_result_is_never_cached(self) -> None:
        from dnc_checker.cache_service import should_cache

        resolver = CaptchaResolver(CountingEngine(), max_workers=1)
        protocol = SessionProtocolEngine(resolver, simulation_mode=True)
        try:
            result = asyncio.run(protocol.run("98297150"))
        finally:
            resolver.close()

        assert not should_cache(result.to_payload())
