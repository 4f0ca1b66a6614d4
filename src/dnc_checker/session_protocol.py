"""
Session Protocol Engine for the registry portal.

Drives one registry check through the portal's dependent round trips:

1. GET the portal entry page (single TLS-profile fallback)
2. Resolve the embedded iframe and GET it
3. Extract the work-area URL from the iframe script
4. GET the work area and read the tabId/tokenId session tokens
5. Submit the phone number to the form field endpoint
6. Query the signable-forms endpoint
7. Solve the CAPTCHA and submit until the result field is filled

Each check owns a fresh CheckSession and portal client; nothing is shared
between checks.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional
from urllib.parse import urljoin

from .audit_logger import AuditLogger, LoggingMixin
from .captcha_resolver import CaptchaResolver
from .config import CaptchaConfig, PortalConfig
from .enums import CaptchaSource, ProtocolStep, RegistryStatus
from .exceptions import CaptchaUnsolvable, OCREngineError, ProtocolStructureError, TransportError
from .html_extraction import (
    extract_result_field,
    is_registered,
    require_iframe_source,
    require_session_tokens,
    require_work_area_url,
)
from .models import CaptchaChallenge, CheckSession, PhoneCheckResult, RankedCandidates
from .portal_client import PortalClient
from .retry_manager import RetryManager


FORM_ID = "6619"
ATTRIBUTE_ID = "11808"
CAPTCHA_FIELD_SUFFIX = f"E_{FORM_ID}"


class SessionProtocolEngine(LoggingMixin):
    """
    Runs the portal protocol for one phone number at a time per call.

    Transport failures raise TransportError and an exhausted inner CAPTCHA
    budget raises CaptchaUnsolvable. Missing page structure is reported in
    the returned result's error field.
    """

    COMPONENT = "SessionProtocol"

    def __init__(
        self,
        resolver: CaptchaResolver,
        portal_config: Optional[PortalConfig] = None,
        captcha_config: Optional[CaptchaConfig] = None,
        transport=None,
        simulation_mode: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the protocol engine.

        Args:
            resolver: CAPTCHA resolver (owns the OCR worker pool)
            portal_config: Portal endpoints and timeouts
            captcha_config: CAPTCHA attempt budgets
            transport: Optional httpx transport passed to each portal client
            simulation_mode: If True, no real network requests are made
            sleep: Awaitable sleep used between inner CAPTCHA attempts
            clock: Wall clock in seconds, used for URL timestamps
            logger: Optional audit logger
        """
        self._resolver = resolver
        self._portal = portal_config or PortalConfig()
        self._captcha = captcha_config or CaptchaConfig()
        self._transport = transport
        self._simulation_mode = simulation_mode
        self._clock = clock
        self._retry = RetryManager.for_captcha(self._captcha, sleep=sleep)
        self._logger = logger

    def _timestamp_ms(self) -> int:
        return int(self._clock() * 1000)

    # URL builders

    def field_submit_url(self, session: CheckSession) -> str:
        return (
            f"{self._portal.base_path}apia.execution.FormAction.run"
            f"?action=processFieldSubmit&isAjax=true&frmId={FORM_ID}&frmParent=E"
            f"&timestamp={self._timestamp_ms()}&attId={ATTRIBUTE_ID}&index=0"
            f"&tabId={session.tab_id}&tokenId={session.token_id}"
        )

    def signable_forms_url(self, session: CheckSession) -> str:
        return (
            f"{self._portal.base_path}apia.execution.TaskAction.run"
            f"?action=hasSignableForms&appletToken="
            f"&tabId={session.tab_id}&tokenId={session.token_id}"
        )

    def next_step_url(self, session: CheckSession) -> str:
        return (
            f"{self._portal.base_path}apia.execution.TaskAction.run"
            f"?action=gotoNextStep&tabId={session.tab_id}&tokenId={session.token_id}"
            f"&currentTab=0"
        )

    def new_challenge(self, session: CheckSession) -> CaptchaChallenge:
        captcha_name = f"{session.tab_id}{CAPTCHA_FIELD_SUFFIX}"
        return CaptchaChallenge(
            captcha_name=captcha_name,
            image_url=(
                f"{self._portal.base_path}captchaImg"
                f"?captchaName={captcha_name}&t={self._timestamp_ms()}"
            ),
        )

    async def run(self, phone_number: str) -> PhoneCheckResult:
        """
        Check one normalized phone number against the registry.

        Args:
            phone_number: Number in registry format (national, no country code)

        Returns:
            PhoneCheckResult; status UNKNOWN with an empty response when the
            outer attempt budget ran out, or with error set when the portal
            structure was not as expected

        Raises:
            TransportError: Portal unreachable during steps 1-6
            CaptchaUnsolvable: No usable CAPTCHA text within the inner budget
        """
        start_time = time.perf_counter()

        if self._simulation_mode:
            return self._create_simulation_result(phone_number, start_time)

        session = CheckSession(phone_number=phone_number)
        self._log_info(
            f"Starting registry check for {phone_number}",
            {"session_id": session.session_id},
        )

        async with PortalClient(self._portal, self._transport, self._logger) as client:
            try:
                result = await self._run_steps(client, session)
            except ProtocolStructureError as e:
                self._log_warn(
                    f"Portal structure not as expected: {e.code}",
                    {"session_id": session.session_id, "step": session.step.value, **e.details},
                )
                result = PhoneCheckResult(
                    phone_number=phone_number,
                    status=RegistryStatus.UNKNOWN,
                    error=e.code,
                )
            except (TransportError, CaptchaUnsolvable) as e:
                self._log_error(
                    f"Registry check aborted at {session.step.value}",
                    error=e,
                    data={"session_id": session.session_id, "attempts": session.attempts},
                )
                raise
            finally:
                session.used_tls_fallback = client.used_tls_fallback

        result.used_tls_fallback = session.used_tls_fallback
        result.duration_ms = (time.perf_counter() - start_time) * 1000

        self._log_info(
            f"Registry check finished for {phone_number}: {result.status.value}",
            {
                "session_id": session.session_id,
                "status": result.status.value,
                "captcha_solve_attempts": result.captcha_solve_attempts,
                "fallback_captchas": result.fallback_captchas,
                "duration_ms": round(result.duration_ms, 1),
            },
        )
        return result

    async def _run_steps(self, client: PortalClient, session: CheckSession) -> PhoneCheckResult:
        portal_url = self._portal.portal_url

        # Step 1
        portal_page = await client.fetch_portal(session.cookies)
        session.step = ProtocolStep.PORTAL_FETCHED

        # Step 2
        iframe_url = urljoin(self._portal.base_path, require_iframe_source(portal_page.text))
        iframe_page = await client.get_page(iframe_url, session.cookies, referer=portal_url)
        session.step = ProtocolStep.FRAME_RESOLVED

        # Step 3
        session.referer_url = require_work_area_url(iframe_page.text, self._portal.origin)
        session.step = ProtocolStep.URL_EXTRACTED

        # Step 4
        await client.get_page(session.referer_url, session.cookies, referer=portal_url)
        session.tab_id, session.token_id = require_session_tokens(session.referer_url)
        session.step = ProtocolStep.TOKENS_PARSED

        # Step 5
        await client.post_form(
            self.field_submit_url(session),
            f"value={session.phone_number}",
            session.cookies,
            referer=session.referer_url,
        )
        session.step = ProtocolStep.PHONE_SUBMITTED

        # Step 6
        forms = await client.post_form(
            self.signable_forms_url(session),
            "",
            session.cookies,
            referer=session.referer_url,
        )
        self._log_debug(
            "Signable forms checked",
            {"session_id": session.session_id, "status_code": forms.status_code,
             "has_signable_forms": forms.text.strip()[:100]},
        )
        session.step = ProtocolStep.FORMS_CHECKED

        # Step 7
        return await self._solve_and_submit(client, session)

    async def _solve_and_submit(self, client: PortalClient, session: CheckSession) -> PhoneCheckResult:
        fallback_captchas = 0
        response_value = ""

        while session.attempts < self._captcha.max_outer_attempts:
            session.attempts += 1
            challenge = self.new_challenge(session)
            ranked = await self._solve_captcha(client, session, challenge)
            if ranked.source == CaptchaSource.FALLBACK:
                fallback_captchas += 1

            try:
                response = await client.post_form(
                    self.next_step_url(session),
                    f"{challenge.captcha_name}={challenge.chosen_text}",
                    session.cookies,
                    referer=session.referer_url,
                )
            except TransportError as e:
                self._log_warn(
                    f"CAPTCHA submission failed on attempt {session.attempts}",
                    {"session_id": session.session_id, "code": e.code, "error": e.message},
                )
                continue

            response_value = extract_result_field(response.text) or ""
            if response_value:
                break

            self._log_info(
                f"Empty result after CAPTCHA attempt {session.attempts}",
                {"session_id": session.session_id, "captcha": challenge.chosen_text,
                 "source": ranked.source.value},
            )

        if response_value:
            session.step = ProtocolStep.RESOLVED
            registered = is_registered(response_value)
            status = RegistryStatus.REGISTERED if registered else RegistryStatus.NOT_REGISTERED
        else:
            registered = False
            status = RegistryStatus.UNKNOWN
            self._log_warn(
                f"No result after {session.attempts} CAPTCHA attempts",
                {"session_id": session.session_id},
            )

        return PhoneCheckResult(
            phone_number=session.phone_number,
            status=status,
            response=response_value,
            is_in_record=registered,
            captcha_solve_attempts=session.attempts,
            fallback_captchas=fallback_captchas,
        )

    async def _solve_captcha(
        self,
        client: PortalClient,
        session: CheckSession,
        challenge: CaptchaChallenge,
    ) -> RankedCandidates:
        """
        Inner loop: fetch and recognize the CAPTCHA until a text of
        acceptable length comes out, within the inner attempt budget.
        """
        length_range = (self._captcha.min_candidate_length, self._captcha.max_candidate_length)

        async def attempt() -> RankedCandidates:
            image = await client.get_image(
                challenge.image_url, session.cookies, referer=self._portal.base_path
            )
            return await self._resolver.resolve_async(image, self._captcha.charset, length_range)

        def acceptable(ranked: RankedCandidates) -> bool:
            length = len(ranked.chosen_text)
            return self._captcha.min_submit_length <= length <= self._captcha.max_submit_length

        def retryable(error: Exception) -> bool:
            return isinstance(error, (TransportError, OCREngineError))

        outcome = await self._retry.execute_with_retry(
            attempt, is_acceptable=acceptable, is_retryable=retryable
        )
        challenge.inner_attempts = outcome.attempts

        if outcome.success:
            challenge.ranked = outcome.result
            return outcome.result

        if outcome.last_error is not None and not retryable(outcome.last_error):
            raise outcome.last_error

        raise CaptchaUnsolvable(
            code="captcha_unsolvable",
            message=(
                f"No usable CAPTCHA text after {outcome.attempts} attempts "
                f"in outer attempt {session.attempts}"
            ),
            details={
                "outer_attempts": session.attempts,
                "inner_attempts": outcome.attempts,
                "last_error": str(outcome.last_error) if outcome.last_error else None,
                "last_text": outcome.result.chosen_text if outcome.result else "",
            },
        )

    def _create_simulation_result(self, phone_number: str, start_time: float) -> PhoneCheckResult:
        """Simulated result for dry runs; makes no network requests."""
        self._log_info(f"[SIMULATED] Registry check for {phone_number}")
        return PhoneCheckResult(
            phone_number=phone_number,
            status=RegistryStatus.UNKNOWN,
            duration_ms=(time.perf_counter() - start_time) * 1000,
            simulated=True,
        )
