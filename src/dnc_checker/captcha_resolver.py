"""
CAPTCHA resolution on top of an OCR engine.

The resolver runs every recognition configuration the engine supports,
cleans and length-filters the readings and ranks them. When the engine is
unusable for every configuration it returns a placeholder from the
fallback generator, flagged so callers and logs can tell it apart from a
real reading.
"""

import asyncio
import functools
import random
import re
import string
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from .audit_logger import AuditLogger, LoggingMixin
from .enums import CaptchaSource, OCRErrorCode
from .exceptions import OCREngineError
from .models import CaptchaCandidate, RankedCandidates
from .ocr_engine import OCREngine


DEFAULT_CHARSET = string.ascii_uppercase + string.ascii_lowercase + string.digits
DEFAULT_LENGTH_RANGE = (4, 8)
IDEAL_LENGTH = 5.5

NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")

# Commonly confused glyph pairs
AMBIGUOUS_CHARACTERS = {
    "0": "O", "O": "0",
    "1": "I", "I": "1",
    "5": "S", "S": "5",
    "6": "G", "G": "6",
    "8": "B", "B": "8",
    "2": "Z", "Z": "2",
}


def clean_text(raw: str) -> str:
    """Strip every non-alphanumeric character."""
    return NON_ALPHANUMERIC.sub("", raw or "")


def rank_candidates(candidates: list[CaptchaCandidate]) -> list[CaptchaCandidate]:
    """
    Order candidates best-first.

    Ascending distance of length from 5.5, then descending confidence,
    then configuration order.
    """
    return sorted(
        candidates,
        key=lambda c: (abs(len(c.text) - IDEAL_LENGTH), -c.confidence, c.config_id),
    )


def ambiguous_alternatives(text: str) -> list[str]:
    """
    Spellings of text with one ambiguous character replaced everywhere.

    One spelling per table entry whose character occurs in text, in table
    order. Matching is case-sensitive. Attached to resolver results for
    inspection only; nothing submits them.
    """
    alternatives: list[str] = []
    for source, target in AMBIGUOUS_CHARACTERS.items():
        if source in text:
            candidate = text.replace(source, target)
            if candidate not in alternatives:
                alternatives.append(candidate)
    return alternatives


class FallbackCaptchaGenerator:
    """
    Placeholder CAPTCHA text for when no OCR engine is usable.

    Expected success rate is near zero. The sequence is deterministic for a
    given seed; without one it is seeded from the clock in milliseconds.
    """

    UPPER_ALPHANUMERIC = string.ascii_uppercase + string.digits

    STRATEGIES = (
        (5, UPPER_ALPHANUMERIC),
        (4, UPPER_ALPHANUMERIC),
        (6, UPPER_ALPHANUMERIC),
        (5, string.digits),
        (5, string.ascii_uppercase),
    )

    def __init__(
        self,
        seed: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._seed = seed if seed is not None else int(clock() * 1000)
        self._rng = random.Random(self._seed)

    @property
    def seed(self) -> int:
        return self._seed

    def generate(self) -> str:
        length, alphabet = self._rng.choice(self.STRATEGIES)
        return "".join(self._rng.choice(alphabet) for _ in range(length))


class CaptchaResolver(LoggingMixin):
    """
    Ranks OCR readings of CAPTCHA images.

    Recognition is CPU-bound and runs on a bounded thread pool when called
    through resolve_async.
    """

    COMPONENT = "CaptchaResolver"

    def __init__(
        self,
        engine: OCREngine,
        fallback: Optional[FallbackCaptchaGenerator] = None,
        max_workers: int = 2,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._engine = engine
        self._fallback = fallback or FallbackCaptchaGenerator()
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="captcha-ocr",
        )
        self._logger = logger

    @property
    def engine(self) -> OCREngine:
        return self._engine

    def resolve(
        self,
        image_bytes: bytes,
        charset: str = DEFAULT_CHARSET,
        length_range: tuple[int, int] = DEFAULT_LENGTH_RANGE,
    ) -> RankedCandidates:
        """
        Recognize a CAPTCHA image under every engine configuration.

        Args:
            image_bytes: Raw image content
            charset: Characters the engine may emit
            length_range: Inclusive (min, max) cleaned length to keep

        Returns:
            RankedCandidates, possibly empty, or a single fallback candidate
            when every configuration failed at the engine level

        Raises:
            OCREngineError: If the image itself cannot be decoded
        """
        min_length, max_length = length_range
        modes = self._engine.modes
        candidates: list[CaptchaCandidate] = []
        engine_failures = 0

        for config_id, mode in enumerate(modes):
            try:
                output = self._engine.recognize(image_bytes, mode, charset)
            except OCREngineError as e:
                if e.code == OCRErrorCode.INVALID_IMAGE.value:
                    raise
                engine_failures += 1
                self._log_warn(
                    f"OCR configuration {mode.name} failed",
                    {"mode": mode.name, "code": e.code, "error": e.message},
                )
                continue

            text = clean_text(output.text)
            if not min_length <= len(text) <= max_length:
                self._log_debug(
                    f"Discarded reading of length {len(text)}",
                    {"mode": mode.name, "text": text},
                )
                continue

            candidates.append(CaptchaCandidate(
                text=text,
                confidence=output.confidence,
                config_id=config_id,
                config_name=mode.name,
                alternatives=ambiguous_alternatives(text),
            ))

        if modes and engine_failures == len(modes):
            return self._fallback_result()

        ranked = rank_candidates(candidates)
        result = RankedCandidates(candidates=ranked, source=CaptchaSource.OCR)

        self._log_info(
            f"CAPTCHA resolved to {result.chosen_text!r}" if ranked
            else "No CAPTCHA candidate passed length filtering",
            {
                "source": CaptchaSource.OCR.value,
                "candidates": [
                    {"text": c.text, "confidence": c.confidence, "mode": c.config_name}
                    for c in ranked
                ],
            },
        )
        return result

    def _fallback_result(self) -> RankedCandidates:
        text = self._fallback.generate()
        self._log_warn(
            "OCR engine unusable, submitting fallback CAPTCHA text",
            {"source": CaptchaSource.FALLBACK.value, "text": text},
        )
        return RankedCandidates(
            candidates=[CaptchaCandidate(
                text=text,
                confidence=0.0,
                config_id=-1,
                config_name=CaptchaSource.FALLBACK.value,
            )],
            source=CaptchaSource.FALLBACK,
        )

    async def resolve_async(
        self,
        image_bytes: bytes,
        charset: str = DEFAULT_CHARSET,
        length_range: tuple[int, int] = DEFAULT_LENGTH_RANGE,
    ) -> RankedCandidates:
        """Run resolve on the worker pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor,
            functools.partial(self.resolve, image_bytes, charset, length_range),
        )

    def close(self) -> None:
        self._executor.shutdown(wait=False)
