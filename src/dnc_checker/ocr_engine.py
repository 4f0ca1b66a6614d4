"""
OCR engines used by the CAPTCHA resolver.

An engine takes image bytes plus one recognition configuration and returns
the raw text with a confidence score. Two implementations are provided:
a local Tesseract engine driven through pytesseract, and a client for a
remote OCR service that exposes POST /ocr/captcha.
"""

import base64
import io
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import pytesseract
from PIL import Image, UnidentifiedImageError
from pytesseract import Output

from .config import OCRConfig
from .enums import OCRErrorCode, RecognitionMode
from .exceptions import OCREngineError


ALL_MODES = (
    RecognitionMode.SINGLE_LINE,
    RecognitionMode.SINGLE_WORD,
    RecognitionMode.SINGLE_CHAR,
    RecognitionMode.RAW_LINE,
)


@dataclass
class RecognitionOutput:
    """Raw text recognized under one configuration."""

    text: str
    confidence: float  # 0-100


class OCREngine(Protocol):
    """
    OCR engine interface.

    Implementations raise OCREngineError when the engine is unreachable or
    fails unrecoverably; a low-confidence reading is not an error.
    """

    modes: tuple[RecognitionMode, ...]

    def recognize(
        self,
        image_bytes: bytes,
        mode: RecognitionMode,
        charset: str,
    ) -> RecognitionOutput:
        ...

    def is_available(self) -> bool:
        ...


class TesseractOCREngine:
    """
    Tesseract-backed engine.

    Images are converted to grayscale before recognition; confidence is the
    mean of Tesseract's per-word confidences.
    """

    modes = ALL_MODES

    def __init__(self, tesseract_cmd: Optional[str] = None, lang: str = "eng") -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.lang = lang

    @staticmethod
    def build_config(mode: RecognitionMode, charset: str) -> str:
        config = f"--psm {mode.psm} --oem {mode.oem}"
        if charset:
            config += f" -c tessedit_char_whitelist={charset}"
        return config

    def _load_image(self, image_bytes: bytes) -> Image.Image:
        try:
            image = Image.open(io.BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise OCREngineError(
                code=OCRErrorCode.INVALID_IMAGE.value,
                message=f"Could not decode CAPTCHA image: {e}",
                details={"size": len(image_bytes)},
            )
        return image.convert("L")

    def recognize(
        self,
        image_bytes: bytes,
        mode: RecognitionMode,
        charset: str,
    ) -> RecognitionOutput:
        image = self._load_image(image_bytes)
        try:
            data = pytesseract.image_to_data(
                image,
                lang=self.lang,
                config=self.build_config(mode, charset),
                output_type=Output.DICT,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise OCREngineError(
                code=OCRErrorCode.ENGINE_UNAVAILABLE.value,
                message=f"Tesseract binary not found: {e}",
            )
        except (pytesseract.TesseractError, RuntimeError) as e:
            raise OCREngineError(
                code=OCRErrorCode.RECOGNITION_FAILED.value,
                message=f"Tesseract failed under {mode.name}: {e}",
                details={"mode": mode.name},
            )

        words: list[str] = []
        confidences: list[float] = []
        for text, conf in zip(data.get("text", []), data.get("conf", [])):
            text = str(text).strip()
            if not text:
                continue
            words.append(text)
            try:
                value = float(conf)
            except (TypeError, ValueError):
                continue
            if value >= 0:
                confidences.append(value)

        confidence = sum(confidences) / len(confidences) if confidences else 0.0
        return RecognitionOutput(text=" ".join(words), confidence=confidence)

    def is_available(self) -> bool:
        try:
            pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError):
            return False
        return True


class RemoteOCREngine:
    """
    Client for a remote OCR service.

    The service runs its own multi-configuration recognition, so a single
    request per image is made.
    """

    modes = (RecognitionMode.SINGLE_LINE,)

    def __init__(
        self,
        api_url: str,
        timeout: float = 30.0,
        use_advanced: bool = True,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._use_advanced = use_advanced
        self._transport = transport

    @property
    def api_url(self) -> str:
        return self._api_url

    def _client(self, timeout: Optional[float] = None) -> httpx.Client:
        return httpx.Client(
            timeout=httpx.Timeout(timeout or self._timeout),
            transport=self._transport,
            headers={"User-Agent": "dnc-checker"},
        )

    def recognize(
        self,
        image_bytes: bytes,
        mode: RecognitionMode,
        charset: str,
    ) -> RecognitionOutput:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        payload = {
            "imageUrl": f"data:image/png;base64,{encoded}",
            "useAdvanced": self._use_advanced,
            "charWhitelist": charset,
        }

        try:
            with self._client() as client:
                response = client.post(f"{self._api_url}/ocr/captcha", json=payload)
        except httpx.HTTPError as e:
            raise OCREngineError(
                code=OCRErrorCode.ENGINE_UNAVAILABLE.value,
                message=f"OCR service unreachable: {e}",
                details={"api_url": self._api_url},
            )

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400 or not body.get("success"):
            raise OCREngineError(
                code=OCRErrorCode.RECOGNITION_FAILED.value,
                message=f"OCR service failed: {body.get('error') or response.status_code}",
                details={"status_code": response.status_code},
            )

        # Older deployments nest the reading under "result"
        result = body.get("result") if isinstance(body.get("result"), dict) else body
        text = result.get("cleanedText") or result.get("text") or ""
        try:
            confidence = float(result.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0

        return RecognitionOutput(text=str(text), confidence=confidence)

    def is_available(self) -> bool:
        try:
            with self._client(timeout=5.0) as client:
                response = client.get(f"{self._api_url}/health")
        except httpx.HTTPError:
            return False
        return response.status_code < 500


def create_ocr_engine(config: OCRConfig) -> OCREngine:
    """Remote engine when an OCR service URL is configured, else Tesseract."""
    if config.api_url:
        return RemoteOCREngine(
            api_url=config.api_url,
            timeout=config.api_timeout_seconds,
            use_advanced=config.use_advanced,
        )
    return TesseractOCREngine(tesseract_cmd=config.tesseract_cmd)
