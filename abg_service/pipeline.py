"""
Request preparation and the build -> complete -> extract round trip.

Used unchanged by the synchronous endpoints and by the background worker, so
both paths validate, prompt and extract identically.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .config import Settings
from .errors import UpstreamError, ValidationError
from .extraction import extract_analysis, extract_measured_values
from .gemini_client import CompletionClient
from .input_sanitization import decode_image, sanitize_clinical_history, sanitize_sample_type
from .models import AnalyzeRequest, JobKind, OcrRequest
from .prompt_builder import ImagePayload, RenderedPrompt, build_prompt

logger = logging.getLogger(__name__)

MISSING_REQUIRED_MESSAGE = "Missing required values (pH and pCO2 required)."


@dataclass
class PreparedInput:
    kind: JobKind
    request: Union[AnalyzeRequest, OcrRequest]
    image: Optional[ImagePayload] = None

    @property
    def mode(self) -> str:
        if self.kind == JobKind.OCR:
            return "ocr"
        return self.request.mode

    def to_record_data(self) -> Dict[str, Any]:
        return self.request.model_dump(by_alias=True, exclude_none=True)


def _first_error(e: PydanticValidationError) -> str:
    error = e.errors()[0]
    msg = str(error.get("msg", "Invalid request"))
    location = ".".join(str(part) for part in error.get("loc", ()))
    msg = msg.removeprefix("Value error, ")
    return f"{location}: {msg}" if location else msg


def prepare_analysis(payload: Any, settings: Settings) -> PreparedInput:
    """Validate an analysis payload.

    Raises:
        ValidationError: malformed body, missing pH/pCO2 (manual mode) or
            missing/bad image (image mode).
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    try:
        request = AnalyzeRequest.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(_first_error(e))

    request = request.model_copy(update={
        "clinical_history": sanitize_clinical_history(
            request.clinical_history, settings.max_clinical_history_chars
        ) or None,
        "sample_type": sanitize_sample_type(request.sample_type) or None,
    })

    image = None
    if request.mode == "image":
        image = decode_image(request.image, settings.max_image_bytes)
    else:
        values = request.numeric_values()
        if values.get("ph") is None or values.get("pco2") is None:
            raise ValidationError(MISSING_REQUIRED_MESSAGE)

    return PreparedInput(JobKind.ANALYSIS, request, image)


def prepare_ocr(payload: Any, settings: Settings) -> PreparedInput:
    if not isinstance(payload, dict) or not payload.get("image"):
        raise ValidationError("Image data required")
    try:
        request = OcrRequest.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(_first_error(e))
    image = decode_image(request.image, settings.max_image_bytes)
    return PreparedInput(JobKind.OCR, request, image)


def prepare(kind: JobKind, payload: Any, settings: Settings) -> PreparedInput:
    if kind == JobKind.OCR:
        return prepare_ocr(payload, settings)
    return prepare_analysis(payload, settings)


def render(prepared: PreparedInput) -> RenderedPrompt:
    request = prepared.request if prepared.kind == JobKind.ANALYSIS else None
    return build_prompt(prepared.mode, request=request, image=prepared.image)


async def complete_with_retry(
    client: CompletionClient,
    prompt: RenderedPrompt,
    max_retries: int = 0,
    backoff_seconds: float = 1.0,
) -> str:
    """Call the completion service, retrying retryable upstream failures."""
    attempt = 0
    while True:
        try:
            return await client.complete_prompt(prompt)
        except UpstreamError as e:
            if not e.retryable or attempt >= max_retries:
                raise
            delay = backoff_seconds * (2 ** attempt)
            attempt += 1
            logger.warning(
                f"Upstream error {e.upstream_status}, retry {attempt}/{max_retries} in {delay:.1f}s"
            )
            await asyncio.sleep(delay)


async def execute(prepared: PreparedInput, client: CompletionClient, settings: Settings) -> Dict[str, Any]:
    """Run one full round trip and return the fully-keyed result.

    Raises:
        UpstreamError: completion service failed.
        ExtractionError: response held no parsable JSON.
    """
    prompt = render(prepared)
    text = await complete_with_retry(
        client,
        prompt,
        max_retries=settings.upstream_max_retries,
        backoff_seconds=settings.upstream_retry_backoff_seconds,
    )
    if prepared.kind == JobKind.OCR:
        extraction = extract_measured_values(text)
    else:
        extraction = extract_analysis(text)
    return extraction.unwrap()
