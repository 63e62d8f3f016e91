"""
Deterministic rendering of Gemini requests.

Nothing here touches the network or the environment, and nothing can fail:
given the same input the same ``RenderedPrompt`` comes out.
"""
from dataclasses import dataclass
from typing import Literal, Optional

from .calculations import precompute
from .extraction import PLACEHOLDER_TEXT
from .formatters import format_calculations, format_measured_values, format_number, format_text
from .models import AnalyzeRequest
from .prompts import (
    ANALYSIS_SYSTEM_PROMPT,
    IMAGE_USER_PROMPT,
    MANUAL_USER_PROMPT,
    OCR_SYSTEM_PROMPT,
    OCR_USER_PROMPT,
)
from .reference_ranges import MEASURED_FIELDS

PromptMode = Literal["manual", "image", "ocr"]


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    mime_type: str = "image/jpeg"


@dataclass(frozen=True)
class RenderedPrompt:
    mode: str
    instruction_text: str
    user_text: str
    image: Optional[ImagePayload] = None


def _analysis_instructions() -> str:
    return ANALYSIS_SYSTEM_PROMPT.format(placeholder=PLACEHOLDER_TEXT)


def build_manual_prompt(request: AnalyzeRequest) -> RenderedPrompt:
    values = request.numeric_values()
    user_text = MANUAL_USER_PROMPT.format(
        clinical_history=format_text(request.clinical_history),
        sample_type=format_text(request.sample_type, default="not specified"),
        formatted_values=format_measured_values(values),
        formatted_calculations=format_calculations(precompute(values, request.sample_type)),
    )
    return RenderedPrompt("manual", _analysis_instructions(), user_text)


def build_image_prompt(request: AnalyzeRequest, image: ImagePayload) -> RenderedPrompt:
    fio2 = request.numeric_values().get("fio2")
    user_text = IMAGE_USER_PROMPT.format(
        clinical_history=format_text(request.clinical_history),
        sample_type=format_text(request.sample_type, default="not specified"),
        fio2=f"{format_number(fio2)}%" if fio2 is not None else "not provided",
    )
    return RenderedPrompt("image", _analysis_instructions(), user_text, image)


def build_ocr_prompt(image: ImagePayload) -> RenderedPrompt:
    key_lines = ",\n".join(f'  "{name}": number or null' for name in MEASURED_FIELDS)
    instruction_text = OCR_SYSTEM_PROMPT.format(key_lines=key_lines)
    return RenderedPrompt("ocr", instruction_text, OCR_USER_PROMPT, image)


def build_prompt(
    mode: PromptMode,
    request: Optional[AnalyzeRequest] = None,
    image: Optional[ImagePayload] = None,
) -> RenderedPrompt:
    if mode == "manual":
        return build_manual_prompt(request)
    if mode == "image":
        return build_image_prompt(request, image)
    if mode == "ocr":
        return build_ocr_prompt(image)
    raise ValueError(f"Unknown prompt mode: {mode}")
