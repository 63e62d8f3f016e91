"""
Input Sanitization Module for the ABG Interpreter Service

Cleans free text before it reaches a prompt and decodes/verifies uploaded
report images.
"""

import base64
import binascii
import io
import re
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import ValidationError
from .prompt_builder import ImagePayload

MAX_CLINICAL_HISTORY_LENGTH = 5000
MAX_SAMPLE_TYPE_LENGTH = 50
MAX_IMAGE_BYTES = 8 * 1024 * 1024

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?;base64,", re.IGNORECASE)


def sanitize_text(text: Optional[str], max_length: Optional[int] = None) -> str:
    """Clean free text bound for a prompt.

    Only control characters are removed. Comparison signs and ampersands
    ("K <3.0", "GCS >8", "Na >150 & rising") reach the prompt unchanged.

    Args:
        text: Input text to sanitize
        max_length: Maximum allowed length (truncates if exceeded)
    """
    if not text:
        return ""

    text = _remove_control_chars(text.strip())

    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text


def sanitize_clinical_history(text: Optional[str], max_length: int = MAX_CLINICAL_HISTORY_LENGTH) -> str:
    return sanitize_text(text, max_length=max_length)


def sanitize_sample_type(text: Optional[str]) -> str:
    return sanitize_text(text, max_length=MAX_SAMPLE_TYPE_LENGTH).lower()


def _remove_control_chars(text: str) -> str:
    """Remove potentially dangerous control characters (keeps tab/newline)."""
    return re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)


def validate_image_type(content_type: str) -> bool:
    """Validate image content type."""
    allowed = {
        "image/png",
        "image/jpeg",
        "image/jpg",
        "image/webp",
    }
    return content_type.lower() in allowed


def decode_image(encoded: Optional[str], max_bytes: int = MAX_IMAGE_BYTES) -> ImagePayload:
    """Decode a base64 (or data URL) image and confirm it really is an image.

    Raises:
        ValidationError: missing, not base64, too large or not a supported image.
    """
    if not encoded or not encoded.strip():
        raise ValidationError("Image data required")

    encoded = _DATA_URL_RE.sub("", encoded.strip())
    encoded = re.sub(r"\s+", "", encoded)
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Image data is not valid base64")

    if not data:
        raise ValidationError("Image data required")
    if len(data) > max_bytes:
        raise ValidationError(f"Image too large ({len(data)} bytes, max {max_bytes})")

    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValidationError(f"Failed to read image: {e}")

    mime_type = Image.MIME.get(image_format or "", "")
    if not validate_image_type(mime_type):
        raise ValidationError(
            f"Unsupported image type: {mime_type or image_format}. "
            "Supported: png, jpeg, webp"
        )
    return ImagePayload(data=data, mime_type=mime_type)
