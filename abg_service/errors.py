"""
Exception taxonomy for the ABG Interpreter service.

Every error carries the HTTP status it maps to, so the API layer can turn any
of them into a ``{"error": "..."}`` body without a lookup table.
"""
from typing import Optional


class ABGServiceError(Exception):
    """Base class for all service errors."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


# --- Client input ---

class ClientInputError(ABGServiceError):
    status_code = 400


class InvalidRequestError(ClientInputError):
    """A request is missing something structural (e.g. the job id)."""


class ValidationError(ClientInputError):
    """Required input fields are absent or unusable."""


class NotFoundError(ABGServiceError):
    status_code = 404


# --- Server side ---

class ConfigurationError(ABGServiceError):
    """Server is missing configuration (e.g. the Gemini API key)."""
    status_code = 500


class StoreWriteError(ABGServiceError):
    status_code = 500


# --- Completion service ---

class UpstreamError(ABGServiceError):
    """The completion service failed or returned a non-success status.

    ``upstream_status`` is the provider's status (or 504 for timeouts);
    ``status_code`` is what we return to our own client.
    """

    def __init__(self, upstream_status: int, body: str = ""):
        self.upstream_status = upstream_status
        self.body = body
        status = 429 if upstream_status == 429 else 502
        super().__init__(f"Gemini API error ({upstream_status}): {body}".rstrip(": "), status)

    @property
    def retryable(self) -> bool:
        return self.upstream_status == 429 or self.upstream_status >= 500


class EmptyResponseError(UpstreamError):
    """Provider answered successfully but with no usable text."""

    def __init__(self, body: str = "No text output from model."):
        super().__init__(502, body)
        self.message = body
        self.args = (body,)

    @property
    def retryable(self) -> bool:
        return False


# --- Extraction ---

class ExtractionError(ABGServiceError):
    status_code = 500


class NoJsonFoundError(ExtractionError):
    def __init__(self, message: str = "No analysis generated: model response contained no JSON object."):
        super().__init__(message)


class MalformedJsonError(ExtractionError):
    def __init__(self, message: str = "Malformed response: model output could not be parsed as JSON."):
        super().__init__(message)
