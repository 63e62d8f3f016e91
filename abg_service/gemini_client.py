"""
Gemini completion client - the boundary to the external model.

One ``complete`` call is one outbound request: no retries, no caching.
Every failure leaves as ``UpstreamError`` (or its ``EmptyResponseError``
subclass) so callers only have one family of errors to handle.
"""
import asyncio
import logging
from typing import Dict, Optional, Tuple

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .config import Settings
from .errors import EmptyResponseError, UpstreamError
from .prompt_builder import ImagePayload, RenderedPrompt

logger = logging.getLogger(__name__)

# Generation settings per prompt mode: (temperature, max_output_tokens)
GENERATION_PROFILES: Dict[str, Tuple[float, int]] = {
    "manual": (0.2, 4096),
    "image": (0.2, 4096),
    "ocr": (0.1, 1024),
}


class CompletionClient:
    """Async text/image completion via the google-genai SDK."""

    def __init__(self, settings: Settings, client: Optional[genai.Client] = None):
        api_key = settings.require_api_key()
        self.model_name = settings.gemini_model
        self.timeout = settings.request_timeout_seconds
        # Same budget for the SDK's HTTP layer (ms) and for our own wait_for
        self.client = client or genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=int(self.timeout * 1000)),
        )
        logger.info(f"Gemini client initialized with model: {self.model_name} (timeout: {self.timeout}s)")

    async def complete(
        self,
        instruction_text: str,
        user_text: str,
        image: Optional[ImagePayload] = None,
        temperature: float = 0.2,
        max_output_tokens: int = 4096,
    ) -> str:
        """Send one request and return the raw response text.

        Raises:
            UpstreamError: non-success status, transport failure or timeout.
            EmptyResponseError: success status but no text in the response.
        """
        parts = [types.Part.from_text(text=user_text)]
        if image is not None:
            parts.append(types.Part.from_bytes(data=image.data, mime_type=image.mime_type))

        config = types.GenerateContentConfig(
            system_instruction=instruction_text,
            temperature=temperature,
            top_p=0.8,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json",
        )

        try:
            response = await asyncio.wait_for(
                self.client.aio.models.generate_content(
                    model=self.model_name,
                    contents=parts,
                    config=config,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Gemini request timed out after {self.timeout}s")
            raise UpstreamError(504, f"Request timed out after {self.timeout:g}s")
        except genai_errors.APIError as e:
            logger.error(f"Gemini API error: {e.code} - {e.message}")
            raise UpstreamError(e.code or 502, e.message or str(e))
        except httpx.TimeoutException as e:
            logger.warning(f"Gemini transport timeout: {e}")
            raise UpstreamError(504, f"Request timed out: {e}")
        except httpx.HTTPError as e:
            logger.error(f"Gemini connection error: {e}")
            raise UpstreamError(502, f"Connection failed: {e}")

        text = response.text
        if not text or not text.strip():
            logger.error("Gemini returned no text content")
            raise EmptyResponseError()

        logger.info(f"Gemini response: {len(text)} chars")
        return text.strip()

    async def complete_prompt(self, prompt: RenderedPrompt) -> str:
        temperature, max_tokens = GENERATION_PROFILES.get(prompt.mode, (0.2, 4096))
        return await self.complete(
            prompt.instruction_text,
            prompt.user_text,
            image=prompt.image,
            temperature=temperature,
            max_output_tokens=max_tokens,
        )


_clients: Dict[tuple, CompletionClient] = {}


def get_completion_client(settings: Settings) -> CompletionClient:
    """Get or create a client for these settings. Fails fast without an API key."""
    key = (settings.require_api_key(), settings.gemini_model, settings.request_timeout_seconds)
    if key not in _clients:
        _clients[key] = CompletionClient(settings)
    return _clients[key]
