"""
Tests for the Gemini completion client. The SDK client is replaced with a
MagicMock so no request ever leaves the process.
"""
import asyncio
import os
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from google.genai import errors as genai_errors

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from abg_service import gemini_client
from abg_service.config import Settings
from abg_service.errors import ConfigurationError, EmptyResponseError, UpstreamError
from abg_service.gemini_client import CompletionClient, get_completion_client
from abg_service.prompt_builder import ImagePayload, RenderedPrompt


def _settings(**overrides):
    defaults = {"gemini_api_key": "test-key", "request_timeout_seconds": 5.0}
    defaults.update(overrides)
    return Settings(**defaults)


def _client(generate, **overrides):
    sdk = MagicMock()
    sdk.aio.models.generate_content = generate
    return CompletionClient(_settings(**overrides), client=sdk), sdk


class TestComplete:

    def test_returns_stripped_text(self):
        generate = AsyncMock(return_value=SimpleNamespace(text='  {"keyFindings": "x"}\n'))
        client, _ = _client(generate)
        text = asyncio.run(client.complete("instructions", "user text"))
        assert text == '{"keyFindings": "x"}'

    def test_request_shape(self):
        generate = AsyncMock(return_value=SimpleNamespace(text="{}"))
        client, _ = _client(generate, gemini_model="gemini-test")
        image = ImagePayload(data=b"\x89PNG", mime_type="image/png")
        asyncio.run(client.complete("sys", "user", image=image, temperature=0.1, max_output_tokens=1024))

        kwargs = generate.call_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert len(kwargs["contents"]) == 2
        config = kwargs["config"]
        assert config.system_instruction == "sys"
        assert config.temperature == 0.1
        assert config.max_output_tokens == 1024
        assert config.response_mime_type == "application/json"

    def test_text_only_request_has_one_part(self):
        generate = AsyncMock(return_value=SimpleNamespace(text="{}"))
        client, _ = _client(generate)
        asyncio.run(client.complete("sys", "user"))
        assert len(generate.call_args.kwargs["contents"]) == 1

    def test_empty_text_raises(self):
        for empty in (None, "", "   "):
            client, _ = _client(AsyncMock(return_value=SimpleNamespace(text=empty)))
            with pytest.raises(EmptyResponseError) as exc_info:
                asyncio.run(client.complete("sys", "user"))
            assert exc_info.value.status_code == 502
            assert exc_info.value.message == "No text output from model."

    def test_api_error_status_forwarded(self):
        error = genai_errors.ServerError(503, {"error": {"code": 503, "message": "overloaded", "status": "UNAVAILABLE"}})
        client, _ = _client(AsyncMock(side_effect=error))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.complete("sys", "user"))
        assert exc_info.value.upstream_status == 503
        assert exc_info.value.status_code == 502
        assert exc_info.value.retryable

    def test_rate_limit_maps_to_429(self):
        error = genai_errors.ClientError(429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}})
        client, _ = _client(AsyncMock(side_effect=error))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.complete("sys", "user"))
        assert exc_info.value.status_code == 429

    def test_transport_errors(self):
        client, _ = _client(AsyncMock(side_effect=httpx.ConnectError("refused")))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.complete("sys", "user"))
        assert exc_info.value.upstream_status == 502

        client, _ = _client(AsyncMock(side_effect=httpx.ReadTimeout("slow")))
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.complete("sys", "user"))
        assert exc_info.value.upstream_status == 504

    def test_wall_clock_timeout(self):
        async def hang(**kwargs):
            await asyncio.sleep(5)

        client, _ = _client(hang, request_timeout_seconds=0.05)
        with pytest.raises(UpstreamError) as exc_info:
            asyncio.run(client.complete("sys", "user"))
        assert exc_info.value.upstream_status == 504
        assert exc_info.value.status_code == 502


class TestCompletePrompt:

    def test_ocr_profile_used(self):
        generate = AsyncMock(return_value=SimpleNamespace(text="{}"))
        client, _ = _client(generate)
        prompt = RenderedPrompt("ocr", "sys", "user", ImagePayload(b"img", "image/jpeg"))
        asyncio.run(client.complete_prompt(prompt))
        config = generate.call_args.kwargs["config"]
        assert config.temperature == 0.1
        assert config.max_output_tokens == 1024


class TestClientFactory:

    def test_missing_key_fails_before_network(self):
        with patch.object(gemini_client.genai, "Client") as sdk_cls:
            with pytest.raises(ConfigurationError) as exc_info:
                get_completion_client(Settings(gemini_api_key=None))
        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "API key not configured."
        sdk_cls.assert_not_called()

    def test_client_reused_for_same_settings(self):
        with patch.dict(gemini_client._clients, clear=True), \
                patch.object(gemini_client.genai, "Client") as sdk_cls:
            first = get_completion_client(_settings())
            second = get_completion_client(_settings())
            assert first is second
            sdk_cls.assert_called_once()
