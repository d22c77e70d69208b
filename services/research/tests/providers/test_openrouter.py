"""
Tests for the OpenRouter research and synthesis fallbacks.

The httpx client is injected as an AsyncMock; nothing reaches the network.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from services.research.providers.base import (
    ProviderError,
    ProviderNotConfiguredError,
    SynthesisParseError,
)
from services.research.providers.openrouter import (
    CHAT_COMPLETIONS_URL,
    OpenRouterResearchProvider,
    OpenRouterSynthesisProvider,
)


def _response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = json.dumps(body or {})
    resp.json.return_value = body if body is not None else {}
    return resp


def _completion(content):
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 50, "completion_tokens": 900},
    }


def _client(resp=None):
    client = AsyncMock()
    if resp is not None:
        client.post.return_value = resp
    return client


class TestHeaders:
    @pytest.mark.asyncio
    async def test_attribution_headers(self, test_settings):
        client = _client(_response(body=_completion("ok")))
        provider = OpenRouterResearchProvider(config=test_settings, client=client)

        await provider.search("q")

        args, kwargs = client.post.call_args
        assert args[0] == CHAT_COMPLETIONS_URL
        headers = kwargs["headers"]
        assert headers["Authorization"] == "Bearer sk-or-test-key"
        assert headers["HTTP-Referer"] == test_settings.app_url
        assert headers["X-Title"] == test_settings.app_name


class TestResearch:
    @pytest.mark.asyncio
    async def test_uses_fallback_research_model(self, test_settings):
        client = _client(_response(body=_completion("Pistons and Lions.")))
        provider = OpenRouterResearchProvider(config=test_settings, client=client)

        assert await provider.search("Research sports in Detroit") == "Pistons and Lions."
        payload = client.post.call_args.kwargs["json"]
        assert payload["model"] == "perplexity/sonar-pro"
        assert payload["max_tokens"] == 2000
        assert payload["messages"][-1]["content"] == "Research sports in Detroit"

    @pytest.mark.asyncio
    async def test_unconfigured_returns_none(self, test_settings):
        client = _client()
        provider = OpenRouterResearchProvider("", config=test_settings, client=client)
        assert provider.is_configured is False
        assert await provider.search("q") is None
        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_failures_return_none(self, test_settings):
        provider = OpenRouterResearchProvider(
            config=test_settings, client=_client(_response(502, {"error": "bad gateway"})))
        assert await provider.search("q") is None

        client = _client()
        client.post.side_effect = httpx.ReadTimeout("slow")
        provider = OpenRouterResearchProvider(config=test_settings, client=client)
        assert await provider.search("q") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [None, ["x"], {"choices": [None]}, {"choices": ["text"]}])
    async def test_malformed_body_returns_none(self, test_settings, body):
        resp = _response()
        resp.json.return_value = body
        provider = OpenRouterResearchProvider(config=test_settings, client=_client(resp))
        assert await provider.search("q") is None


class TestSynthesis:
    @pytest.mark.asyncio
    async def test_generate_sends_system_prompt(self, test_settings):
        client = _client(_response(body=_completion("text")))
        provider = OpenRouterSynthesisProvider(config=test_settings, client=client)

        assert await provider.generate("prompt", system_prompt="be terse") == "text"
        payload = client.post.call_args.kwargs["json"]
        assert payload["model"] == "anthropic/claude-3-5-sonnet"
        assert payload["max_tokens"] == 4000
        assert payload["messages"] == [
            {"role": "system", "content": "be terse"},
            {"role": "user", "content": "prompt"},
        ]

    @pytest.mark.asyncio
    async def test_generate_empty_content_is_empty_string(self, test_settings):
        provider = OpenRouterSynthesisProvider(
            config=test_settings, client=_client(_response(body={"choices": []})))
        assert await provider.generate("prompt") == ""

    @pytest.mark.asyncio
    async def test_generate_json_recovers_object_from_prose(self, test_settings):
        content = 'Here is the analysis:\n```json\n{"elements": [], "summary": "Detroit"}\n```'
        provider = OpenRouterSynthesisProvider(
            config=test_settings, client=_client(_response(body=_completion(content))))

        assert await provider.generate_json("prompt") == {"elements": [], "summary": "Detroit"}

    @pytest.mark.asyncio
    async def test_generate_json_without_object_raises_parse_error(self, test_settings):
        provider = OpenRouterSynthesisProvider(
            config=test_settings, client=_client(_response(body=_completion("Sorry, no data."))))
        with pytest.raises(SynthesisParseError):
            await provider.generate_json("prompt")

    @pytest.mark.asyncio
    async def test_http_error_raises_provider_error(self, test_settings):
        provider = OpenRouterSynthesisProvider(
            config=test_settings, client=_client(_response(429, {"error": "rate limited"})))
        with pytest.raises(ProviderError, match="API 429"):
            await provider.generate_json("prompt")

    @pytest.mark.asyncio
    async def test_error_payload_raises_provider_error(self, test_settings):
        provider = OpenRouterSynthesisProvider(
            config=test_settings, client=_client(_response(body={"error": {"message": "no credits"}})))
        with pytest.raises(ProviderError, match="no credits"):
            await provider.generate("prompt")

    @pytest.mark.asyncio
    async def test_non_object_body_raises_provider_error(self, test_settings):
        resp = _response()
        resp.json.return_value = ["x"]
        provider = OpenRouterSynthesisProvider(config=test_settings, client=_client(resp))
        with pytest.raises(ProviderError, match="non-object response body"):
            await provider.generate_json("prompt")

    @pytest.mark.asyncio
    async def test_unconfigured_raises(self, test_settings):
        provider = OpenRouterSynthesisProvider("placeholder", config=test_settings, client=_client())
        with pytest.raises(ProviderNotConfiguredError):
            await provider.generate("prompt")
