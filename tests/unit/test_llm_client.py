"""
Unit tests for ChatCompletionClient

Uses httpx.MockTransport so no network traffic happens.
"""

import json
import pytest
import httpx

from companion_memory.memory.clients.llm import ChatCompletionClient
from companion_memory.memory.exceptions import ProviderError


def make_client(handler, max_attempts: int = 3) -> ChatCompletionClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatCompletionClient(
        base_url="https://llm.test/v1/",
        api_key="sk-test",
        model="test-model",
        timeout=5.0,
        http_client=http_client,
        max_attempts=max_attempts,
        retry_base_delay=0,
    )


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class TestComplete:

    @pytest.mark.asyncio
    async def test_sends_openai_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured['url'] = str(request.url)
            captured['auth'] = request.headers.get('Authorization')
            captured['body'] = json.loads(request.content)
            return httpx.Response(200, json=completion('["User has a dog"]'))

        client = make_client(handler)
        content = await client.complete("system", "I have a dog", temperature=0.2, max_tokens=800)
        await client.aclose()

        assert content == '["User has a dog"]'
        assert captured['url'] == "https://llm.test/v1/chat/completions"
        assert captured['auth'] == "Bearer sk-test"
        assert captured['body']['model'] == "test-model"
        assert captured['body']['temperature'] == 0.2
        assert captured['body']['max_tokens'] == 800
        assert captured['body']['messages'] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "I have a dog"},
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,retryable", [(429, True), (503, True), (401, False)])
    async def test_error_status(self, status, retryable):
        client = make_client(lambda request: httpx.Response(status, json={"error": "nope"}))
        with pytest.raises(ProviderError) as exc_info:
            await client.complete("system", "hello")
        assert exc_info.value.status_code == status
        assert exc_info.value.retryable is retryable
        assert exc_info.value.provider == 'llm'

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        client = make_client(handler)
        with pytest.raises(ProviderError) as exc_info:
            await client.complete("system", "hello")
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        with pytest.raises(ProviderError):
            await client.complete("system", "hello")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"choices": []}, {"unexpected": True}, completion(None), completion("")])
    async def test_malformed_or_empty_payload(self, payload):
        client = make_client(lambda request: httpx.Response(200, json=payload))
        with pytest.raises(ProviderError):
            await client.complete("system", "hello")

    def test_from_config(self):
        client = ChatCompletionClient.from_config({'model': 'gpt-test', 'timeout_seconds': 3})
        assert client.model == 'gpt-test'
        assert client.timeout == 3
        assert client.base_url == "https://api.openai.com/v1"
        assert client.max_attempts == 3


class TestRetry:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 503])
    async def test_retryable_status_then_success(self, status):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(status, json={"error": "busy"})
            return httpx.Response(200, json=completion('["User has a dog"]'))

        client = make_client(handler)
        assert await client.complete("system", "I have a dog") == '["User has a dog"]'
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_timeout_then_success(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ReadTimeout("too slow", request=request)
            return httpx.Response(200, json=completion('["User has a dog"]'))

        client = make_client(handler)
        assert await client.complete("system", "hello") == '["User has a dog"]'
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, json={"error": "rate limited"})

        client = make_client(handler, max_attempts=2)
        with pytest.raises(ProviderError) as exc_info:
            await client.complete("system", "hello")
        assert exc_info.value.status_code == 429
        assert len(calls) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(401, json={"error": "unauthorized"}),
        httpx.Response(200, json={"choices": []}),
    ])
    async def test_non_retryable_fails_once(self, response):
        calls = []

        def handler(request):
            calls.append(request)
            return response

        client = make_client(handler)
        with pytest.raises(ProviderError):
            await client.complete("system", "hello")
        assert len(calls) == 1
