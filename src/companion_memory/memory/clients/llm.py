"""
Chat-completion client for an OpenAI-compatible provider.

Only the request/response contract is implemented here: one system prompt, one
user message, text back. Transport errors, timeouts, non-2xx responses and
empty content are raised as ProviderError.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..exceptions import ProviderError
from .retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY, with_retry


class ChatCompletionClient:
    """Async client for ``POST {base_url}/chat/completions``."""

    def __init__(
        self,
        base_url: str = "https://api.openai.com/v1",
        api_key: str = "",
        model: str = "gpt-4o-mini",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        retry_max_delay: float = DEFAULT_MAX_DELAY
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.model = model
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )
        self._headers = headers

    @classmethod
    def from_config(cls, llm_config: Dict[str, Any]) -> "ChatCompletionClient":
        return cls(
            base_url=llm_config.get('base_url', "https://api.openai.com/v1"),
            api_key=llm_config.get('api_key', ""),
            model=llm_config.get('model', "gpt-4o-mini"),
            timeout=llm_config.get('timeout_seconds', 30.0),
            max_attempts=llm_config.get('max_attempts', DEFAULT_MAX_ATTEMPTS),
            retry_base_delay=llm_config.get('retry_base_delay_seconds', DEFAULT_BASE_DELAY),
            retry_max_delay=llm_config.get('retry_max_delay_seconds', DEFAULT_MAX_DELAY),
        )

    async def complete(
        self,
        system_prompt: str,
        user_content: str,
        temperature: float = 0.3,
        max_tokens: int = 800
    ) -> str:
        """Run one chat completion and return the message content.

        Args:
            system_prompt: Instructions sent as the system message
            user_content: The user message
            temperature: Sampling temperature
            max_tokens: Completion token cap

        Returns:
            The assistant message text

        Raises:
            ProviderError: On any transport, status or payload problem, after
                retrying rate limits, server errors and timeouts
        """
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        return await with_retry(
            lambda: self._post(payload),
            "Chat completion",
            max_attempts=self.max_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    async def _post(self, payload: Dict[str, Any]) -> str:
        try:
            response = await self._client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderError('llm', f"request timed out after {self.timeout}s", retryable=True) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(
                'llm',
                "request rejected",
                status_code=status,
                retryable=status == 429 or status >= 500
            ) from e
        except httpx.RequestError as e:
            raise ProviderError('llm', f"transport error: {e}", retryable=True) from e

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logging.warning(f"Unexpected chat completion payload: {e}")
            raise ProviderError('llm', "malformed completion payload") from e

        if not content:
            raise ProviderError('llm', "no content in completion response")
        return content

    async def aclose(self) -> None:
        await self._client.aclose()
