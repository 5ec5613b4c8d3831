"""
OpenAI-compatible chat completions provider.

Works against api.openai.com and any server that implements the Chat
Completions API with SSE streaming (Ollama, vLLM, LM Studio, LocalAI).
"""

import json
from typing import AsyncIterator, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from voicerelay.config.logging_config import get_logger
from voicerelay.llm.base import LLMProvider
from voicerelay.llm.types import (
    LLMRequest,
    LLMError,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMConnectionError,
    LLMAuthenticationError,
)

logger = get_logger(__name__)


class OpenAICompatibleProvider(LLMProvider):
    """
    Streaming chat completions over an OpenAI-compatible HTTP API.

    Transient transport errors are retried with exponential backoff before the
    response is streamed; HTTP status errors are mapped onto the LLMError family.
    """

    TIMEOUT_FIRST_TOKEN = 60.0  # seconds

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        name: str = "openai",
        timeout_s: float = TIMEOUT_FIRST_TOKEN,
        max_retries: int = 3,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize provider.

        Args:
            base_url: API base, e.g. https://api.openai.com/v1 or http://localhost:11434/v1
            api_key: Bearer token (optional for most local deployments)
            name: Provider label used in logs
            timeout_s: Read timeout while waiting for the first token
            max_retries: Attempts for transient transport errors
            client: Pre-built httpx client (tests inject a MockTransport here)
        """
        super().__init__(api_key=api_key, base_url=base_url)

        if not self.base_url:
            raise ValueError("Base URL is required for OpenAI-compatible provider")

        self.base_url = self.base_url.rstrip("/")
        self.name = name
        self.max_retries = max(1, max_retries)
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=10.0,
                read=timeout_s,
                write=10.0,
                pool=10.0,
            ),
            follow_redirects=True,
        )

        logger.info(f"🤖 LLM [{self.name}]: Initialized with base URL {self.base_url}")

    @property
    def provider_name(self) -> str:
        return self.name

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate_stream(self, request: LLMRequest) -> AsyncIterator[str]:
        """
        Generate streaming response.

        Yields:
            str: Content deltas as they arrive via SSE

        Raises:
            LLMTimeoutError: Request timeout
            LLMRateLimitError: Rate limit (429 status)
            LLMAuthenticationError: Invalid API key (401/403)
            LLMConnectionError: Network error
            LLMError: Other errors
        """
        url = f"{self.base_url}/chat/completions"

        payload = {
            "model": request.model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
            "temperature": request.temperature,
            "stream": True,
        }

        if request.max_tokens:
            payload["max_tokens"] = request.max_tokens

        logger.info(f"🤖 LLM [{self.name}]: Streaming request to model '{request.model}'")

        response: Optional[httpx.Response] = None
        try:
            response = await self._make_request_with_retry(url, self._headers(), payload)

            chunk_count = 0
            async for chunk in self._parse_sse_stream(response):
                chunk_count += 1
                yield chunk

            logger.info(f"🤖 LLM [{self.name}]: Streaming complete ({chunk_count} chunks)")

        except httpx.TimeoutException as e:
            logger.error(f"🤖 LLM [{self.name}]: Timeout - {e}")
            raise LLMTimeoutError(f"LLM request timeout: {e}", provider=self.name) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429:
                logger.error(f"🤖 LLM [{self.name}]: Rate limit exceeded")
                raise LLMRateLimitError("LLM rate limit exceeded", status_code=status, provider=self.name) from e
            elif status in (401, 403):
                logger.error(f"🤖 LLM [{self.name}]: Authentication failed (status {status})")
                raise LLMAuthenticationError(
                    f"LLM authentication failed ({status})", status_code=status, provider=self.name
                ) from e
            else:
                logger.error(f"🤖 LLM [{self.name}]: HTTP error {status}: {e.response.text[:200]}")
                raise LLMError(
                    f"LLM HTTP error {status}: {e.response.text[:200]}", status_code=status, provider=self.name
                ) from e

        except httpx.RequestError as e:
            logger.error(f"🤖 LLM [{self.name}]: Connection error - {e}")
            raise LLMConnectionError(f"LLM connection error: {e}", provider=self.name) from e

        finally:
            if response is not None:
                await response.aclose()

    async def _make_request_with_retry(self, url: str, headers: dict, payload: dict) -> httpx.Response:
        """
        Open the streaming POST, retrying transient transport errors.

        Raises:
            httpx.HTTPStatusError: Non-2xx status code (body already read)
            httpx.RequestError: Connection or timeout error after all retries
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=1, max=5),
            retry=retry_if_exception_type(httpx.RequestError),
            reraise=True,
        ):
            with attempt:
                number = attempt.retry_state.attempt_number
                logger.debug(f"🤖 LLM [{self.name}]: Sending HTTP request (attempt {number}/{self.max_retries})")
                request = self.client.build_request("POST", url, headers=headers, json=payload)
                response = await self.client.send(request, stream=True)
                logger.debug(f"🤖 LLM [{self.name}]: Received HTTP response (status={response.status_code})")

                if response.is_error:
                    # Error bodies are short; read them so the status error can report them
                    await response.aread()
                    await response.aclose()
                    response.raise_for_status()

                return response

    async def _parse_sse_stream(self, response: httpx.Response) -> AsyncIterator[str]:
        """
        Parse Server-Sent Events stream.

        OpenAI-compatible format:
        data: {"choices":[{"delta":{"content":"hello"}}]}
        data: [DONE]
        """
        async for line in response.aiter_lines():
            line = line.strip()

            if not line or not line.startswith("data: "):
                continue

            data = line[6:]

            if data == "[DONE]":
                break

            try:
                chunk = json.loads(data)
            except json.JSONDecodeError as e:
                logger.warning(f"🤖 LLM [{self.name}]: Failed to parse SSE chunk: {e}, data: {data[:100]}")
                continue

            choices = chunk.get("choices", [])
            if choices:
                content = choices[0].get("delta", {}).get("content")
                if content:
                    yield content

    async def health_check(self) -> bool:
        """GET /models; True on 2xx."""
        try:
            response = await self.client.get(f"{self.base_url}/models", headers=self._headers(), timeout=10.0)
            response.raise_for_status()
            logger.info(f"🤖 LLM [{self.name}]: Health check passed")
            return True
        except httpx.HTTPError as e:
            logger.warning(f"🤖 LLM [{self.name}]: Health check failed - {e}")
            return False

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
