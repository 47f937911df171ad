"""OpenAI-compatible chat completions provider.

Works against api.openai.com or any endpoint speaking the same protocol
(local Ollama, proxies, hosted gateways) via ``base_url``.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncGenerator

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    RateLimitError,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..logging import before_sleep_log_event, log_event
from ..timeouts import (
    DEFAULT_PROFILE_TIMEOUT_SEC,
    RETRY_BACKOFF_INITIAL_SEC,
    RETRY_BACKOFF_MAX_SEC,
    STANDARD_RETRY_ATTEMPTS,
    build_ai_httpx_timeout,
)

PROVIDER_NAME = "openai-compatible"


def _log_provider_error(message: str) -> None:
    log_event("provider_log", level=logging.ERROR, provider=PROVIDER_NAME, message=message)


class OpenAICompatibleProvider:
    """Chat completions provider backed by ``openai.AsyncOpenAI``."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float = DEFAULT_PROFILE_TIMEOUT_SEC,
    ):
        """Initialize provider.

        Args:
            api_key: API key sent as bearer token
            base_url: Endpoint root (``None`` = OpenAI default)
            timeout: Read timeout in seconds (0 = no timeout)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.client: Any = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=build_ai_httpx_timeout(timeout),
            max_retries=0,  # Retries are handled explicitly with tenacity
        )

    @retry(
        retry=retry_if_exception_type(
            (APIConnectionError, RateLimitError, APITimeoutError, InternalServerError)
        ),
        wait=wait_exponential(
            multiplier=RETRY_BACKOFF_INITIAL_SEC,
            min=RETRY_BACKOFF_INITIAL_SEC,
            max=RETRY_BACKOFF_MAX_SEC,
        ),
        stop=stop_after_attempt(STANDARD_RETRY_ATTEMPTS),
        before_sleep=before_sleep_log_event(
            provider=PROVIDER_NAME,
            operation="_create_chat_completion",
            level=logging.WARNING,
        ),
        reraise=True,
    )
    async def _create_chat_completion(
        self,
        model: str,
        messages: list[dict[str, str]],
        stream: bool,
    ):
        return await self.client.chat.completions.create(
            model=model,
            messages=messages,
            stream=stream,
        )

    async def send_message(
        self,
        messages: list[dict[str, str]],
        model: str,
        *,
        stream: bool = True,
    ) -> AsyncGenerator[str, None]:
        """Send messages and yield reply text chunks.

        Yields:
            Content deltas when streaming, otherwise the whole reply once.
        """
        try:
            response = await self._create_chat_completion(
                model=model,
                messages=messages,
                stream=stream,
            )

            if not stream:
                choices = getattr(response, "choices", None) or []
                if choices and choices[0].message.content:
                    yield choices[0].message.content
                return

            async for chunk in response:
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content

                finish_reason = chunk.choices[0].finish_reason
                if finish_reason == "length":
                    log_event(
                        "provider_log",
                        level=logging.WARNING,
                        provider=PROVIDER_NAME,
                        message="Response truncated due to max_tokens limit",
                    )
                elif finish_reason == "content_filter":
                    log_event(
                        "provider_log",
                        level=logging.WARNING,
                        provider=PROVIDER_NAME,
                        message="Response filtered due to content policy",
                    )
                    yield "\n[Response was filtered due to content policy]"

        except AuthenticationError as e:
            _log_provider_error(f"Authentication failed: {e}")
            raise
        except BadRequestError as e:
            _log_provider_error(f"Bad request: {e}")
            raise
        except APIStatusError as e:
            _log_provider_error(f"API error ({e.status_code}) after retries: {e}")
            raise
        except (APIConnectionError, APITimeoutError) as e:
            _log_provider_error(f"API error after retries: {type(e).__name__}: {e}")
            raise
