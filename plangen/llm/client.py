"""Text-completion client and the rate-limit-only retry wrapper.

Only rate limiting is retried. Auth failures, malformed requests and timeouts
fail the job immediately; retrying them would only burn quota and delay the
error.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import openai
from loguru import logger

from plangen.config.settings import settings
from plangen.errors import EmptyCompletionError, FatalProviderError, ProviderError, RateLimitExhaustedError

Message = dict[str, str]
SleepFn = Callable[[float], Awaitable[None]]
BeforeAttemptFn = Callable[[], Awaitable[None]]

_RATE_LIMIT_PATTERN = re.compile(r"rate[ _]limit|too many requests|\b429\b")


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class CompletionResult:
    """Raw completion text plus provider metadata."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    finish_reason: str | None = None
    model: str | None = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"


class CompletionClient(ABC):
    """Text-completion capability consumed by the generation pipeline."""

    @abstractmethod
    async def complete(self, messages: list[Message], max_output_tokens: int) -> CompletionResult:
        """Run one completion.

        Args:
            messages: Chat messages (role/content dicts)
            max_output_tokens: Output-token limit for this call

        Returns:
            CompletionResult with the raw text
        """


class OpenAICompletionClient(CompletionClient):
    """CompletionClient backed by the OpenAI chat completions API in JSON mode."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        timeout: float | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self.model = model or settings.openai_model
        self.temperature = settings.llm_temperature if temperature is None else temperature
        if client is None:
            key = api_key if api_key is not None else settings.openai_api_key
            if not key:
                raise RuntimeError("OPENAI_API_KEY not set. Set the OPENAI_API_KEY environment variable.")
            # The SDK's own retries would also retry non-rate-limit errors
            client = openai.AsyncOpenAI(
                api_key=key,
                timeout=timeout if timeout is not None else settings.llm_timeout_seconds,
                max_retries=0,
            )
        self._client = client

    async def complete(self, messages: list[Message], max_output_tokens: int) -> CompletionResult:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=messages,  # type: ignore[arg-type]
            response_format={"type": "json_object"},
            temperature=self.temperature,
            max_tokens=max_output_tokens,
        )

        choice = response.choices[0] if response.choices else None
        text = choice.message.content if choice is not None else None
        if not text:
            raise EmptyCompletionError(f"Empty completion from model {self.model}")

        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return CompletionResult(
            text=text,
            usage=usage,
            finish_reason=choice.finish_reason if choice is not None else None,
            model=response.model,
        )


def is_rate_limit_error(error: Exception) -> bool:
    """Check if an error signals rate limiting.

    Args:
        error: Exception to check

    Returns:
        True for openai.RateLimitError, HTTP 429, or a rate-limit message
    """
    if isinstance(error, openai.RateLimitError):
        return True

    for attr in ("status_code", "status"):
        status: Any = getattr(error, attr, None)
        if status == 429:
            return True

    message = str(error).lower()
    return _RATE_LIMIT_PATTERN.search(message) is not None


def calculate_backoff_delay(attempt: int, base_delay: float = 2.0, max_delay: float = 30.0) -> float:
    """Calculate exponential backoff delay.

    Args:
        attempt: Current attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay in seconds

    Returns:
        Delay in seconds
    """
    delay = base_delay * (2**attempt)
    return min(delay, max_delay)


async def complete_with_retry(
    client: CompletionClient,
    messages: list[Message],
    max_output_tokens: int,
    *,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    max_delay: float | None = None,
    sleep: SleepFn = asyncio.sleep,
    before_attempt: BeforeAttemptFn | None = None,
) -> CompletionResult:
    """Call the model, retrying with backoff only when rate limited.

    Args:
        client: Completion client
        messages: Chat messages
        max_output_tokens: Output-token limit
        max_attempts: Total attempts (defaults to settings)
        base_delay: Backoff base in seconds (defaults to settings)
        max_delay: Backoff cap in seconds (defaults to settings)
        sleep: Awaitable sleep, injectable for tests
        before_attempt: Awaited before every attempt, including retries; whatever
            it raises propagates unchanged (the pipeline uses it for cancellation)

    Returns:
        CompletionResult

    Raises:
        RateLimitExhaustedError: If every attempt was rate limited
        FatalProviderError: On any non-rate-limit failure
        ProviderError: Provider errors raised by the client itself pass through
    """
    attempts = settings.llm_max_attempts if max_attempts is None else max_attempts
    base = settings.llm_backoff_base_seconds if base_delay is None else base_delay
    cap = settings.llm_backoff_max_seconds if max_delay is None else max_delay

    last_error: Exception | None = None
    for attempt in range(attempts):
        if before_attempt is not None:
            await before_attempt()
        try:
            return await client.complete(messages, max_output_tokens)
        except ProviderError:
            raise
        except Exception as e:
            if not is_rate_limit_error(e):
                logger.error(
                    "Model call failed with non-retryable error",
                    error_type=type(e).__name__,
                    error=str(e),
                    attempt=attempt + 1,
                )
                raise FatalProviderError(e) from e

            last_error = e
            if attempt >= attempts - 1:
                break

            delay = calculate_backoff_delay(attempt, base, cap)
            logger.warning(
                "Model call rate limited, backing off",
                attempt=attempt + 1,
                max_attempts=attempts,
                delay_seconds=delay,
            )
            await sleep(delay)

    logger.error("Model call still rate limited after all attempts", attempts=attempts)
    assert last_error is not None
    raise RateLimitExhaustedError(attempts, last_error) from last_error
