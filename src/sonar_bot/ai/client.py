"""Perplexity chat-completions client with retry, backoff and error classification."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

import httpx

from sonar_bot.ai.conversation import build_messages
from sonar_bot.config import AIConfig, PerplexityConfig
from sonar_bot.core.errors import (
    ApiError,
    ApiRateLimitedError,
    ApiTimeoutError,
    BotError,
    UnauthorizedError,
)
from sonar_bot.core.types import MessageRole
from sonar_bot.log import get_logger
from sonar_bot.storage.models import ConversationMessage

logger = get_logger(__name__)

AVAILABLE_MODELS = ("sonar-pro", "sonar-reasoning", "sonar", "sonar-reasoning-pro")

_CITATION_MARKER = re.compile(r"\[\d+\]")
_REPEATED_SPACES = re.compile(r"[ \t]{2,}")


def strip_citation_markers(text: str) -> str:
    """Remove inline ``[n]`` markers and collapse the spaces they leave behind."""
    return _REPEATED_SPACES.sub(" ", _CITATION_MARKER.sub("", text)).strip()


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatResult:
    """A single completed chat turn from the upstream API."""

    content: str
    citations: Optional[list[str]] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str = ""


class PerplexityClient:
    """Async client for ``POST {base_url}/chat/completions``."""

    def __init__(
        self,
        config: PerplexityConfig,
        ai_defaults: AIConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config
        self._ai_defaults = ai_defaults
        self._max_retries = config.max_retries
        self._retry_delay = config.retry_delay_ms / 1000
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
            event_hooks={"request": [self._log_request], "response": [self._log_response]},
        )

    @staticmethod
    async def _log_request(request: httpx.Request) -> None:
        logger.debug("perplexity_request", method=request.method, url=str(request.url))

    @staticmethod
    async def _log_response(response: httpx.Response) -> None:
        logger.debug(
            "perplexity_response",
            url=str(response.request.url),
            status=response.status_code,
        )

    @staticmethod
    def available_models() -> list[str]:
        return list(AVAILABLE_MODELS)

    async def chat(
        self,
        history: Sequence[ConversationMessage],
        system_prompt: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        wrap_user: Optional[Callable[[str], str]] = None,
    ) -> ChatResult:
        """Send the conversation and return the assistant reply.

        Client errors other than 429 fail at once. 429s wait twice as long as
        server and network errors before the next attempt. Once attempts run
        out the last error is raised, classified.
        """
        payload: dict[str, Any] = {
            "model": model or self._ai_defaults.model,
            "messages": build_messages(history, system_prompt, wrap_user),
            "temperature": temperature if temperature is not None else self._ai_defaults.temperature,
            "max_tokens": max_tokens if max_tokens is not None else self._ai_defaults.max_tokens,
            "stream": False,
        }
        if self._config.return_citations:
            payload["return_citations"] = True

        last_error: Optional[Exception] = None

        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._client.post("/chat/completions", json=payload)
                response.raise_for_status()
                return self._parse_response(response)
            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status == 429:
                    logger.warning("perplexity_rate_limited", attempt=attempt)
                    if attempt < self._max_retries:
                        await asyncio.sleep(self._retry_delay * attempt * 2)
                    continue
                if 400 <= status < 500:
                    logger.error(
                        "perplexity_client_error",
                        status=status,
                        error=_error_message(e.response),
                    )
                    raise self._map_error(e) from e
            except httpx.HTTPError as e:
                last_error = e

            if attempt < self._max_retries:
                logger.warning(
                    "perplexity_retry",
                    attempt=attempt,
                    error=_describe(last_error),
                )
                await asyncio.sleep(self._retry_delay * attempt)

        logger.error("perplexity_retries_exhausted", attempts=self._max_retries, error=_describe(last_error))
        raise self._map_error(last_error)

    def _parse_response(self, response: httpx.Response) -> ChatResult:
        try:
            data = response.json()
            choices = data.get("choices") or [{}]
            content = (choices[0].get("message") or {}).get("content") or ""
            if not self._config.return_citations:
                content = strip_citation_markers(content)
            usage = data.get("usage") or {}
            result = ChatResult(
                content=content,
                citations=data.get("citations") if self._config.return_citations else None,
                usage=TokenUsage(
                    prompt_tokens=usage.get("prompt_tokens", 0),
                    completion_tokens=usage.get("completion_tokens", 0),
                    total_tokens=usage.get("total_tokens", 0),
                ),
                model=data.get("model", ""),
            )
        except (ValueError, AttributeError, TypeError, IndexError) as e:
            raise ApiError(f"API error: malformed response ({e})") from e

        return result

    @staticmethod
    def _map_error(error: Optional[Exception]) -> BotError:
        if error is None:
            return ApiError("Unknown API error")

        if isinstance(error, httpx.TimeoutException):
            return ApiTimeoutError("API request timed out. Please try again.")

        if isinstance(error, httpx.HTTPStatusError):
            status = error.response.status_code
            if status == 429:
                return ApiRateLimitedError("API rate limit exceeded. Please try again later.")
            if status == 401:
                return UnauthorizedError("Invalid API key")
            return ApiError(f"API error: {_error_message(error.response)}", status_code=status)

        return ApiError(_describe(error))

    async def validate_api_key(self) -> bool:
        """Round-trip a tiny request; success means the key works."""
        try:
            await self.chat(
                [ConversationMessage(role=MessageRole.USER, content="Hi")],
                "You are a test assistant.",
                max_tokens=10,
            )
            return True
        except BotError as e:
            logger.error("api_key_validation_failed", error=e.message)
            return False

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
        message = body.get("error", {}).get("message")
        if message:
            return message
    except (ValueError, AttributeError):
        pass
    return response.reason_phrase or f"HTTP {response.status_code}"


def _describe(error: Optional[Exception]) -> str:
    if error is None:
        return "unknown"
    return str(error) or type(error).__name__
