import json
from typing import Any, Optional

import httpx
import pytest

from sonar_bot.ai.client import PerplexityClient
from sonar_bot.ai.handler import MessageHandler
from sonar_bot.ai.prompts import CONFIG_FILENAME, PromptRegistry
from sonar_bot.config import (
    AIConfig,
    AppConfig,
    PerplexityConfig,
    SecurityConfig,
    SessionConfig,
)
from sonar_bot.core.security import SecurityService
from sonar_bot.core.session import SessionManager
from sonar_bot.storage.memory import InMemorySessionStorage


def completion(content: str, citations: Optional[list[str]] = None, model: str = "sonar-pro") -> dict[str, Any]:
    body: dict[str, Any] = {
        "id": "cmpl-1",
        "model": model,
        "created": 1700000000,
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 5, "total_tokens": 17},
    }
    if citations is not None:
        body["citations"] = citations
    return body


class FakeUpstream:
    """Scripted stand-in for the chat-completions endpoint."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []
        self._responses: list[Any] = []

    def queue(self, status: int = 200, body: Any = None) -> None:
        self._responses.append((status, body if body is not None else completion("ok")))

    def queue_error(self, error: type[httpx.HTTPError]) -> None:
        self._responses.append(error)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        if not self._responses:
            return httpx.Response(200, json=completion("ok"))
        item = self._responses.pop(0)
        if isinstance(item, type):
            raise item("upstream failure", request=request)
        status, body = item
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig(
        data_dir=str(tmp_path),
        perplexity=PerplexityConfig(api_key="pplx-test", retry_delay_ms=0),
        ai=AIConfig(system_prompt="You are a test assistant."),
        security=SecurityConfig(rate_limit_requests=5, admin_user_ids=["admin-1"]),
        session=SessionConfig(max_conversation_history=4, timeout_seconds=3600),
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
async def perplexity(app_config, upstream):
    client = PerplexityClient(app_config.perplexity, app_config.ai, transport=upstream.transport)
    yield client
    await client.aclose()


@pytest.fixture
def session_manager(app_config) -> SessionManager:
    return SessionManager(InMemorySessionStorage(), app_config.session, app_config.security)


@pytest.fixture
def security(app_config) -> SecurityService:
    return SecurityService(app_config.security)


@pytest.fixture
def registry(app_config, tmp_path) -> PromptRegistry:
    return PromptRegistry(tmp_path / CONFIG_FILENAME, app_config.ai)


@pytest.fixture
def handler(session_manager, security, registry, perplexity, app_config) -> MessageHandler:
    return MessageHandler(session_manager, security, registry, perplexity, app_config)
