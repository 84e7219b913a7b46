import httpx
import pytest

from sonar_bot.ai.client import PerplexityClient, strip_citation_markers
from sonar_bot.config import PerplexityConfig
from sonar_bot.core.errors import (
    ApiError,
    ApiRateLimitedError,
    ApiTimeoutError,
    UnauthorizedError,
)
from sonar_bot.core.types import MessageRole
from sonar_bot.storage.models import ConversationMessage

from conftest import completion


def _history(*pairs):
    return [ConversationMessage(role=role, content=text) for role, text in pairs]


def test_strip_citation_markers():
    assert strip_citation_markers("Paris is the capital[1][2].") == "Paris is the capital."
    assert strip_citation_markers("A [1] and  B [2] end") == "A and B end"


def test_strip_citation_markers_keeps_line_breaks():
    assert strip_citation_markers("first[1]\n\nsecond") == "first\n\nsecond"


async def test_chat_builds_request(perplexity, upstream):
    history = _history(
        (MessageRole.SYSTEM, "internal note"),
        (MessageRole.USER, "hello"),
        (MessageRole.ASSISTANT, "hi"),
        (MessageRole.USER, "what's new?"),
    )
    result = await perplexity.chat(history, "SYSTEM PROMPT", model="sonar", temperature=0.1, max_tokens=99)

    assert result.content == "ok"
    assert result.usage.total_tokens == 17
    body = upstream.requests[0]
    assert body["model"] == "sonar"
    assert body["temperature"] == 0.1
    assert body["max_tokens"] == 99
    assert body["stream"] is False
    assert "return_citations" not in body
    assert body["messages"] == [
        {"role": "system", "content": "SYSTEM PROMPT"},
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "hi"},
        {"role": "user", "content": "what's new?"},
    ]
    assert upstream.headers[0]["authorization"] == "Bearer pplx-test"


async def test_chat_wraps_only_user_turns(perplexity, upstream):
    history = _history((MessageRole.USER, "hello"), (MessageRole.ASSISTANT, "hi"))

    await perplexity.chat(history, "prompt", wrap_user=lambda text: f"<<{text}>>")

    assert upstream.requests[0]["messages"][1:] == [
        {"role": "user", "content": "<<hello>>"},
        {"role": "assistant", "content": "hi"},
    ]
    assert history[0].content == "hello"


async def test_chat_uses_configured_defaults(perplexity, upstream):
    await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")
    body = upstream.requests[0]
    assert body["model"] == "sonar-pro"
    assert body["temperature"] == 0.7
    assert body["max_tokens"] == 4096


async def test_strips_citations_when_disabled(perplexity, upstream):
    upstream.queue(body=completion("Paris is the capital[1][2].", citations=["https://a.example"]))
    result = await perplexity.chat(_history((MessageRole.USER, "capital?")), "prompt")
    assert result.content == "Paris is the capital."
    assert result.citations is None


async def test_keeps_citations_when_enabled(app_config, upstream):
    config = PerplexityConfig(api_key="k", retry_delay_ms=0, return_citations=True)
    client = PerplexityClient(config, app_config.ai, transport=upstream.transport)
    upstream.queue(body=completion("Paris[1].", citations=["https://a.example"]))

    result = await client.chat(_history((MessageRole.USER, "capital?")), "prompt")
    await client.aclose()

    assert result.content == "Paris[1]."
    assert result.citations == ["https://a.example"]
    assert upstream.requests[0]["return_citations"] is True


async def test_retries_after_429_then_succeeds(perplexity, upstream):
    upstream.queue(429, {"error": {"message": "slow down"}})
    upstream.queue(200, completion("recovered"))

    result = await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")

    assert result.content == "recovered"
    assert len(upstream.requests) == 2


async def test_three_server_errors_raise_api_error(perplexity, upstream):
    for _ in range(3):
        upstream.queue(500, {"error": {"message": "boom"}})

    with pytest.raises(ApiError) as exc_info:
        await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")

    assert len(upstream.requests) == 3
    assert exc_info.value.status_code == 500
    assert "boom" in exc_info.value.message


async def test_server_error_then_success(perplexity, upstream):
    upstream.queue(503, {})
    upstream.queue(200, completion("fine"))
    result = await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")
    assert result.content == "fine"


async def test_repeated_429_raises_api_rate_limited(perplexity, upstream):
    for _ in range(3):
        upstream.queue(429, {})

    with pytest.raises(ApiRateLimitedError):
        await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")
    assert len(upstream.requests) == 3


async def test_unauthorized_fails_without_retry(perplexity, upstream):
    upstream.queue(401, {"error": {"message": "bad key"}})

    with pytest.raises(UnauthorizedError) as exc_info:
        await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")

    assert exc_info.value.message == "Invalid API key"
    assert len(upstream.requests) == 1


async def test_client_error_fails_without_retry(perplexity, upstream):
    upstream.queue(400, {"error": {"message": "Invalid model"}})

    with pytest.raises(ApiError) as exc_info:
        await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "API error: Invalid model"
    assert len(upstream.requests) == 1


async def test_timeouts_raise_api_timeout(perplexity, upstream):
    for _ in range(3):
        upstream.queue_error(httpx.ReadTimeout)

    with pytest.raises(ApiTimeoutError) as exc_info:
        await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")

    assert exc_info.value.status_code == 504
    assert len(upstream.requests) == 3


async def test_network_errors_raise_api_error(perplexity, upstream):
    for _ in range(3):
        upstream.queue_error(httpx.ConnectError)

    with pytest.raises(ApiError) as exc_info:
        await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")

    assert exc_info.value.status_code == 500


async def test_validate_api_key(perplexity, upstream):
    assert await perplexity.validate_api_key() is True
    assert upstream.requests[0]["max_tokens"] == 10
    assert upstream.requests[0]["messages"][-1] == {"role": "user", "content": "Hi"}

    upstream.queue(401, {})
    assert await perplexity.validate_api_key() is False


def test_available_models():
    assert PerplexityClient.available_models() == [
        "sonar-pro",
        "sonar-reasoning",
        "sonar",
        "sonar-reasoning-pro",
    ]


@pytest.mark.parametrize(
    "body",
    [
        {"choices": [{"message": {"content": "ok"}}], "usage": "lots"},
        {"choices": [{"message": {"content": 42}}]},
        {"choices": "none"},
        ["not", "an", "object"],
    ],
)
async def test_malformed_success_body_raises_api_error(perplexity, upstream, body):
    upstream.queue(200, body)

    with pytest.raises(ApiError) as exc_info:
        await perplexity.chat(_history((MessageRole.USER, "hi")), "prompt")

    assert "malformed response" in exc_info.value.message
    assert len(upstream.requests) == 1
