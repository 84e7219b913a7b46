import json
from datetime import datetime, timezone

import httpx
import pytest
from telegram import Chat, Message, User

from sonar_bot.config import WhatsAppConfig
from sonar_bot.core.types import Platform
from sonar_bot.messenger import whatsapp as whatsapp_module
from sonar_bot.messenger.models import MessageResponse, OutgoingMessage
from sonar_bot.messenger.telegram import normalize_message as normalize_telegram
from sonar_bot.messenger.whatsapp import WhatsAppAdapter, normalize_message as normalize_whatsapp


def _telegram_message(text: str) -> Message:
    return Message(
        message_id=10,
        date=datetime(2024, 5, 1, tzinfo=timezone.utc),
        chat=Chat(id=555, type="private"),
        from_user=User(id=77, first_name="Ann", is_bot=False, username="ann"),
        text=text,
    )


def test_telegram_text_message():
    incoming = normalize_telegram(_telegram_message("hello bot"))

    assert incoming.platform is Platform.TELEGRAM
    assert incoming.user_id == "77"
    assert incoming.chat_id == "555"
    assert incoming.id == "10"
    assert incoming.text == "hello bot"
    assert incoming.user_display_name == "ann"
    assert not incoming.is_command


def test_telegram_command_strips_bot_mention():
    incoming = normalize_telegram(_telegram_message("/Preset@SonarBot coder now"))

    assert incoming.command == "preset"
    assert incoming.command_args == ["coder", "now"]
    assert incoming.text == "coder now"


def _webhook(*messages, contacts=None):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "123",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "contacts": contacts or [{"wa_id": "15550001", "profile": {"name": "Bo"}}],
                            "messages": list(messages),
                        },
                    }
                ],
            }
        ],
    }


def _text(body: str, msg_id: str = "wamid.1") -> dict:
    return {
        "from": "15550001",
        "id": msg_id,
        "timestamp": "1714521600",
        "type": "text",
        "text": {"body": body},
    }


def test_whatsapp_normalization():
    incoming = normalize_whatsapp(_text("/model sonar"), [{"wa_id": "15550001", "profile": {"name": "Bo"}}])

    assert incoming.platform is Platform.WHATSAPP
    assert incoming.user_id == "15550001"
    assert incoming.chat_id == "15550001"
    assert incoming.user_display_name == "Bo"
    assert incoming.command == "model"
    assert incoming.text == "sonar"
    assert incoming.timestamp == datetime(2024, 5, 1, tzinfo=timezone.utc)


def test_whatsapp_ignores_non_text():
    image = {"from": "1", "id": "x", "timestamp": "1", "type": "image", "image": {"id": "m"}}
    assert normalize_whatsapp(image, []) is None
    assert normalize_whatsapp(_text("   "), []) is None


class GraphApi:
    def __init__(self) -> None:
        self.posts: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.posts.append({"url": str(request.url), **json.loads(request.content)})
        return httpx.Response(200, json={"messages": [{"id": "wamid.out"}]})


@pytest.fixture
def graph() -> GraphApi:
    return GraphApi()


@pytest.fixture
async def whatsapp(graph, monkeypatch):
    monkeypatch.setattr(whatsapp_module, "CHUNK_DELAY_SECONDS", 0)
    adapter = WhatsAppAdapter(
        WhatsAppConfig(enabled=True, access_token="token", phone_number_id="999", verify_token="v"),
        transport=httpx.MockTransport(graph.handler),
    )
    await adapter.start()
    yield adapter
    await adapter.stop()


async def test_whatsapp_webhook_round_trip(whatsapp, graph):
    seen = []

    async def on_message(incoming):
        seen.append(incoming)
        return MessageResponse(content="**Hello** there")

    whatsapp.on_message(on_message)

    handled = await whatsapp.handle_webhook(_webhook(_text("hi"), {"from": "1", "id": "y", "type": "audio"}))

    assert handled == 1
    assert seen[0].text == "hi"
    read_receipt, reply = graph.posts
    assert read_receipt["status"] == "read"
    assert read_receipt["message_id"] == "wamid.1"
    assert reply["url"] == "https://graph.facebook.com/v19.0/999/messages"
    assert reply["to"] == "15550001"
    assert reply["text"]["body"] == "*Hello* there"
    assert reply["context"] == {"message_id": "wamid.1"}


async def test_whatsapp_long_reply_is_chunked(whatsapp, graph):
    await whatsapp.send_message(OutgoingMessage(chat_id="15550001", text="x" * 4500))

    bodies = [post["text"]["body"] for post in graph.posts]
    assert [len(body) for body in bodies] == [4000, 500]


def test_whatsapp_verify_webhook():
    adapter = WhatsAppAdapter(WhatsAppConfig(verify_token="v"))
    assert adapter.verify_webhook("subscribe", "v", "42") == "42"
    assert adapter.verify_webhook("subscribe", "wrong", "42") is None
    assert adapter.verify_webhook("unsubscribe", "v", "42") is None
    assert adapter.is_active is False
