"""WhatsApp messenger adapter using the WhatsApp Business Cloud API.

Outbound messages go through the Graph API over httpx. Inbound messages
arrive as webhook calls, which the admin HTTP app routes to this adapter.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from sonar_bot.config import WhatsAppConfig
from sonar_bot.core.types import Platform
from sonar_bot.log import get_logger
from sonar_bot.messenger.base import MessengerAdapter
from sonar_bot.messenger.formatting import parse_command, split_message, to_whatsapp_markdown
from sonar_bot.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000
CHUNK_DELAY_SECONDS = 0.5


def _parse_timestamp(raw: Any) -> datetime:
    try:
        return datetime.fromtimestamp(int(raw), tz=timezone.utc)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)


def normalize_message(raw: dict[str, Any], contacts: list[dict[str, Any]]) -> Optional[IncomingMessage]:
    """Build an IncomingMessage from one webhook ``messages`` entry.

    Returns None for anything that is not a non-empty text message.
    """
    if raw.get("type") != "text":
        return None
    text = (raw.get("text") or {}).get("body", "")
    if not text.strip():
        return None

    sender = str(raw.get("from", ""))
    display_name = None
    for contact in contacts:
        if contact.get("wa_id") == sender:
            display_name = (contact.get("profile") or {}).get("name")
            break

    command: Optional[str] = None
    args: list[str] = []
    parsed = parse_command(text)
    if parsed:
        command, args = parsed
        text = " ".join(args)

    return IncomingMessage(
        id=str(raw.get("id", "")),
        platform=Platform.WHATSAPP,
        chat_id=sender,
        user_id=sender,
        text=text,
        timestamp=_parse_timestamp(raw.get("timestamp")),
        user_display_name=display_name,
        command=command,
        command_args=args,
        reply_to_message_id=(raw.get("context") or {}).get("id"),
    )


class WhatsAppAdapter(MessengerAdapter):
    """WhatsApp Business Cloud API adapter."""

    def __init__(self, config: WhatsAppConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__()
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def platform_name(self) -> Platform:
        return Platform.WHATSAPP

    async def start(self) -> None:
        if not self.config.access_token or not self.config.phone_number_id:
            raise ValueError("WhatsApp access token or phone number id not configured")

        self._client = httpx.AsyncClient(
            base_url=f"{self.config.api_url.rstrip('/')}/{self.config.phone_number_id}",
            headers={"Authorization": f"Bearer {self.config.access_token}"},
            timeout=30,
            transport=self._transport,
        )
        self._running = True
        logger.info("whatsapp_adapter_started", phone_number_id=self.config.phone_number_id)

    async def stop(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._running:
            self._running = False
            logger.info("whatsapp_adapter_stopped")

    async def _post(self, payload: dict[str, Any]) -> None:
        if not self._client:
            logger.error("whatsapp_send_without_client")
            return
        response = await self._client.post(
            "/messages", json={"messaging_product": "whatsapp", **payload}
        )
        response.raise_for_status()

    async def send_message(self, message: OutgoingMessage) -> None:
        chunks = split_message(message.text, max_length=MAX_MESSAGE_LENGTH)
        try:
            for i, chunk in enumerate(chunks):
                payload: dict[str, Any] = {
                    "to": message.chat_id,
                    "type": "text",
                    "text": {"body": to_whatsapp_markdown(chunk), "preview_url": False},
                }
                if message.reply_to_message_id and i == 0:
                    payload["context"] = {"message_id": message.reply_to_message_id}
                await self._post(payload)
                if len(chunks) > 1:
                    await asyncio.sleep(CHUNK_DELAY_SECONDS)
        except httpx.HTTPError as e:
            logger.error("whatsapp_send_failed", error=str(e), chat_id=message.chat_id)
            raise

    async def send_typing_indicator(self, chat_id: str) -> None:
        # The Cloud API has no typing state; read receipts are sent per message instead.
        pass

    async def mark_read(self, message_id: str) -> None:
        try:
            await self._post({"status": "read", "message_id": message_id})
        except httpx.HTTPError as e:
            logger.warning("whatsapp_mark_read_failed", error=str(e), message_id=message_id)

    def verify_webhook(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Answer Meta's subscription handshake. Returns the challenge if the token matches."""
        if mode == "subscribe" and token and token == self.config.verify_token:
            logger.info("whatsapp_webhook_verified")
            return challenge or ""
        logger.warning("whatsapp_webhook_verification_failed", mode=mode)
        return None

    async def handle_webhook(self, payload: dict[str, Any]) -> int:
        """Process every text message in a webhook payload. Returns how many were handled."""
        handled = 0
        for entry in payload.get("entry") or []:
            for change in entry.get("changes") or []:
                value = change.get("value") or {}
                contacts = value.get("contacts") or []
                for raw in value.get("messages") or []:
                    incoming = normalize_message(raw, contacts)
                    if incoming is None:
                        continue
                    await self._dispatch(incoming)
                    handled += 1
        return handled

    async def _dispatch(self, incoming: IncomingMessage) -> None:
        if not self._message_callback:
            return
        try:
            await self.mark_read(incoming.id)
            response = await self._message_callback(incoming)
            await self.send_message(
                OutgoingMessage(
                    chat_id=incoming.chat_id,
                    text=response.content,
                    reply_to_message_id=incoming.id,
                )
            )
        except Exception as e:
            logger.error("whatsapp_handler_error", error=str(e), chat_id=incoming.chat_id)
