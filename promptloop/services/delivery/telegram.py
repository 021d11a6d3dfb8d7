"""Telegram Bot API transport."""

import httpx

from promptloop.config import get_config
from promptloop.core.security import mask_secret
from promptloop.schemas.channel import TelegramChannel
from promptloop.services.chunking import chunk_plain_text, compose_message
from promptloop.services.delivery.base import BaseTransport, DeliveryError, DeliveryMessage


class TelegramTransport(BaseTransport):
    """Sends plain-text parts with `sendMessage`."""

    name = "telegram"

    def __init__(self, channel: TelegramChannel, client: httpx.AsyncClient) -> None:
        super().__init__(client)
        self.channel = channel

    @property
    def chunk_budget(self) -> int:
        return get_config().delivery.telegram_max_chars

    @property
    def destination(self) -> str:
        return f"telegram chat {mask_secret(self.channel.chat_id)}"

    @property
    def endpoint(self) -> str:
        base = get_config().delivery.telegram_api_base.rstrip("/")
        return f"{base}/bot{self.channel.bot_token}/sendMessage"

    async def send(self, message: DeliveryMessage) -> int:
        text = compose_message(message.title, message.body, message.citations)
        chunks = chunk_plain_text(text, self.chunk_budget)
        for chunk in chunks:
            response = await self.request(
                "POST",
                self.endpoint,
                json_body={"chat_id": self.channel.chat_id, "text": chunk},
            )
            self.raise_for_status(response)
            self._raise_for_api_error(response)
        return len(chunks)

    def _raise_for_api_error(self, response: httpx.Response) -> None:
        # The Bot API reports some failures as {"ok": false} bodies
        try:
            data = response.json()
        except ValueError:
            return
        if isinstance(data, dict) and data.get("ok") is False:
            code = data.get("error_code")
            raise DeliveryError(
                f"telegram rejected message: {data.get('description', 'unknown error')}",
                status_code=code if isinstance(code, int) else None,
            )
