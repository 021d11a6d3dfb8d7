"""Generic HTTP callback transport."""

import json
from typing import Any

import httpx

from promptloop.config import get_config
from promptloop.core.security import mask_secret
from promptloop.schemas.channel import DiscordChannel, WebhookChannel
from promptloop.services.chunking import compose_message
from promptloop.services.delivery.base import BaseTransport, DeliveryError, DeliveryMessage
from promptloop.services.delivery.discord import DiscordTransport, is_discord_webhook_url


def default_envelope(message: DeliveryMessage) -> dict[str, Any]:
    """JSON body sent when the channel has no custom payload."""
    return {
        "title": message.title,
        "body": message.body,
        "content": compose_message(message.title, message.body, message.citations),
        "used_tool": message.used_tool,
        "citations": [c.model_dump(exclude_none=True) for c in message.citations],
        "meta": message.meta,
    }


class WebhookTransport(BaseTransport):
    """Sends the default envelope, or the configured payload verbatim.

    A custom payload aimed at a Discord webhook URL with a string `content`
    field is split like native Discord delivery.
    """

    name = "webhook"

    def __init__(self, channel: WebhookChannel, client: httpx.AsyncClient) -> None:
        super().__init__(client)
        self.channel = channel

    @property
    def chunk_budget(self) -> int:
        if is_discord_webhook_url(self.channel.url):
            return get_config().delivery.discord_max_chars
        # Single request, no splitting
        return 0

    @property
    def destination(self) -> str:
        return f"{self.channel.method} {mask_secret(self.channel.url)}"

    def _custom_payload(self) -> Any:
        try:
            return json.loads(self.channel.payload)
        except json.JSONDecodeError as e:
            raise DeliveryError("Webhook payload is not valid JSON") from e

    async def send(self, message: DeliveryMessage) -> int:
        method = self.channel.method
        headers = self.channel.header_map()

        if method == "GET":
            response = await self.request(method, self.channel.url, headers=headers)
            self.raise_for_status(response)
            return 1

        if not self.channel.payload.strip():
            response = await self.request(
                method, self.channel.url, json_body=default_envelope(message), headers=headers
            )
            self.raise_for_status(response)
            return 1

        payload = self._custom_payload()
        if (
            is_discord_webhook_url(self.channel.url)
            and isinstance(payload, dict)
            and isinstance(payload.get("content"), str)
        ):
            discord = DiscordTransport(DiscordChannel(webhook_url=self.channel.url), self.client)
            content = payload.pop("content")
            return await discord.send_content_parts(
                self.channel.url,
                content,
                payload,
                method=method,
                headers=headers,
                max_len=self.chunk_budget,
            )

        # Sent byte-for-byte as configured
        merged = {"content-type": "application/json", **{k.lower(): v for k, v in headers.items()}}
        response = await self.request(
            method, self.channel.url, content=self.channel.payload, headers=merged
        )
        self.raise_for_status(response)
        return 1
