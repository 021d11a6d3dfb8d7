"""Discord webhook transport."""

import re
from typing import Any

import backoff
import httpx

from promptloop.config import get_config
from promptloop.core.logging import get_logger
from promptloop.core.security import mask_secret
from promptloop.schemas.channel import DiscordChannel
from promptloop.services.chunking import chunk_discord_content, compose_message
from promptloop.services.delivery.base import BaseTransport, DeliveryMessage

logger = get_logger(__name__)

DISCORD_WEBHOOK_PATTERN = re.compile(
    r"^https://(?:(?:canary|ptb)\.)?discord(?:app)?\.com/api(?:/v\d+)?/webhooks/",
    re.IGNORECASE,
)

DEFAULT_RETRY_AFTER_SECONDS = 1.0


def is_discord_webhook_url(url: str) -> bool:
    return bool(DISCORD_WEBHOOK_PATTERN.match(url.strip()))


def _is_rate_limited(response: httpx.Response) -> bool:
    return response.status_code == 429


def retry_after_seconds(response: httpx.Response) -> float:
    """Wait requested by a 429 response, clamped to the configured bounds.

    Discord puts `retry_after` (seconds) in the JSON body; the Retry-After
    header is used when the body doesn't carry it.
    """
    delivery = get_config().delivery
    wait: float | None = None

    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and isinstance(data.get("retry_after"), int | float):
        wait = float(data["retry_after"])

    if wait is None:
        try:
            wait = float(response.headers.get("retry-after", ""))
        except ValueError:
            wait = DEFAULT_RETRY_AFTER_SECONDS

    return min(
        max(wait, delivery.discord_429_min_wait_seconds),
        delivery.discord_429_max_wait_seconds,
    )


def _log_rate_limited(details: dict[str, Any]) -> None:
    logger.bind(
        tries=details["tries"],
        wait_seconds=round(details.get("wait", 0.0), 2),
    ).warning("discord_rate_limited")


class DiscordTransport(BaseTransport):
    """Posts `{"content": ...}` parts to a Discord webhook, in order."""

    name = "discord"

    def __init__(self, channel: DiscordChannel, client: httpx.AsyncClient) -> None:
        super().__init__(client)
        self.channel = channel

    @property
    def chunk_budget(self) -> int:
        return get_config().delivery.discord_max_chars

    @property
    def destination(self) -> str:
        return mask_secret(self.channel.webhook_url)

    async def send(self, message: DeliveryMessage) -> int:
        text = compose_message(message.title, message.body, message.citations)
        return await self.send_content_parts(self.channel.webhook_url, text, {})

    async def send_content_parts(
        self,
        url: str,
        text: str,
        base_payload: dict[str, Any],
        method: str = "POST",
        headers: dict[str, str] | None = None,
        max_len: int | None = None,
    ) -> int:
        """Chunk `text` into parts of at most `max_len` (default: this transport's
        budget) and send each as the payload's `content` field."""
        delivery = get_config().delivery
        chunks = chunk_discord_content(
            text, max_len or self.chunk_budget, delivery.discord_max_parts
        )
        for chunk in chunks:
            await self.post_part(url, {**base_payload, "content": chunk}, method, headers)
        return len(chunks)

    async def post_part(
        self,
        url: str,
        payload: dict[str, Any],
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> None:
        """Send one part, waiting out 429 responses before giving up."""
        delivery = get_config().delivery

        @backoff.on_predicate(
            backoff.runtime,
            predicate=_is_rate_limited,
            value=retry_after_seconds,
            max_tries=delivery.discord_429_max_retries + 1,
            jitter=None,
            on_backoff=_log_rate_limited,
        )
        async def _post() -> httpx.Response:
            return await self.request(method, url, json_body=payload, headers=headers)

        response = await _post()
        self.raise_for_status(response)
