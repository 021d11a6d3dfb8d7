"""
Delivery client.

`deliver()` sends one run's output through the transport matching the
channel descriptor. It makes a single pass over the message parts; retries
and attempt receipts are layered on top by the run record manager.
"""

from typing import Any

import httpx

from promptloop.config import get_config
from promptloop.core.logging import get_logger
from promptloop.schemas.channel import (
    DiscordChannel,
    RunnableChannel,
    TelegramChannel,
    WebhookChannel,
)
from promptloop.schemas.common import Citation
from promptloop.services.delivery.base import BaseTransport, DeliveryError, DeliveryMessage
from promptloop.services.delivery.discord import DiscordTransport
from promptloop.services.delivery.telegram import TelegramTransport
from promptloop.services.delivery.webhook import WebhookTransport

logger = get_logger(__name__)

__all__ = [
    "BaseTransport",
    "DeliveryError",
    "DeliveryMessage",
    "DiscordTransport",
    "TelegramTransport",
    "WebhookTransport",
    "deliver",
    "get_transport",
]


def get_transport(channel: RunnableChannel, client: httpx.AsyncClient) -> BaseTransport:
    """Pick the transport for a channel descriptor."""
    match channel:
        case DiscordChannel():
            return DiscordTransport(channel, client)
        case TelegramChannel():
            return TelegramTransport(channel, client)
        case WebhookChannel():
            return WebhookTransport(channel, client)
    raise DeliveryError(f"No transport for channel type {getattr(channel, 'type', channel)!r}")


async def deliver(
    channel: RunnableChannel,
    title: str,
    body: str,
    citations: list[Citation] | None = None,
    used_tool: bool = False,
    meta: dict[str, Any] | None = None,
    client: httpx.AsyncClient | None = None,
) -> int:
    """
    Send a run's output to its channel.

    Args:
        channel: Decrypted channel descriptor
        title: Run title, sent ahead of the body
        body: Generated output
        citations: Sources to append
        used_tool: Whether the search tool was used
        meta: Extra fields for webhook envelopes
        client: Shared HTTP client; a short-lived one is created if omitted

    Returns:
        Number of physical messages sent

    Raises:
        DeliveryError: when any part fails to send
    """
    message = DeliveryMessage(
        title=title,
        body=body,
        citations=citations or [],
        used_tool=used_tool,
        meta=meta or {},
    )

    if client is None:
        timeout = get_config().delivery.timeout_seconds
        async with httpx.AsyncClient(timeout=timeout) as owned:
            return await _send(get_transport(channel, owned), message)
    return await _send(get_transport(channel, client), message)


async def _send(transport: BaseTransport, message: DeliveryMessage) -> int:
    parts = await transport.send(message)
    logger.bind(
        transport=transport.name,
        destination=transport.destination,
        parts=parts,
    ).info("delivery_sent")
    return parts
