from promptloop.schemas.channel import (
    Channel,
    DiscordChannel,
    InAppChannel,
    RunnableChannel,
    TelegramChannel,
    WebhookChannel,
)
from promptloop.schemas.common import Citation

__all__ = [
    "Channel",
    "RunnableChannel",
    "DiscordChannel",
    "TelegramChannel",
    "WebhookChannel",
    "InAppChannel",
    "Citation",
]
