"""Conversion between channel descriptors and the encrypted job column."""

import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from promptloop.core.security import DecryptionError, SecretKeyError, decrypt_string, encrypt_string
from promptloop.models.job import ChannelType, Job
from promptloop.schemas.channel import (
    Channel,
    DiscordChannel,
    InAppChannel,
    RunnableChannel,
    TelegramChannel,
    WebhookChannel,
)

channel_adapter: TypeAdapter[Channel] = TypeAdapter(Channel)


class ChannelConfigError(ValueError):
    """Raised when a stored channel config cannot be turned into a descriptor."""


def parse_channel(data: dict[str, Any]) -> Channel:
    """Validate an incoming channel dict (`{"type": ..., ...}`) into a descriptor."""
    try:
        return channel_adapter.validate_python(data)
    except ValidationError as e:
        raise ChannelConfigError(str(e)) from e


def to_db_channel_config(channel: Channel) -> tuple[ChannelType, dict[str, Any]]:
    """Encrypt a descriptor's secrets for storage on the job row."""
    match channel:
        case DiscordChannel(webhook_url=url):
            return ChannelType.DISCORD, {"webhook_url_enc": encrypt_string(url)}
        case TelegramChannel(bot_token=token, chat_id=chat_id):
            return ChannelType.TELEGRAM, {
                "bot_token_enc": encrypt_string(token),
                "chat_id_enc": encrypt_string(chat_id),
            }
        case WebhookChannel():
            config = channel.model_dump(exclude={"type"})
            return ChannelType.WEBHOOK, {"config_enc": encrypt_string(json.dumps(config))}
        case InAppChannel():
            return ChannelType.IN_APP, {"kind": "in_app"}
    raise ChannelConfigError(f"Unsupported channel: {channel!r}")


def _decrypt_field(config: dict[str, Any], key: str) -> str:
    value = config.get(key)
    if not isinstance(value, str):
        raise ChannelConfigError(f"Channel config is missing {key}")
    try:
        return decrypt_string(value)
    except (DecryptionError, SecretKeyError) as e:
        raise ChannelConfigError(f"Cannot decrypt channel config: {e}") from e


def to_runnable_channel(job: Job) -> RunnableChannel | None:
    """Decrypt the job's channel into a transport descriptor.

    Returns None for in-app jobs, whose run record is the delivery.
    """
    config = job.channel_config or {}
    try:
        channel_type = ChannelType(job.channel_type)
    except ValueError as e:
        raise ChannelConfigError(f"Unknown channel type: {job.channel_type}") from e

    try:
        match channel_type:
            case ChannelType.IN_APP:
                return None
            case ChannelType.DISCORD:
                return DiscordChannel(webhook_url=_decrypt_field(config, "webhook_url_enc"))
            case ChannelType.TELEGRAM:
                return TelegramChannel(
                    bot_token=_decrypt_field(config, "bot_token_enc"),
                    chat_id=_decrypt_field(config, "chat_id_enc"),
                )
            case ChannelType.WEBHOOK:
                raw = json.loads(_decrypt_field(config, "config_enc"))
                return WebhookChannel.model_validate(raw)
    except (ValidationError, json.JSONDecodeError) as e:
        raise ChannelConfigError(f"Invalid channel config: {e}") from e
    raise ChannelConfigError(f"Unknown channel type: {job.channel_type}")
