"""Tests for channel descriptors and their encrypted storage form."""

import json

import pytest

from promptloop.core.security import decrypt_string, encrypt_string
from promptloop.models.job import ChannelType, Job
from promptloop.schemas.channel import (
    DiscordChannel,
    InAppChannel,
    TelegramChannel,
    WebhookChannel,
)
from promptloop.services.channels import (
    ChannelConfigError,
    parse_channel,
    to_db_channel_config,
    to_runnable_channel,
)


def job_with(channel_type: ChannelType | str, config: dict) -> Job:
    return Job(name="j", prompt="p", schedule_type="daily", channel_type=channel_type, channel_config=config)


class TestParseChannel:
    """Tests for parse_channel."""

    def test_discriminates_on_type(self):
        channel = parse_channel({"type": "telegram", "bot_token": "t", "chat_id": "42"})
        assert isinstance(channel, TelegramChannel)
        assert channel.chat_id == "42"

    def test_webhook_defaults(self):
        channel = parse_channel({"type": "webhook", "url": "https://hooks.example/x", "method": "put"})
        assert isinstance(channel, WebhookChannel)
        assert channel.method == "PUT"
        assert channel.headers == "{}"
        assert channel.payload == ""

    @pytest.mark.parametrize(
        "data",
        [
            {"type": "sms", "to": "1"},
            {"type": "discord", "webhook_url": ""},
            {"type": "webhook", "url": "https://x", "headers": "[1]"},
            {"type": "webhook", "url": "https://x", "payload": "{bad"},
            {"type": "webhook", "url": "https://x", "method": "TRACE"},
        ],
    )
    def test_rejects_invalid(self, data):
        with pytest.raises(ChannelConfigError):
            parse_channel(data)


class TestStorageRoundTrip:
    """Tests for to_db_channel_config / to_runnable_channel."""

    def test_discord(self):
        channel = DiscordChannel(webhook_url="https://discord.com/api/webhooks/1/abc")
        channel_type, config = to_db_channel_config(channel)

        assert channel_type == ChannelType.DISCORD
        assert "abc" not in json.dumps(config)
        assert decrypt_string(config["webhook_url_enc"]) == channel.webhook_url
        assert to_runnable_channel(job_with(channel_type, config)) == channel

    def test_telegram(self):
        channel = TelegramChannel(bot_token="123:secret", chat_id="-100")
        channel_type, config = to_db_channel_config(channel)

        assert channel_type == ChannelType.TELEGRAM
        assert to_runnable_channel(job_with(channel_type, config)) == channel

    def test_webhook(self):
        channel = WebhookChannel(
            url="https://hooks.example/in",
            method="PATCH",
            headers='{"X-Token": "t"}',
            payload='{"text": "hi"}',
        )
        channel_type, config = to_db_channel_config(channel)

        assert channel_type == ChannelType.WEBHOOK
        assert set(config) == {"config_enc"}
        restored = to_runnable_channel(job_with(channel_type, config))
        assert restored == channel
        assert restored.header_map() == {"X-Token": "t"}

    def test_in_app_has_no_transport(self):
        channel_type, config = to_db_channel_config(InAppChannel())
        assert channel_type == ChannelType.IN_APP
        assert to_runnable_channel(job_with(channel_type, config)) is None


class TestBrokenStoredConfig:
    """Tests for stored configs that can't be decrypted or validated."""

    def test_missing_field(self):
        with pytest.raises(ChannelConfigError, match="missing"):
            to_runnable_channel(job_with(ChannelType.DISCORD, {}))

    def test_undecryptable(self):
        with pytest.raises(ChannelConfigError, match="decrypt"):
            to_runnable_channel(job_with(ChannelType.DISCORD, {"webhook_url_enc": "a:b:c"}))

    def test_invalid_webhook_json(self):
        config = {"config_enc": encrypt_string("not json")}
        with pytest.raises(ChannelConfigError, match="Invalid channel config"):
            to_runnable_channel(job_with(ChannelType.WEBHOOK, config))

    def test_unknown_channel_type(self):
        with pytest.raises(ChannelConfigError, match="Unknown channel type: slack"):
            to_runnable_channel(job_with("slack", {}))
