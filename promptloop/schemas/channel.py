"""Delivery channel descriptors.

A closed union discriminated on `type`. Transports dispatch on the concrete
model, never on the shape of a loose dict.
"""

import json
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator


class DiscordChannel(BaseModel):
    type: Literal["discord"] = "discord"
    webhook_url: str = Field(min_length=1)


class TelegramChannel(BaseModel):
    type: Literal["telegram"] = "telegram"
    bot_token: str = Field(min_length=1)
    chat_id: str = Field(min_length=1)


class WebhookChannel(BaseModel):
    """Generic HTTP callback.

    `headers` is a JSON object string and `payload` a JSON string; a blank
    payload means the default envelope is sent.
    """

    type: Literal["webhook"] = "webhook"
    url: str = Field(min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: str = "{}"
    payload: str = ""

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("headers")
    @classmethod
    def headers_must_be_json_object(cls, v: str) -> str:
        if not v.strip():
            return "{}"
        try:
            parsed = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError("Headers must be valid JSON") from e
        if not isinstance(parsed, dict):
            raise ValueError("Headers must be a JSON object")
        return v

    @field_validator("payload")
    @classmethod
    def payload_must_be_json(cls, v: str) -> str:
        if not v.strip():
            return ""
        try:
            json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError("Payload must be valid JSON") from e
        return v

    def header_map(self) -> dict[str, str]:
        return {str(k): str(v) for k, v in json.loads(self.headers or "{}").items()}


class InAppChannel(BaseModel):
    type: Literal["in_app"] = "in_app"


Channel = Annotated[
    DiscordChannel | TelegramChannel | WebhookChannel | InAppChannel,
    Field(discriminator="type"),
]

# Channels that are reached over an outbound transport
RunnableChannel = DiscordChannel | TelegramChannel | WebhookChannel
