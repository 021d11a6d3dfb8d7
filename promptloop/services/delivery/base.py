"""Transport interface shared by every delivery channel."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from promptloop.core.logging import get_logger
from promptloop.schemas.common import Citation

logger = get_logger(__name__)

ERROR_BODY_MAX = 300


class DeliveryError(Exception):
    """A send to a delivery transport failed.

    `status_code` is the HTTP status of the failed response, 408 for a
    timeout, 503 for a connection failure, or None when the failure is not
    transport related (bad payload, rejected config) and retrying can't help.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class DeliveryMessage:
    """Everything a transport needs to render one run's output."""

    title: str
    body: str
    citations: list[Citation] = field(default_factory=list)
    used_tool: bool = False
    meta: dict[str, Any] = field(default_factory=dict)


class BaseTransport(ABC):
    """One outbound delivery channel.

    Subclasses declare how many characters fit in one message and how to
    send a full message (possibly as several sequential parts).
    """

    name: str = "base"

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    @property
    @abstractmethod
    def chunk_budget(self) -> int:
        """Maximum characters per physical message, 0 when the transport never splits."""
        ...

    @property
    @abstractmethod
    def destination(self) -> str:
        """Where messages go, safe to log."""
        ...

    @abstractmethod
    async def send(self, message: DeliveryMessage) -> int:
        """Send the message, returning the number of parts sent.

        Raises:
            DeliveryError: on the first part that fails
        """
        ...

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        content: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Perform one HTTP call, mapping transport failures to DeliveryError."""
        try:
            return await self.client.request(
                method,
                url,
                json=json_body,
                content=content,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise DeliveryError(f"{self.name} request timed out", status_code=408) from e
        except httpx.RequestError as e:
            raise DeliveryError(f"{self.name} request failed: {e}", status_code=503) from e

    def raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        body = response.text[:ERROR_BODY_MAX]
        raise DeliveryError(
            f"{self.name} responded {response.status_code}: {body}",
            status_code=response.status_code,
        )
