"""
Channel transports: one sender per channel kind.

A transport either returns a TransportResult or raises TransportFailure
(timeouts, rejected payloads and provider errors alike).
"""

from typing import Protocol

from ..enums import Channel
from ..types import RenderedMessage, TransportResult


class ChannelTransport(Protocol):
    channel: Channel

    async def send_template(
        self,
        contact: str,
        message: RenderedMessage,
        metadata: dict,
    ) -> TransportResult: ...


__all__ = ["ChannelTransport"]
