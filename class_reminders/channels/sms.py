"""SMS template messages through an HTTP SMS gateway."""

import logging
import os

import httpx

from ..enums import Channel
from ..errors import TransportFailure
from ..types import RenderedMessage, TransportResult

logger = logging.getLogger(__name__)


def build_payload(
    phone: str,
    message: RenderedMessage,
    metadata: dict,
    sender_id: str,
) -> dict:
    return {
        "to": phone,
        "sender_id": sender_id,
        "message_type": "template",
        "template_name": message.template_name,
        "language": message.language_code,
        "parameters": [
            {"type": "text", "text": str(value)} for value in message.body_values
        ],
        "metadata": {k: str(v) for k, v in metadata.items()},
    }


class SmsTransport:
    """
    Sends registered SMS templates with positional parameters.

    Args:
        api_url: Full URL of the gateway's send endpoint
        token: Bearer token
        sender_id: Registered sender id / from number
        timeout: Seconds before a call counts as failed
        client: Pre-built httpx client (tests)
    """

    channel = Channel.sms

    def __init__(
        self,
        api_url: str,
        token: str,
        sender_id: str = "",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_url = api_url
        self._token = token
        self._sender_id = sender_id
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_env(cls, timeout: float = 15.0):
        """Build from SMS_API_URL / SMS_API_TOKEN / SMS_SENDER_ID, or None if not configured."""
        api_url = os.environ.get("SMS_API_URL")
        token = os.environ.get("SMS_API_TOKEN")
        if not api_url or not token:
            return None
        return cls(
            api_url=api_url,
            token=token,
            sender_id=os.environ.get("SMS_SENDER_ID", ""),
            timeout=timeout,
        )

    async def send_template(
        self,
        contact: str,
        message: RenderedMessage,
        metadata: dict,
    ) -> TransportResult:
        payload = build_payload(contact, message, metadata, self._sender_id)
        headers = {"Authorization": f"Bearer {self._token}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self._api_url, json=payload, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(
                        self._api_url, json=payload, headers=headers
                    )
        except httpx.TimeoutException as e:
            raise TransportFailure(f"SMS send timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"SMS send failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = response.text

        if response.is_error:
            raise TransportFailure(
                f"SMS gateway returned {response.status_code}",
                provider_status=response.status_code,
                payload=body,
            )

        return TransportResult(provider_status=response.status_code, payload=body)
