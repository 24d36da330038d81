"""WhatsApp template messages through the Interakt public API."""

import json
import logging
import os

import httpx

from ..enums import Channel
from ..errors import TransportFailure
from ..types import RenderedMessage, TransportResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.interakt.ai/v1/public/"


def _response_payload(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return response.text


def build_payload(
    phone: str,
    message: RenderedMessage,
    metadata: dict,
    campaign_id: str | None = None,
) -> dict:
    """Request body for POST /message/."""
    payload = {
        "fullPhoneNumber": phone,
        "type": "Template",
        "template": {
            "name": message.template_name,
            "languageCode": message.language_code,
            "bodyValues": list(message.body_values),
        },
        "callbackData": json.dumps(metadata, default=str),
    }
    if campaign_id:
        payload["campaignId"] = campaign_id
    return payload


class WhatsAppTransport:
    """
    Sends pre-approved WhatsApp templates.

    Args:
        auth_header: Value of the Authorization header (e.g. "Basic ...")
        base_url: API root
        timeout: Seconds before a call counts as failed
        campaign_ids: Optional campaign id per reminder class name
        client: Pre-built httpx client (tests); one is created per call otherwise
    """

    channel = Channel.whatsapp

    def __init__(
        self,
        auth_header: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        campaign_ids: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._auth_header = auth_header
        self._base_url = base_url
        self._timeout = timeout
        self._campaign_ids = campaign_ids or {}
        self._client = client

    @classmethod
    def from_env(cls, timeout: float = 15.0, campaign_ids: dict[str, str] | None = None):
        """Build from INTERAKT_AUTH / INTERAKT_BASE_URL, or None if not configured."""
        auth = os.environ.get("INTERAKT_AUTH")
        if not auth:
            return None
        return cls(
            auth_header=auth,
            base_url=os.environ.get("INTERAKT_BASE_URL", DEFAULT_BASE_URL),
            timeout=timeout,
            campaign_ids=campaign_ids,
        )

    async def send_template(
        self,
        contact: str,
        message: RenderedMessage,
        metadata: dict,
    ) -> TransportResult:
        payload = build_payload(
            contact,
            message,
            metadata,
            campaign_id=self._campaign_ids.get(metadata.get("reminder_class", "")),
        )
        headers = {
            "Authorization": self._auth_header,
            "Content-Type": "application/json",
        }

        try:
            if self._client is not None:
                response = await self._client.post(
                    "message/", json=payload, headers=headers
                )
            else:
                async with httpx.AsyncClient(
                    base_url=self._base_url, timeout=self._timeout
                ) as client:
                    response = await client.post(
                        "message/", json=payload, headers=headers
                    )
        except httpx.TimeoutException as e:
            raise TransportFailure(f"WhatsApp send timed out: {e}") from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"WhatsApp send failed: {e}") from e

        body = _response_payload(response)
        if response.is_error:
            raise TransportFailure(
                f"WhatsApp API returned {response.status_code}",
                provider_status=response.status_code,
                payload=body,
            )
        if isinstance(body, dict) and body.get("result") is False:
            raise TransportFailure(
                f"WhatsApp API rejected template {message.template_name}",
                provider_status=response.status_code,
                payload=body,
            )

        logger.debug(f"WhatsApp template {message.template_name} accepted for {contact}")
        return TransportResult(provider_status=response.status_code, payload=body)
