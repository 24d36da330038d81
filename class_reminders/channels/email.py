"""SendGrid email delivery channel."""

import asyncio
import os
import re

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from ..enums import Channel
from ..errors import TransportFailure
from ..types import RenderedMessage, TransportResult

# Regex to match markdown links: [text](url)
MARKDOWN_LINK_PATTERN = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")


def markdown_to_html(text: str) -> str:
    """
    Convert markdown-style links to HTML and wrap in basic HTML structure.

    Converts [text](url) to <a href="url">text</a> and preserves line breaks.
    """
    html_body = MARKDOWN_LINK_PATTERN.sub(r'<a href="\2">\1</a>', text)
    html_body = html_body.replace("\n", "<br>\n")

    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.5; color: #333;">
{html_body}
</body>
</html>"""


def markdown_to_plain_text(text: str) -> str:
    """Convert [text](url) to "text (url)" for the plain text part."""
    return MARKDOWN_LINK_PATTERN.sub(r"\1 (\2)", text)


class EmailTransport:
    """
    Sends reminder emails via SendGrid.

    The SendGrid client is blocking, so each send runs in a worker thread and
    is abandoned (and reported as failed) after `timeout` seconds.
    """

    channel = Channel.email

    def __init__(
        self,
        client: SendGridAPIClient,
        from_email: str,
        from_name: str = "",
        timeout: float = 15.0,
    ):
        self._client = client
        self._from_email = from_email
        self._from_name = from_name
        self._timeout = timeout

    @classmethod
    def from_env(cls, timeout: float = 15.0):
        """Build from SENDGRID_API_KEY / FROM_EMAIL / FROM_NAME, or None if not configured."""
        api_key = os.environ.get("SENDGRID_API_KEY")
        if not api_key:
            return None
        client = SendGridAPIClient(api_key)
        # Socket timeout for urllib inside python-http-client
        client.client.timeout = timeout
        return cls(
            client=client,
            timeout=timeout,
            from_email=os.environ.get("FROM_EMAIL", "noreply@supersheldon.com"),
            from_name=os.environ.get("FROM_NAME", "SuperSheldon"),
        )

    def _build_mail(self, to_email: str, message: RenderedMessage) -> Mail:
        sender = (self._from_email, self._from_name) if self._from_name else self._from_email
        return Mail(
            from_email=sender,
            to_emails=to_email,
            subject=message.subject,
            plain_text_content=markdown_to_plain_text(message.body),
            html_content=markdown_to_html(message.body),
        )

    async def send_template(
        self,
        contact: str,
        message: RenderedMessage,
        metadata: dict,
    ) -> TransportResult:
        mail = self._build_mail(contact, message)

        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._client.send, mail), timeout=self._timeout
            )
        except asyncio.TimeoutError as e:
            raise TransportFailure(
                f"SendGrid send to {contact} timed out after {self._timeout}s"
            ) from e
        except Exception as e:
            # python-http-client raises HTTPError subclasses carrying the body
            raise TransportFailure(
                f"SendGrid send to {contact} failed: {e}",
                provider_status=getattr(e, "status_code", None),
                payload=_error_body(e),
            ) from e

        if response.status_code not in (200, 201, 202):
            raise TransportFailure(
                f"SendGrid returned {response.status_code}",
                provider_status=response.status_code,
                payload=_decode(response.body),
            )

        return TransportResult(
            provider_status=response.status_code,
            payload={"message_id": response.headers.get("X-Message-Id")}
            if response.headers
            else None,
        )


def _decode(body) -> object:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def _error_body(exc: Exception) -> object:
    body = getattr(exc, "body", None)
    if body is None:
        return str(exc)
    return _decode(body)
