"""Tests for the WhatsApp (Interakt) channel."""

import json

import httpx
import pytest

from class_reminders.channels.whatsapp import WhatsAppTransport, build_payload
from class_reminders.errors import TransportFailure
from class_reminders.types import RenderedMessage

MESSAGE = RenderedMessage(
    template_name="before_course_class_15min_student_",
    language_code="en",
    body_values=["Alice", "Maths"],
)
METADATA = {"event_id": "e1", "reminder_class": "near_term"}


def _transport(handler, **kwargs):
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="https://api.interakt.test/v1/public/",
    )
    return WhatsAppTransport("Basic dGVzdA==", client=client, **kwargs)


class TestBuildPayload:
    def test_template_payload(self):
        payload = build_payload("919876500002", MESSAGE, METADATA)

        assert payload["fullPhoneNumber"] == "919876500002"
        assert payload["type"] == "Template"
        assert payload["template"] == {
            "name": "before_course_class_15min_student_",
            "languageCode": "en",
            "bodyValues": ["Alice", "Maths"],
        }
        assert json.loads(payload["callbackData"]) == METADATA
        assert "campaignId" not in payload

    def test_campaign_id(self):
        assert build_payload("91", MESSAGE, METADATA, "camp-1")["campaignId"] == "camp-1"


class TestSendTemplate:
    @pytest.mark.asyncio
    async def test_success(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"result": True, "id": "wa-1"})

        result = await _transport(handler).send_template("919876500002", MESSAGE, METADATA)

        assert result.provider_status == 201
        assert result.payload == {"result": True, "id": "wa-1"}
        assert requests[0].url.path == "/v1/public/message/"
        assert requests[0].headers["Authorization"] == "Basic dGVzdA=="
        assert json.loads(requests[0].content)["fullPhoneNumber"] == "919876500002"

    @pytest.mark.asyncio
    async def test_campaign_per_reminder_class(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"result": True})

        transport = _transport(handler, campaign_ids={"near_term": "camp-15"})
        await transport.send_template("919876500002", MESSAGE, METADATA)

        assert bodies[0]["campaignId"] == "camp-15"

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(400, json={"result": False, "message": "Invalid template"})

        with pytest.raises(TransportFailure) as exc_info:
            await _transport(handler).send_template("919876500002", MESSAGE, METADATA)

        assert exc_info.value.provider_status == 400
        assert exc_info.value.payload["message"] == "Invalid template"

    @pytest.mark.asyncio
    async def test_rejected_in_body(self):
        def handler(request):
            return httpx.Response(200, json={"result": False, "message": "Number not on WhatsApp"})

        with pytest.raises(TransportFailure, match="rejected"):
            await _transport(handler).send_template("919876500002", MESSAGE, METADATA)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportFailure, match="timed out"):
            await _transport(handler).send_template("919876500002", MESSAGE, METADATA)

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(TransportFailure) as exc_info:
            await _transport(handler).send_template("919876500002", MESSAGE, METADATA)

        assert exc_info.value.payload == "Bad Gateway"


class TestFromEnv:
    def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("INTERAKT_AUTH", raising=False)

        assert WhatsAppTransport.from_env() is None

    def test_configured(self, monkeypatch):
        monkeypatch.setenv("INTERAKT_AUTH", "Basic abc")

        assert WhatsAppTransport.from_env(timeout=5) is not None
