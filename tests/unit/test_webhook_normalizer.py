"""
Tests for converting gateway webhook deliveries into normalized messages.
"""

from datetime import UTC, datetime
from urllib.parse import parse_qsl, urlencode

import pytest

from app.models.domain.message_domain import DeliveryStatus
from app.models.domain.profile_domain import Channel
from app.services.ingestion.webhook_normalizer import (
    WebhookNormalizer,
    gateway_account_ref,
    parse_timestamp,
    unflatten_form_keys,
)
from tests.fakes import FIXED_NOW, fixed_clock


def cloud_payload(messages=None, statuses=None):
    value = {
        "messaging_product": "whatsapp",
        "metadata": {"display_phone_number": "+1 555 000 1111", "phone_number_id": "pn-123"},
    }
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses
    return {"object": "whatsapp_business_account", "entry": [{"id": "waba-1", "changes": [{"field": "messages", "value": value}]}]}


@pytest.fixture
def normalizer():
    return WebhookNormalizer(clock=fixed_clock)


class TestCloudApi:
    def test_text_message(self, normalizer):
        payload = cloud_payload(
            messages=[{"from": "15551234567", "id": "wamid.1", "timestamp": "1741003200", "type": "text", "text": {"body": "Hi there"}}]
        )

        batch = normalizer.normalize(payload, "acct-1")

        message = batch.messages[0]
        assert message.transport == Channel.WHATSAPP
        assert message.sender == "15551234567"
        assert message.recipient == "15550001111"
        assert message.message_id == "wamid.1"
        assert message.body == "Hi there"
        assert message.received_at == datetime(2025, 3, 3, 12, 0, tzinfo=UTC)
        assert batch.status_updates == []

    def test_image_with_caption(self, normalizer):
        payload = cloud_payload(
            messages=[{"from": "15551234567", "id": "wamid.2", "type": "image", "image": {"id": "media-9", "caption": "my receipt"}}]
        )

        message = normalizer.normalize(payload, "acct-1").messages[0]

        assert message.body == "[Image] my receipt"
        assert message.media_url == "media:media-9"
        assert message.received_at == FIXED_NOW

    def test_unsupported_type_is_ignored(self, normalizer):
        payload = cloud_payload(messages=[{"from": "15551234567", "id": "wamid.3", "type": "reaction", "reaction": {}}])

        assert normalizer.normalize(payload, "acct-1").is_empty()

    def test_status_updates(self, normalizer):
        payload = cloud_payload(
            statuses=[
                {"id": "wamid.out.1", "status": "delivered", "recipient_id": "15551234567", "timestamp": "1741003200"},
                {"id": "wamid.out.2", "status": "failed", "errors": [{"code": 131047, "title": "Re-engagement message"}]},
                {"id": "wamid.out.3", "status": "deleted"},
            ]
        )

        updates = normalizer.normalize(payload, "acct-1").status_updates

        assert [u.status for u in updates] == [DeliveryStatus.DELIVERED, DeliveryStatus.FAILED]
        assert updates[0].recipient == "15551234567"
        assert updates[1].error == "Re-engagement message"

    def test_account_ref(self):
        assert gateway_account_ref(cloud_payload(messages=[])) == "pn-123"
        assert gateway_account_ref({"from": "15551234567", "message": "hi"}) is None


class TestGatewayShapes:
    def test_flat_payload(self, normalizer):
        payload = {"from": "+1 555 123 4567", "message": "Hello", "id": "gw-1", "timestamp": 1741003200000}

        message = normalizer.normalize(payload, "acct-1").messages[0]

        assert message.sender == "15551234567"
        assert message.body == "Hello"
        assert message.message_id == "gw-1"
        assert message.received_at == datetime(2025, 3, 3, 12, 0, tzinfo=UTC)

    def test_nested_payload_with_web_client_id(self, normalizer):
        payload = {"event": "message", "data": {"phone": "15551234567@c.us", "message": "Are you open?"}}

        message = normalizer.normalize(payload, "acct-1").messages[0]

        assert message.sender == "15551234567"
        assert message.message_id is None
        assert message.received_at == FIXED_NOW

    def test_form_encoded_payload(self, normalizer):
        form = urlencode({"data[wid]": "15551234567@c.us", "data[message]": "", "data[attachment]": "https://cdn.example.com/a.jpg"})

        message = normalizer.normalize(dict(parse_qsl(form, keep_blank_values=True)), "acct-1").messages[0]

        assert message.sender == "15551234567"
        assert message.body == "[Media]"
        assert message.media_url == "https://cdn.example.com/a.jpg"

    def test_status_callback(self, normalizer):
        payload = {"data": {"id": "gw-out-1", "status": "READ", "phone": "15551234567"}}

        batch = normalizer.normalize(payload, "acct-1")

        assert batch.messages == []
        assert batch.status_updates[0].external_id == "gw-out-1"
        assert batch.status_updates[0].status == DeliveryStatus.READ

    def test_payload_without_sender_is_dropped(self, normalizer):
        assert normalizer.normalize({"message": "orphan"}, "acct-1").is_empty()


def test_unflatten_form_keys():
    assert unflatten_form_keys({"data[from]": "x", "data[meta][id]": "1", "event": "message"}) == {
        "data": {"from": "x", "meta": {"id": "1"}},
        "event": "message",
    }


@pytest.mark.parametrize(
    "value,expected",
    [
        ("1741003200", datetime(2025, 3, 3, 12, 0, tzinfo=UTC)),
        (1741003200000, datetime(2025, 3, 3, 12, 0, tzinfo=UTC)),
        ("2025-03-03T12:00:00Z", datetime(2025, 3, 3, 12, 0, tzinfo=UTC)),
        ("2025-03-03T12:00:00", datetime(2025, 3, 3, 12, 0, tzinfo=UTC)),
        ("yesterday", None),
        (None, None),
    ],
)
def test_parse_timestamp(value, expected):
    assert parse_timestamp(value) == expected
