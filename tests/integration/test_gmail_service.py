import base64
import email
import json
from unittest.mock import MagicMock

import pytest
import requests

from app.models.domain.message_domain import OutgoingEmail
from app.services.google_gmail_service import GoogleGmailError, GoogleGmailService


def _response(status_code=200, data=None):
    response = MagicMock()
    response.ok = status_code < 400
    response.status_code = status_code
    response.text = json.dumps(data or {})
    response.json.return_value = data or {}
    return response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def service(session):
    return GoogleGmailService(session=session)


@pytest.mark.asyncio
async def test_list_message_ids(service, session):
    session.request.return_value = _response(data={"messages": [{"id": "g-1"}, {"id": "g-2"}]})

    ids = await service.list_message_ids("token", max_results=1000, label_ids=["INBOX", "UNREAD"])

    assert ids == ["g-1", "g-2"]
    method, url = session.request.call_args.args
    kwargs = session.request.call_args.kwargs
    assert method == "GET"
    assert url.endswith("/users/me/messages")
    assert kwargs["params"] == {"maxResults": 500, "labelIds": ["INBOX", "UNREAD"]}
    assert kwargs["headers"]["Authorization"] == "Bearer token"


@pytest.mark.asyncio
async def test_error_mapping(service, session):
    session.request.return_value = _response(401, {"error": {"code": 401, "message": "Invalid Credentials"}})

    with pytest.raises(GoogleGmailError) as exc_info:
        await service.list_message_ids("token")

    assert exc_info.value.status_code == 401
    assert exc_info.value.error_code == "401"


@pytest.mark.asyncio
async def test_network_error(service, session):
    session.request.side_effect = requests.ConnectionError("connection reset")

    with pytest.raises(GoogleGmailError):
        await service.get_message("token", "g-1")


@pytest.mark.asyncio
async def test_send_message_builds_threaded_reply(service, session):
    session.request.return_value = _response(data={"id": "sent-1", "threadId": "t-1"})
    outgoing = OutgoingEmail(
        to="ana@example.com",
        subject="Re: Pricing",
        body="Thanks for writing in.",
        in_reply_to="<m1@example.com>",
        thread_id="t-1",
        extra_headers={"Auto-Submitted": "auto-replied"},
    )

    sent = await service.send_message("token", "desk@business.com", outgoing)

    assert sent["id"] == "sent-1"
    payload = json.loads(session.request.call_args.kwargs["data"])
    assert payload["threadId"] == "t-1"
    mime = email.message_from_bytes(base64.urlsafe_b64decode(payload["raw"]))
    assert mime["To"] == "ana@example.com"
    assert mime["From"] == "desk@business.com"
    assert mime["In-Reply-To"] == "<m1@example.com>"
    assert mime["References"] == "<m1@example.com>"
    assert mime["Auto-Submitted"] == "auto-replied"


@pytest.mark.asyncio
async def test_mark_as_read(service, session):
    session.request.return_value = _response(data={"id": "g-1"})

    await service.mark_as_read("token", "g-1")

    method, url = session.request.call_args.args
    assert method == "POST"
    assert url.endswith("/messages/g-1/modify")
    assert json.loads(session.request.call_args.kwargs["data"]) == {"removeLabelIds": ["UNREAD"]}
