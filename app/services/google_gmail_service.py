"""
Google Gmail API client for mailbox polling and reply delivery.
Low-level Gmail API client; message parsing lives in app.models.domain.gmail_domain.

requests is synchronous, so every call is pushed to a worker thread to keep
the event loop free.
"""

import asyncio
import base64
import json
from email.mime.text import MIMEText

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.infrastructure.observability.logging import get_logger
from app.models.domain.gmail_domain import GmailMessage
from app.models.domain.message_domain import OutgoingEmail

logger = get_logger(__name__)

# Google Gmail API configuration
GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2


class GoogleGmailError(Exception):
    """Custom exception for Google Gmail API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class GoogleGmailService:
    """
    Service for Google Gmail API operations.

    Pure API client: HTTP requests, authentication headers, error mapping and
    retry via a urllib3 Retry adapter.
    """

    def __init__(self, session: requests.Session | None = None):
        self._session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create requests session with retry strategy for Gmail API."""
        session = requests.Session()
        retry_strategy = Retry(
            total=MAX_RETRIES,
            backoff_factor=BACKOFF_FACTOR,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "POST"],
        )
        session.mount("https://", HTTPAdapter(max_retries=retry_strategy))
        return session

    def close(self) -> None:
        self._session.close()

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: requests.Response, operation: str) -> dict:
        """
        Handle and validate Gmail API response.

        Raises:
            GoogleGmailError: If response contains errors
        """
        if response.ok:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Gmail API {operation} response", error=str(e))
                raise GoogleGmailError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            error_data = {}
        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}

        logger.error(
            f"Gmail API {operation} failed",
            status_code=response.status_code,
            error_message=error_info.get("message"),
        )
        raise GoogleGmailError(
            f"Gmail API {operation} failed (HTTP {response.status_code})",
            error_code=str(error_info.get("code", response.status_code)),
            status_code=response.status_code,
            response_data=error_data,
        )

    async def _call(self, method: str, url: str, operation: str, **kwargs) -> dict:
        try:
            response = await asyncio.to_thread(
                self._session.request, method, url, timeout=REQUEST_TIMEOUT, **kwargs
            )
        except requests.RequestException as e:
            logger.error(f"Gmail API {operation} request error", error=str(e))
            raise GoogleGmailError(f"Gmail API unreachable: {e}") from e
        return self._handle_api_response(response, operation)

    async def list_message_ids(
        self,
        access_token: str,
        max_results: int = 100,
        label_ids: list[str] | None = None,
        query: str | None = None,
    ) -> list[str]:
        """
        List message ids matching labels/query, newest first.

        Args:
            access_token: Valid OAuth access token
            max_results: Maximum number of ids (Gmail caps at 500)
            label_ids: Label filter (e.g. ["INBOX", "UNREAD"])
            query: Gmail search query

        Returns:
            list[str]: Gmail message ids

        Raises:
            GoogleGmailError: If listing fails
        """
        params: dict = {"maxResults": min(max_results, 500)}
        if label_ids:
            params["labelIds"] = label_ids
        if query:
            params["q"] = query

        data = await self._call(
            "GET",
            f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages",
            "list_messages",
            headers=self._get_auth_headers(access_token),
            params=params,
        )
        return [message["id"] for message in data.get("messages", [])]

    async def get_message(self, access_token: str, message_id: str) -> GmailMessage:
        """Fetch one message in full format."""
        data = await self._call(
            "GET",
            f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages/{message_id}",
            "get_message",
            headers=self._get_auth_headers(access_token),
            params={"format": "full"},
        )
        return GmailMessage(data)

    async def mark_as_read(self, access_token: str, message_id: str) -> None:
        await self._call(
            "POST",
            f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages/{message_id}/modify",
            "modify_message",
            headers=self._get_auth_headers(access_token),
            data=json.dumps({"removeLabelIds": ["UNREAD"]}),
        )

    async def send_message(self, access_token: str, sender: str, email: OutgoingEmail) -> dict:
        """
        Send a plain-text email.

        Returns:
            dict: Sent message resource (id, threadId)

        Raises:
            GoogleGmailError: If sending fails
        """
        msg = MIMEText(email.body, "plain", "utf-8")
        msg["From"] = sender
        msg["To"] = email.to
        msg["Subject"] = email.subject
        if email.in_reply_to:
            msg["In-Reply-To"] = email.in_reply_to
            msg["References"] = email.in_reply_to
        for name, value in email.extra_headers.items():
            msg[name] = value

        send_data = {"raw": base64.urlsafe_b64encode(msg.as_bytes()).decode("utf-8")}
        if email.thread_id:
            send_data["threadId"] = email.thread_id

        logger.info("Sending Gmail message", to=email.to, subject=email.subject)
        data = await self._call(
            "POST",
            f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/messages/send",
            "send_message",
            headers=self._get_auth_headers(access_token),
            data=json.dumps(send_data),
        )
        logger.info("Message sent successfully", message_id=data.get("id"))
        return data
