# app/services/mail/mailbox.py
"""
Mailbox transport: poll a mail account for new messages and send replies.

Fetches are bounded by a hard timeout so a hung provider connection cannot
stall the sync tick.
"""

import asyncio

from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import MailAccount
from app.models.domain.message_domain import InboundMessage, OutgoingEmail
from app.services.google_gmail_service import GoogleGmailError, GoogleGmailService
from app.services.google_oauth_service import GoogleOAuthError, GoogleTokenService

logger = get_logger(__name__)

SCOPE_UNREAD_ONLY = "unread-only"
SCOPE_ALL = "all"
REPLY_PREFIX = "Re: "
AUTO_REPLY_HEADERS = {
    "Auto-Submitted": "auto-replied",
    "X-Auto-Responder": "true",
}


class MailboxError(Exception):
    """Raised when a mailbox cannot be read."""

    def __init__(self, message: str, account_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.account_id = account_id
        self.recoverable = recoverable
        self.error_code = "MAILBOX_ERROR"


class MessageSendError(Exception):
    """Raised when an outbound message cannot be delivered."""

    def __init__(self, message: str, recipient: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.recipient = recipient
        self.recoverable = recoverable
        self.error_code = "SEND_FAILED"


def reply_subject(subject: str | None) -> str:
    """Prefix with 'Re: ' unless the subject already carries it."""
    subject = (subject or "").strip()
    if subject.lower().startswith(REPLY_PREFIX.strip().lower()):
        return subject
    return f"{REPLY_PREFIX}{subject}" if subject else f"{REPLY_PREFIX}Your message"


class MailboxPoller:
    """Reads new messages from a mail account."""

    def __init__(
        self,
        gmail: GoogleGmailService,
        tokens: GoogleTokenService,
        fetch_timeout: float = 30.0,
    ):
        self.gmail = gmail
        self.tokens = tokens
        self.fetch_timeout = fetch_timeout

    async def fetch(
        self,
        account: MailAccount,
        folder: str = "INBOX",
        scope: str = SCOPE_UNREAD_ONLY,
        limit: int = 100,
    ) -> list[InboundMessage]:
        """
        Fetch messages from one mailbox folder.

        Args:
            account: Mail account to read
            folder: Folder (label) name
            scope: "unread-only" or "all"
            limit: Maximum number of messages

        Returns:
            list[InboundMessage]: Normalized messages, newest first

        Raises:
            MailboxError: On provider failure or when the fetch exceeds the timeout
        """
        try:
            return await asyncio.wait_for(
                self._fetch(account, folder, scope, limit), timeout=self.fetch_timeout
            )
        except TimeoutError as e:
            logger.error("Mailbox fetch timed out", account_id=account.id, timeout=self.fetch_timeout)
            raise MailboxError(
                f"Mailbox fetch exceeded {self.fetch_timeout}s", account_id=account.id
            ) from e
        except (GoogleGmailError, GoogleOAuthError) as e:
            logger.error("Mailbox fetch failed", account_id=account.id, error=str(e))
            raise MailboxError(f"Mailbox fetch failed: {e}", account_id=account.id) from e

    async def _fetch(
        self, account: MailAccount, folder: str, scope: str, limit: int
    ) -> list[InboundMessage]:
        access_token = await self.tokens.get_access_token(account.refresh_token)

        label_ids = [folder.upper()]
        if scope == SCOPE_UNREAD_ONLY:
            label_ids.append("UNREAD")

        message_ids = await self.gmail.list_message_ids(access_token, max_results=limit, label_ids=label_ids)

        messages = []
        for message_id in message_ids:
            gmail_message = await self.gmail.get_message(access_token, message_id)
            messages.append(gmail_message.to_inbound_message(account.owner_id))

        logger.debug("Mailbox fetched", account_id=account.id, folder=folder, count=len(messages))
        return messages

    async def mark_read(self, account: MailAccount, messages: list[InboundMessage]) -> None:
        """Best-effort: clear the unread flag so the next poll does not list them again."""
        refs = [message.provider_ref for message in messages if message.provider_ref]
        if not refs:
            return
        try:
            access_token = await self.tokens.get_access_token(account.refresh_token)
            for ref in refs:
                await self.gmail.mark_as_read(access_token, ref)
        except (GoogleGmailError, GoogleOAuthError) as e:
            logger.warning("Failed to mark messages read", account_id=account.id, error=str(e))


class MailSender:
    """Sends automated replies through the owner's mail account."""

    def __init__(self, gmail: GoogleGmailService, tokens: GoogleTokenService):
        self.gmail = gmail
        self.tokens = tokens

    async def send_reply(self, account: MailAccount, original: InboundMessage, body: str) -> str | None:
        """
        Reply to an inbound email, threaded and marked as automated.

        Returns:
            The provider id of the sent message

        Raises:
            MessageSendError: If the provider rejects the message
        """
        email = OutgoingEmail(
            to=original.sender_address,
            subject=reply_subject(original.subject),
            body=body,
            in_reply_to=original.message_id,
            extra_headers=dict(AUTO_REPLY_HEADERS),
        )
        try:
            access_token = await self.tokens.get_access_token(account.refresh_token)
            sent = await self.gmail.send_message(access_token, account.address, email)
        except (GoogleGmailError, GoogleOAuthError) as e:
            raise MessageSendError(f"Reply could not be sent: {e}", recipient=email.to) from e
        return sent.get("id")
