# app/repositories/message_repository.py
"""
Storage for ingested inbound messages, outbound delivery records and the
transport accounts they flow through.
"""

from datetime import datetime, timedelta

from app.db.helpers import execute_query, fetch_all, fetch_one, fetch_val, is_uuid
from app.models.domain.account_domain import MailAccount, WhatsAppAccount
from app.models.domain.message_domain import DeliveryStatus, InboundMessage, OutboundMessage
from app.models.domain.profile_domain import Channel


class IngestedMessageRepository:
    """Inbound messages that passed (or were deliberately parked by) the ingestion gate."""

    async def exists_message_id(self, owner_id: str, message_id: str) -> bool:
        found = await fetch_val(
            "SELECT 1 FROM ingested_messages WHERE owner_id = %s AND message_id = %s LIMIT 1",
            (owner_id, message_id),
        )
        return found is not None

    async def has_recent_duplicate(
        self,
        owner_id: str,
        transport: Channel,
        sender: str,
        subject: str,
        received_at: datetime,
        window: timedelta,
        body: str | None = None,
    ) -> bool:
        query = """
            SELECT 1 FROM ingested_messages
            WHERE owner_id = %s
              AND transport = %s
              AND sender = %s
              AND subject = %s
              AND received_at BETWEEN %s AND %s
        """
        params = [owner_id, transport.value, sender, subject, received_at - window, received_at + window]
        if body is not None:
            query += " AND body = %s"
            params.append(body)
        found = await fetch_val(query + " LIMIT 1", tuple(params))
        return found is not None

    async def insert(self, message: InboundMessage) -> InboundMessage | None:
        """
        Store an inbound message.

        Returns:
            The stored message, or None if the message id was already present
        """
        row = await fetch_one(
            """
            INSERT INTO ingested_messages (
                owner_id, transport, message_id, sender, recipient, subject, body,
                received_at, status, is_replied, in_reply_to, media_url
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            RETURNING *
            """,
            (
                message.owner_id,
                message.transport.value,
                message.message_id,
                message.sender,
                message.recipient,
                message.subject,
                message.body,
                message.received_at,
                message.status.value,
                message.is_replied,
                message.in_reply_to,
                message.media_url,
            ),
        )
        return InboundMessage.from_row(row) if row else None

    async def list_unreplied(
        self, owner_id: str, transport: Channel = Channel.EMAIL, limit: int = 50
    ) -> list[InboundMessage]:
        rows = await fetch_all(
            """
            SELECT * FROM ingested_messages
            WHERE owner_id = %s AND transport = %s AND is_replied = false
            ORDER BY received_at ASC
            LIMIT %s
            """,
            (owner_id, transport.value, limit),
        )
        return [InboundMessage.from_row(row) for row in rows]

    async def mark_handled(self, record_id: str, status: DeliveryStatus) -> None:
        await execute_query(
            "UPDATE ingested_messages SET is_replied = true, status = %s WHERE id = %s",
            (status.value, record_id),
        )


class OutboundMessageRepository:
    """Outbound delivery records keyed by the gateway's external id."""

    async def record(
        self,
        owner_id: str,
        transport: Channel,
        recipient: str,
        body: str,
        external_id: str | None,
        status: DeliveryStatus = DeliveryStatus.SENT,
        error: str | None = None,
    ) -> None:
        await execute_query(
            """
            INSERT INTO outbound_messages (owner_id, transport, recipient, body, external_id, status, error)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            """,
            (owner_id, transport.value, recipient, body, external_id, status.value, error),
        )

    async def save_pending(self, draft: OutboundMessage) -> OutboundMessage:
        """
        Store a reply before it is sent.

        Returns:
            The stored draft; an existing draft for the same inbound record wins
        """
        row = await fetch_one(
            """
            INSERT INTO outbound_messages (
                owner_id, transport, recipient, body, status, inbound_record_id, meeting_id
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT DO NOTHING
            RETURNING *
            """,
            (
                draft.owner_id,
                draft.transport.value,
                draft.recipient,
                draft.body,
                DeliveryStatus.PENDING.value,
                draft.inbound_record_id,
                draft.meeting_id,
            ),
        )
        if row is None:
            existing = await self.get_for_inbound(draft.inbound_record_id)
            if existing is None:
                raise RuntimeError(f"Pending reply for {draft.inbound_record_id} could not be stored")
            return existing
        return OutboundMessage.from_row(row)

    async def get_for_inbound(self, inbound_record_id: str | None) -> OutboundMessage | None:
        if not is_uuid(inbound_record_id):
            return None
        row = await fetch_one(
            "SELECT * FROM outbound_messages WHERE inbound_record_id = %s",
            (inbound_record_id,),
        )
        return OutboundMessage.from_row(row) if row else None

    async def mark_sent(self, outbound_id: str, external_id: str | None) -> None:
        await execute_query(
            """
            UPDATE outbound_messages
            SET status = %s, external_id = %s, error = NULL, updated_at = NOW()
            WHERE id = %s
            """,
            (DeliveryStatus.SENT.value, external_id, outbound_id),
        )

    async def mark_failed(self, outbound_id: str, error: str) -> None:
        await execute_query(
            "UPDATE outbound_messages SET status = %s, error = %s, updated_at = NOW() WHERE id = %s",
            (DeliveryStatus.FAILED.value, error, outbound_id),
        )

    async def update_status(
        self,
        transport: Channel,
        external_id: str,
        status: DeliveryStatus,
        error: str | None = None,
    ) -> bool:
        updated = await execute_query(
            """
            UPDATE outbound_messages
            SET status = %s, error = COALESCE(%s, error), updated_at = NOW()
            WHERE transport = %s AND external_id = %s
            """,
            (status.value, error, transport.value, external_id),
        )
        return updated > 0


class AccountRepository:
    """Mail and WhatsApp accounts configured per owner."""

    async def list_active_mail_accounts(self) -> list[MailAccount]:
        rows = await fetch_all(
            """
            SELECT id, owner_id, address, refresh_token, is_active, last_synced_at
            FROM mail_accounts
            WHERE is_active = true
            ORDER BY owner_id, address
            """
        )
        return [
            MailAccount(
                id=str(row["id"]),
                owner_id=row["owner_id"],
                address=row["address"].lower(),
                refresh_token=row["refresh_token"],
                is_active=row["is_active"],
                last_synced_at=row.get("last_synced_at"),
            )
            for row in rows
        ]

    async def get_mail_account(self, owner_id: str) -> MailAccount | None:
        accounts = await self.list_active_mail_accounts()
        return next((a for a in accounts if a.owner_id == owner_id), None)

    async def outbound_addresses(self, owner_id: str) -> set[str]:
        rows = await fetch_all(
            "SELECT address FROM mail_accounts WHERE owner_id = %s",
            (owner_id,),
        )
        return {row["address"].lower() for row in rows}

    async def mark_mail_synced(self, account_id: str, synced_at: datetime) -> None:
        await execute_query(
            "UPDATE mail_accounts SET last_synced_at = %s WHERE id = %s",
            (synced_at, account_id),
        )

    async def get_whatsapp_account(self, owner_id: str) -> WhatsAppAccount | None:
        row = await fetch_one(
            """
            SELECT owner_id, phone_number_id, access_token, is_active
            FROM whatsapp_accounts
            WHERE owner_id = %s AND is_active = true
            """,
            (owner_id,),
        )
        if not row:
            return None
        return WhatsAppAccount(
            owner_id=row["owner_id"],
            phone_number_id=row["phone_number_id"],
            access_token=row["access_token"],
            is_active=row["is_active"],
        )

    async def find_owner_by_phone_number_id(self, phone_number_id: str) -> str | None:
        return await fetch_val(
            "SELECT owner_id FROM whatsapp_accounts WHERE phone_number_id = %s AND is_active = true",
            (phone_number_id,),
        )
