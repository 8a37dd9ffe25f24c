# app/services/container.py
"""
Service wiring.

Every service object is constructed exactly once here and shared by
reference: routes reach it through app.state, the worker holds it directly.
"""

from dataclasses import dataclass
from datetime import time, timedelta

from app.config import Settings, settings
from app.infrastructure.activity import ActivityLogger
from app.infrastructure.observability.logging import get_logger
from app.jobs.sync_scheduler import (
    MailSyncJob,
    OutboundReplyJob,
    SingleFlightGuard,
    SyncScheduler,
)
from app.repositories.interaction_repository import InteractionRepository
from app.repositories.meeting_repository import CalendarIntegrationRepository, MeetingRepository
from app.repositories.message_repository import (
    AccountRepository,
    IngestedMessageRepository,
    OutboundMessageRepository,
)
from app.repositories.profile_repository import ProfileRepository
from app.services.calendar.google_client import GoogleCalendarService
from app.services.calendar.meeting_scheduler import MeetingScheduler
from app.services.google_gmail_service import GoogleGmailService
from app.services.google_oauth_service import GoogleTokenService
from app.services.identity.identity_resolver import IdentityResolver
from app.services.ingestion.deduplicator import MessageDeduplicator
from app.services.ingestion.ingestion_gate import IngestionGate
from app.services.ingestion.loop_guard import LoopGuard
from app.services.ingestion.webhook_normalizer import WebhookNormalizer
from app.services.ledger.interaction_ledger import InteractionLedger
from app.services.mail.mailbox import MailboxPoller, MailSender
from app.services.messaging.whatsapp_client import WhatsAppClient
from app.services.pipeline.channel_delivery import EmailReplyProcessor, WhatsAppDelivery
from app.services.pipeline.interaction_pipeline import InteractionPipeline
from app.services.redis_client import FastRedisClient
from app.services.responder.openai_responder import OpenAIResponder
from app.services.scheduling.scheduling_extractor import SchedulingExtractor

logger = get_logger(__name__)


def _parse_clock_time(value: str) -> time:
    hours, minutes = value.split(":", 1)
    return time(int(hours), int(minutes))


@dataclass(slots=True)
class ServiceContainer:
    resolver: IdentityResolver
    ledger: InteractionLedger
    extractor: SchedulingExtractor
    scheduler: MeetingScheduler
    pipeline: InteractionPipeline
    gate: IngestionGate
    normalizer: WebhookNormalizer
    whatsapp: WhatsAppDelivery
    accounts: AccountRepository
    sync_scheduler: SyncScheduler
    calendar: GoogleCalendarService
    gmail: GoogleGmailService
    whatsapp_client: WhatsAppClient

    async def close(self) -> None:
        """Stop background loops and close HTTP clients."""
        await self.sync_scheduler.stop()
        await self.calendar.close()
        await self.whatsapp_client.close()
        self.gmail.close()


def build_container(config: Settings = settings, redis: FastRedisClient | None = None) -> ServiceContainer:
    """Construct every service once, wired to its collaborators."""
    activity = ActivityLogger()

    profiles = ProfileRepository()
    interactions = InteractionRepository()
    meetings = MeetingRepository()
    integrations = CalendarIntegrationRepository()
    ingested = IngestedMessageRepository()
    outbound = OutboundMessageRepository()
    accounts = AccountRepository()

    tokens = GoogleTokenService(config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET)
    calendar = GoogleCalendarService(timeout=config.GOOGLE_CALENDAR_TIMEOUT_SECONDS)
    gmail = GoogleGmailService()
    whatsapp_client = WhatsAppClient(config.WHATSAPP_API_BASE)

    resolver = IdentityResolver(profiles, activity)
    ledger = InteractionLedger(interactions, session_window=timedelta(hours=config.SESSION_WINDOW_HOURS))
    extractor = SchedulingExtractor(timezone=config.BUSINESS_TIMEZONE)
    scheduler = MeetingScheduler(
        calendar,
        tokens,
        integrations,
        meetings,
        activity,
        timezone=config.BUSINESS_TIMEZONE,
        conflict_padding=timedelta(minutes=config.CONFLICT_PADDING_MINUTES),
        provider_timeout=config.GOOGLE_CALENDAR_TIMEOUT_SECONDS,
        business_hours=(
            _parse_clock_time(config.BUSINESS_HOURS_START),
            _parse_clock_time(config.BUSINESS_HOURS_END),
        ),
    )
    pipeline = InteractionPipeline(
        resolver,
        ledger,
        extractor,
        scheduler,
        OpenAIResponder(),
        timezone=config.BUSINESS_TIMEZONE,
        history_limit=config.HISTORY_LIMIT,
        business_name=config.BUSINESS_NAME,
        assistant_name=config.ASSISTANT_NAME,
    )

    gate = IngestionGate(
        ingested,
        accounts,
        MessageDeduplicator(ingested, window=timedelta(minutes=config.DEDUP_WINDOW_MINUTES)),
        LoopGuard(),
        activity,
    )

    mail_sync = MailSyncJob(
        accounts,
        MailboxPoller(gmail, tokens, fetch_timeout=config.MAILBOX_FETCH_TIMEOUT_SECONDS),
        gate,
        SingleFlightGuard("mail_sync", redis, config.SYNC_LEASE_SECONDS),
        activity,
        failure_threshold=config.SYNC_FAILURE_THRESHOLD,
        folder=config.MAILBOX_FOLDER,
        scope=config.MAILBOX_SCOPE,
        limit=config.MAILBOX_FETCH_LIMIT,
    )
    reply_processing = OutboundReplyJob(
        accounts,
        EmailReplyProcessor(pipeline, ingested, outbound, MailSender(gmail, tokens), activity),
        SingleFlightGuard("reply_processing", redis, config.SYNC_LEASE_SECONDS),
        activity,
        failure_threshold=config.SYNC_FAILURE_THRESHOLD,
    )

    container = ServiceContainer(
        resolver=resolver,
        ledger=ledger,
        extractor=extractor,
        scheduler=scheduler,
        pipeline=pipeline,
        gate=gate,
        normalizer=WebhookNormalizer(),
        whatsapp=WhatsAppDelivery(pipeline, gate, ingested, outbound, accounts, whatsapp_client),
        accounts=accounts,
        sync_scheduler=SyncScheduler(
            mail_sync,
            reply_processing,
            initial_delay=config.SYNC_INITIAL_DELAY_SECONDS,
            sync_interval=config.SYNC_INTERVAL_SECONDS,
            reply_interval=config.REPLY_INTERVAL_SECONDS,
            status_interval=config.STATUS_LOG_INTERVAL_SECONDS,
        ),
        calendar=calendar,
        gmail=gmail,
        whatsapp_client=whatsapp_client,
    )
    logger.info("Service container built", timezone=config.BUSINESS_TIMEZONE)
    return container
