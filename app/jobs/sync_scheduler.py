# app/jobs/sync_scheduler.py
"""
Sync Scheduler: periodic mailbox polling and outbound reply processing.

Two independent jobs, each single-flight on its own guard:
- mail_sync pulls new mail and passes it through the ingestion gate
- reply_processing answers accepted, not-yet-replied messages

They never share a guard, so a slow sync does not hold up replies.
Failures are counted per job; reaching the threshold raises a critical
activity event but never stops the loops.
"""

import asyncio
import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from app.infrastructure.activity import ActivityLogger, ActivityStatus
from app.infrastructure.observability.logging import get_logger
from app.models.domain.account_domain import MailAccount
from app.repositories.message_repository import AccountRepository
from app.services.ingestion.ingestion_gate import IngestionGate
from app.services.mail.mailbox import MailboxPoller
from app.services.pipeline.channel_delivery import EmailReplyProcessor
from app.services.redis_client import FastRedisClient

logger = get_logger(__name__)

LEASE_KEY_PREFIX = "receptionist:job-lease:"


class SyncJobError(Exception):
    """Raised when one or more accounts fail during a tick."""

    def __init__(self, message: str, failures: dict[str, str] | None = None, recoverable: bool = True):
        super().__init__(message)
        self.failures = failures or {}
        self.recoverable = recoverable


@dataclass(slots=True)
class SyncJobStatus:
    """Process-lifetime state of one scheduled job; reset on restart."""

    name: str
    is_running: bool = False
    last_run: datetime | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    total_runs: int = 0
    skipped_ticks: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "is_running": self.is_running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
            "consecutive_failures": self.consecutive_failures,
            "total_runs": self.total_runs,
            "skipped_ticks": self.skipped_ticks,
        }


class SingleFlightGuard:
    """
    At most one holder at a time.

    In-process, an asyncio.Lock is taken only if free (never waited on).
    Across processes, an optional Redis lease (SET NX EX) does the same and
    expires on its own if the holder dies. When Redis is unavailable the
    in-process lock alone applies.
    """

    def __init__(self, name: str, redis: FastRedisClient | None = None, lease_seconds: int = 300):
        self.name = name
        self.redis = redis
        self.lease_seconds = lease_seconds
        self.lease_key = f"{LEASE_KEY_PREFIX}{name}"
        self._lock = asyncio.Lock()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """Yield True if the guard was acquired, False if someone else holds it."""
        if self._lock.locked():
            yield False
            return

        async with self._lock:
            token = uuid.uuid4().hex
            leased = None
            if self.redis is not None:
                leased = await self.redis.acquire_lease(self.lease_key, token, self.lease_seconds)
            if leased is False:
                yield False
                return
            try:
                yield True
            finally:
                if leased:
                    await self.redis.release_lease(self.lease_key, token)


class ScheduledJob:
    """Tick template shared by both jobs: guard, run, count success or failure."""

    name = "job"
    error_event = "ScheduledEmailSyncError"

    def __init__(
        self,
        guard: SingleFlightGuard,
        activity: ActivityLogger,
        failure_threshold: int = 5,
        clock: Callable[[], datetime] | None = None,
    ):
        self.guard = guard
        self.activity = activity
        self.failure_threshold = failure_threshold
        self._clock = clock or (lambda: datetime.now(UTC))
        self.status = SyncJobStatus(name=self.name)

    async def execute(self) -> dict[str, Any]:
        raise NotImplementedError

    async def run_once(self) -> dict[str, Any]:
        """
        Run a single tick.

        Returns:
            Dict: tick summary; {"skipped": True} when another tick holds the guard
        """
        async with self.guard.hold() as acquired:
            if not acquired:
                self.status.skipped_ticks += 1
                logger.info(f"{self.name} already running, skipping tick", decision="single_flight_skip")
                return {"skipped": True, "reason": "already_running"}

            self.status.is_running = True
            try:
                summary = await self.execute()
            except Exception as e:
                await self._record_failure(e)
                return {"skipped": False, "success": False, "error": str(e)}
            finally:
                self.status.is_running = False

            self._record_success()
            return {"skipped": False, "success": True, **summary}

    def _record_success(self) -> None:
        self.status.total_runs += 1
        self.status.last_run = self._clock()
        self.status.last_error = None
        self.status.consecutive_failures = 0

    async def _record_failure(self, error: Exception) -> None:
        self.status.total_runs += 1
        self.status.consecutive_failures += 1
        self.status.last_error = str(error)

        details = {
            "job": self.name,
            "error": str(error),
            "consecutive_failures": self.status.consecutive_failures,
        }
        if isinstance(error, SyncJobError):
            details["failures"] = error.failures

        logger.error(
            f"{self.name} tick failed",
            error=str(error),
            error_type=type(error).__name__,
            consecutive_failures=self.status.consecutive_failures,
        )
        await self.activity.log(self.error_event, ActivityStatus.ERROR, details=details)

        if self.status.consecutive_failures >= self.failure_threshold:
            logger.critical(
                f"{self.name} failure threshold reached",
                consecutive_failures=self.status.consecutive_failures,
                threshold=self.failure_threshold,
            )
            await self.activity.log(
                "EmailSyncCriticalFailure",
                ActivityStatus.CRITICAL,
                details={**details, "threshold": self.failure_threshold},
            )


class MailSyncJob(ScheduledJob):
    """Pulls new mail for every active account and passes it through the gate."""

    name = "mail_sync"

    def __init__(
        self,
        accounts: AccountRepository,
        poller: MailboxPoller,
        gate: IngestionGate,
        guard: SingleFlightGuard,
        activity: ActivityLogger,
        failure_threshold: int = 5,
        folder: str = "INBOX",
        scope: str = "unread-only",
        limit: int = 100,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(guard, activity, failure_threshold, clock)
        self.accounts = accounts
        self.poller = poller
        self.gate = gate
        self.folder = folder
        self.scope = scope
        self.limit = limit

    async def execute(self) -> dict[str, Any]:
        accounts = await self.accounts.list_active_mail_accounts()
        fetched = accepted = 0
        failures: dict[str, str] = {}

        for account in accounts:
            try:
                account_fetched, account_accepted = await self._sync_account(account)
            except Exception as e:
                failures[account.id] = str(e)
                continue
            fetched += account_fetched
            accepted += account_accepted

        if failures:
            raise SyncJobError(f"{len(failures)} of {len(accounts)} mailboxes failed", failures=failures)

        return {"accounts": len(accounts), "fetched": fetched, "accepted": accepted}

    async def _sync_account(self, account: MailAccount) -> tuple[int, int]:
        messages = await self.poller.fetch(account, self.folder, self.scope, self.limit)

        accepted = 0
        for message in messages:
            if await self.gate.accept(message):
                accepted += 1

        await self.poller.mark_read(account, messages)
        await self.accounts.mark_mail_synced(account.id, self._clock())

        if messages:
            await self.activity.log(
                "ScheduledEmailSync",
                ActivityStatus.SUCCESS,
                owner_id=account.owner_id,
                details={"account_id": account.id, "fetched": len(messages), "accepted": accepted},
            )
        return len(messages), accepted


class OutboundReplyJob(ScheduledJob):
    """Answers accepted emails that have not been replied to yet."""

    name = "reply_processing"
    error_event = "EmailProcessingError"

    def __init__(
        self,
        accounts: AccountRepository,
        processor: EmailReplyProcessor,
        guard: SingleFlightGuard,
        activity: ActivityLogger,
        failure_threshold: int = 5,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(guard, activity, failure_threshold, clock)
        self.accounts = accounts
        self.processor = processor

    async def execute(self) -> dict[str, Any]:
        replied = failed = deferred = 0
        for account in await self.accounts.list_active_mail_accounts():
            stats = await self.processor.process_account(account)
            replied += stats.replied
            failed += stats.failed
            deferred += stats.deferred
        return {"replied": replied, "failed": failed, "deferred": deferred}


class SyncScheduler:
    """Drives both jobs on their own timers plus a periodic status log."""

    def __init__(
        self,
        mail_sync: MailSyncJob,
        reply_processing: OutboundReplyJob,
        initial_delay: float = 5.0,
        sync_interval: float = 60.0,
        reply_interval: float = 120.0,
        status_interval: float = 600.0,
    ):
        self.mail_sync = mail_sync
        self.reply_processing = reply_processing
        self.initial_delay = initial_delay
        self.sync_interval = sync_interval
        self.reply_interval = reply_interval
        self.status_interval = status_interval
        self._tasks: list[asyncio.Task] = []

    @property
    def is_started(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def _loop(self, job: ScheduledJob, interval: float) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            await job.run_once()
            await asyncio.sleep(interval)

    async def _status_loop(self) -> None:
        while True:
            await asyncio.sleep(self.status_interval)
            logger.info("Sync scheduler status", **self.get_status())

    def start(self) -> list[asyncio.Task]:
        """Start the timers as background tasks; calling twice is a no-op."""
        if self.is_started:
            return self._tasks

        logger.info(
            "Starting sync scheduler",
            sync_interval=self.sync_interval,
            reply_interval=self.reply_interval,
            initial_delay=self.initial_delay,
        )
        self._tasks = [
            asyncio.create_task(self._loop(self.mail_sync, self.sync_interval), name="mail_sync"),
            asyncio.create_task(
                self._loop(self.reply_processing, self.reply_interval), name="reply_processing"
            ),
            asyncio.create_task(self._status_loop(), name="scheduler_status"),
        ]
        return self._tasks

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Sync scheduler stopped")

    async def run_forever(self) -> None:
        """Run the timers in the foreground (worker process)."""
        tasks = self.start()
        try:
            await asyncio.gather(*tasks)
        finally:
            await self.stop()

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.is_started,
            "mail_sync": self.mail_sync.status.to_dict(),
            "reply_processing": self.reply_processing.status.to_dict(),
        }
