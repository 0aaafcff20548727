from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from notifier.config.settings import settings
from notifier.db.models import Reminder, ReminderStatus
from notifier.schemas.reminder_schemas import ReminderRunResult
from notifier.services.lock_service import RedisLeaseService, get_lease_service
from notifier.services.reminders.channels import get_channel_router
from notifier.services.reminders.handlers import ReminderHandlerRegistry
from notifier.services.senders import NotificationSender, get_notification_sender
from notifier.services.system_log_service import get_system_log_service
from notifier.utils.datetime_utils import resolve_now
from notifier.utils.logging import get_logger

logger = get_logger()


def processing_lease_key(reminder_id: str) -> str:
    return f"reminder:{reminder_id}"


class ReminderProcessor:
    """
    Moves due reminders through their state machine.

    scheduled -> sent | canceled | failed, or back to scheduled one retry
    delay later. Rows are taken oldest-due first and handled one at a time;
    each row is only mutated while its processing lease is held.
    """

    def __init__(
        self,
        db_session: Session,
        lease_service: RedisLeaseService,
        sender: NotificationSender,
    ):
        self.db = db_session
        self.lease_service = lease_service
        self.sender = sender
        self.channel_router = get_channel_router(db_session)
        self.system_log = get_system_log_service(db_session)

    def _find_due(self, now: datetime) -> list:
        stmt = (
            select(Reminder.id)
            .where(
                Reminder.status == ReminderStatus.SCHEDULED,
                Reminder.scheduled_for <= now,
            )
            .order_by(Reminder.scheduled_for.asc(), Reminder.id.asc())
            .limit(settings.REMINDER_BATCH_SIZE)
        )
        due_ids = list(self.db.execute(stmt).scalars().all())
        # Close the read transaction; rows are re-read one by one under lease
        self.db.rollback()
        return due_ids

    def _reload(self, reminder_id: str) -> Optional[Reminder]:
        # Start from a fresh transaction and bypass the identity map so writes
        # committed by another worker are visible
        self.db.rollback()
        stmt = (
            select(Reminder)
            .where(Reminder.id == reminder_id)
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    async def process_due_reminders(
        self, effective_now: Optional[datetime] = None
    ) -> ReminderRunResult:
        now = resolve_now(effective_now)
        result = ReminderRunResult()

        due_ids = self._find_due(now)
        logger.info(f"Found {len(due_ids)} due reminders")

        for reminder_id in due_ids:
            await self._process_one(reminder_id, now, result)

        logger.info(
            f"Reminder run complete: {result.processed} processed, {result.sent} sent, "
            f"{result.failed} failed, {result.canceled} canceled, {result.skipped} skipped"
        )
        return result

    async def _process_one(
        self, reminder_id: str, now: datetime, result: ReminderRunResult
    ) -> None:
        lease_key = processing_lease_key(reminder_id)
        try:
            token = await self.lease_service.acquire(
                lease_key, settings.REMINDER_PROCESS_LEASE_TTL_MS
            )
        except Exception as e:
            logger.error(f"Could not acquire lease for reminder {reminder_id}: {e}")
            result.add_error(reminder_id, str(e))
            return

        if not token:
            logger.info(f"Skipping reminder {reminder_id}: leased by another worker")
            result.skipped += 1
            return

        result.processed += 1
        reminder_type = ""
        try:
            reminder = self._reload(reminder_id)
            if reminder is None or reminder.status != ReminderStatus.SCHEDULED:
                logger.info(f"Skipping reminder {reminder_id}: already processed")
                result.skipped += 1
                return

            reminder_type = reminder.type
            handler = ReminderHandlerRegistry.create_handler(
                reminder.type, self.db, self.sender, now
            )
            if handler is None:
                # Left scheduled so the gap stays visible every cycle
                result.record(reminder.id, reminder.type, "unhandled")
                return

            allowed = await self.channel_router.check_notification_preferences(
                reminder.user_id, reminder.type, reminder.channel
            )
            if not allowed:
                logger.info(
                    f"Canceling reminder {reminder.id} ({reminder.type}): user opted out"
                )
                self._mark_canceled(reminder)
                result.canceled += 1
                result.record(reminder.id, reminder.type, "canceled")
                return

            try:
                sent = await handler.handle(reminder)
            except Exception as e:
                self._record_failure(reminder, e, now, result)
                return

            if sent:
                self._mark_sent(reminder, now)
                result.sent += 1
                result.record(reminder.id, reminder.type, "sent")
                self.system_log.log_reminder_sent(reminder)
            else:
                self._mark_canceled(reminder)
                result.canceled += 1
                result.record(reminder.id, reminder.type, "canceled")
        except Exception as e:
            # Bookkeeping failure: isolate it from the rest of the batch
            self.db.rollback()
            logger.opt(exception=e).error(f"Failed to process reminder {reminder_id}")
            result.add_error(reminder_id, str(e))
            result.record(reminder_id, reminder_type, "error")
        finally:
            await self.lease_service.release(lease_key, token)

    def _mark_sent(self, reminder: Reminder, now: datetime) -> None:
        reminder.status = ReminderStatus.SENT
        reminder.sent_at = now
        self.db.commit()

    def _mark_canceled(self, reminder: Reminder) -> None:
        reminder.status = ReminderStatus.CANCELED
        self.db.commit()

    def _record_failure(
        self,
        reminder: Reminder,
        error: Exception,
        now: datetime,
        result: ReminderRunResult,
    ) -> None:
        """Count the attempt; retry one delay later or give up for good"""
        # Handler may have left the session mid-transaction
        self.db.rollback()
        message = str(error) or error.__class__.__name__

        reminder.retry_count += 1
        reminder.error_message = message
        terminal = reminder.retry_count >= settings.REMINDER_MAX_ATTEMPTS
        if terminal:
            reminder.status = ReminderStatus.FAILED
        else:
            reminder.scheduled_for = now + timedelta(
                minutes=settings.REMINDER_RETRY_DELAY_MINUTES
            )
        self.db.commit()

        result.failed += 1
        result.add_error(reminder.id, message)
        result.record(
            reminder.id, reminder.type, "failed" if terminal else "retry_scheduled"
        )
        logger.error(
            f"Reminder {reminder.id} ({reminder.type}) attempt {reminder.retry_count} "
            f"failed: {message}"
        )
        self.system_log.log_reminder_failed(reminder, message, terminal=terminal)


async def process_due_reminders(
    db_session: Session,
    effective_now: Optional[datetime] = None,
    *,
    lease_service: Optional[RedisLeaseService] = None,
    sender: Optional[NotificationSender] = None,
) -> ReminderRunResult:
    """
    Cron entry point: process up to one batch of due reminders.

    Args:
        db_session: Database session
        effective_now: Clock override for deterministic runs
        lease_service: Lease backend; a Redis-backed one is created and closed
            when omitted
        sender: Notification sender; the process-wide one when omitted
    """
    owns_lease_service = lease_service is None
    if owns_lease_service:
        lease_service = get_lease_service()

    processor = ReminderProcessor(
        db_session, lease_service, sender or get_notification_sender()
    )
    try:
        return await processor.process_due_reminders(effective_now)
    finally:
        if owns_lease_service:
            await lease_service.close()
