from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from notifier.config.settings import settings
from notifier.db.models import (
    PaymentRequest,
    Reminder,
    ReminderChannel,
    ReminderStatus,
    ReminderType,
    RequestStatus,
)
from notifier.services.lock_service import RedisLeaseService
from notifier.services.reminders.channels import ChannelRouter
from notifier.services.reminders.constants import type_code
from notifier.utils.datetime_utils import resolve_now, to_naive_utc
from notifier.utils.logging import get_logger

logger = get_logger()


def schedule_lease_key(entity_type: str, entity_id: str, reminder_type: str) -> str:
    return f"reminder:schedule:{entity_type}:{entity_id}:{reminder_type}"


def is_request_valid_for_reminder(
    request: Optional[PaymentRequest], now: Optional[datetime] = None
) -> bool:
    """A request still awaits a response and its public link has not expired"""
    if request is None:
        return False
    if request.status != RequestStatus.SENT:
        return False
    now = resolve_now(now)
    if request.token_expires_at and request.token_expires_at < now:
        return False
    return True


class ReminderSchedulingService:
    """
    Idempotent create/update/cancel of reminder rows.

    Every write commits before the next await so concurrent callers sharing
    the store only ever observe committed rows.
    """

    def __init__(self, db_session: Session, lease_service: RedisLeaseService):
        self.db = db_session
        self.lease_service = lease_service
        self.channel_router = ChannelRouter(db_session)

    def _find(
        self, entity_type: str, entity_id: str, reminder_type: str
    ) -> Optional[Reminder]:
        stmt = (
            select(Reminder)
            .where(
                Reminder.entity_type == entity_type,
                Reminder.entity_id == entity_id,
                Reminder.type == reminder_type,
            )
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    async def schedule_reminder(
        self,
        user_id: str,
        entity_type: str,
        entity_id: str,
        reminder_type: Union[ReminderType, str],
        scheduled_for: datetime,
        channel: Optional[ReminderChannel] = None,
    ) -> Optional[Reminder]:
        """
        Create or move the reminder for one dedup key.

        A ``sent`` row is left untouched, a ``canceled`` row is reactivated,
        and anything else has its due time updated. When the dedup lease is
        held by another caller the call is dropped.

        Returns:
            The reminder row, or None when the call was skipped
        """
        code = type_code(reminder_type)
        scheduled_for = to_naive_utc(scheduled_for)

        if channel is None:
            channel = await self.channel_router.get_best_channel(user_id, code)

        lease_key = schedule_lease_key(entity_type, entity_id, code)
        token = await self.lease_service.acquire(
            lease_key, settings.REMINDER_SCHEDULE_LEASE_TTL_MS
        )
        if not token:
            logger.info(f"Could not acquire lease {lease_key}, skipping schedule")
            return None

        try:
            existing = self._find(entity_type, entity_id, code)

            if existing is None:
                reminder = Reminder(
                    user_id=user_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    type=code,
                    channel=channel,
                    status=ReminderStatus.SCHEDULED,
                    scheduled_for=scheduled_for,
                    retry_count=0,
                )
                self.db.add(reminder)
                try:
                    self.db.commit()
                except IntegrityError:
                    # Row created by a holder whose lease had expired
                    self.db.rollback()
                    logger.warning(f"Reminder already exists for {lease_key}")
                    return self._find(entity_type, entity_id, code)
                return reminder

            if existing.status == ReminderStatus.SENT:
                return existing

            if existing.status == ReminderStatus.CANCELED:
                existing.status = ReminderStatus.SCHEDULED
            existing.scheduled_for = scheduled_for
            self.db.commit()
            return existing
        except Exception:
            self.db.rollback()
            raise
        finally:
            await self.lease_service.release(lease_key, token)

    async def cancel_reminder(
        self,
        entity_type: str,
        entity_id: str,
        reminder_type: Union[ReminderType, str],
    ) -> int:
        """Cancel the scheduled reminder for one dedup key"""
        return self._cancel_where(
            Reminder.entity_type == entity_type,
            Reminder.entity_id == entity_id,
            Reminder.type == type_code(reminder_type),
        )

    async def cancel_all_reminders_for_entity(
        self, entity_type: str, entity_id: str
    ) -> int:
        """Cancel every scheduled reminder of one entity"""
        return self._cancel_where(
            Reminder.entity_type == entity_type,
            Reminder.entity_id == entity_id,
        )

    async def cancel_reminders_with_entity_prefix(
        self, entity_type: str, entity_id_prefix: str
    ) -> int:
        """Cancel scheduled reminders whose entity id starts with a prefix"""
        return self._cancel_where(
            Reminder.entity_type == entity_type,
            Reminder.entity_id.startswith(entity_id_prefix, autoescape=True),
        )

    def _cancel_where(self, *criteria) -> int:
        stmt = (
            update(Reminder)
            .where(Reminder.status == ReminderStatus.SCHEDULED, *criteria)
            .values(status=ReminderStatus.CANCELED)
            .execution_options(synchronize_session="fetch")
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return result.rowcount or 0


def get_reminder_scheduling_service(
    db_session: Session, lease_service: RedisLeaseService
) -> ReminderSchedulingService:
    return ReminderSchedulingService(db_session, lease_service)
