import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from notifier.db.models import (
    Reminder,
    ReminderChannel,
    ReminderStatus,
    ReminderType,
    RequestStatus,
    SystemLog,
    SystemLogType,
)
from notifier.services.lock_service import RedisLeaseService
from notifier.services.reminders.handlers import ReminderHandlerRegistry
from notifier.services.reminders.processor import (
    ReminderProcessor,
    process_due_reminders,
    processing_lease_key,
)
from notifier.services.reminders.subscription import subscription_period_entity_id
from notifier.utils.errors import LeaseServiceError

from conftest import NOW, RecordingSender, get_reminder


@pytest.fixture
def onboarding_reminder(make_user, make_reminder):
    """Due onboarding nudge for a user who has not created a profile yet."""

    def _onboarding_reminder(**fields):
        user = make_user()
        defaults = {
            "user_id": user.id,
            "entity_type": "user",
            "entity_id": user.id,
            "type": ReminderType.ONBOARDING_INCOMPLETE_24H.value,
        }
        defaults.update(fields)
        return make_reminder(**defaults)

    return _onboarding_reminder


async def _run(db_session, lease_service, sender, now=NOW):
    return await process_due_reminders(
        db_session, now, lease_service=lease_service, sender=sender
    )


class TestStateTransitions:
    """Test per-reminder outcomes of one processor run."""

    @pytest.mark.asyncio
    async def test_due_reminder_is_sent(
        self, db_session, lease_service, sender, onboarding_reminder
    ):
        reminder = onboarding_reminder()

        result = await _run(db_session, lease_service, sender)

        row = get_reminder(db_session, reminder.id)
        assert result.processed == 1
        assert result.sent == 1
        assert result.failed == 0
        assert row.status == ReminderStatus.SENT
        assert row.sent_at == NOW
        assert len(sender.sent) == 1
        assert sender.sent[0]["template_type"] == "onboarding_incomplete"
        assert result.outcomes[0].status == "sent"

    @pytest.mark.asyncio
    async def test_future_reminder_is_not_processed(
        self, db_session, lease_service, sender, onboarding_reminder
    ):
        reminder = onboarding_reminder(scheduled_for=NOW + timedelta(hours=1))

        result = await _run(db_session, lease_service, sender)

        assert result.processed == 0
        assert get_reminder(db_session, reminder.id).status == ReminderStatus.SCHEDULED
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_entity_no_longer_needing_reminder_is_canceled(
        self, db_session, lease_service, sender, make_request, make_reminder
    ):
        request = make_request(status=RequestStatus.PAID)
        reminder = make_reminder(
            user_id=request.creator_id,
            entity_type="request",
            entity_id=request.id,
            type=ReminderType.REQUEST_UNOPENED_24H.value,
        )

        result = await _run(db_session, lease_service, sender)

        assert result.canceled == 1
        assert result.sent == 0
        assert get_reminder(db_session, reminder.id).status == ReminderStatus.CANCELED
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_opted_out_user_reminder_is_canceled(
        self, db_session, lease_service, sender, make_user, make_request, make_reminder
    ):
        creator = make_user(with_profile=True, notification_prefs={"paymentAlerts": False})
        request = make_request(creator=creator, due_date=NOW + timedelta(days=3))
        reminder = make_reminder(
            user_id=creator.id,
            entity_type="request",
            entity_id=request.id,
            type=ReminderType.INVOICE_DUE_3D.value,
        )

        result = await _run(db_session, lease_service, sender)

        row = get_reminder(db_session, reminder.id)
        assert result.canceled == 1
        assert row.status == ReminderStatus.CANCELED
        assert row.retry_count == 0
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_sent_attempt_writes_audit_log(
        self, db_session, lease_service, sender, onboarding_reminder
    ):
        reminder = onboarding_reminder()

        await _run(db_session, lease_service, sender)

        logs = db_session.execute(select(SystemLog)).scalars().all()
        assert len(logs) == 1
        assert logs[0].type == SystemLogType.REMINDER_SENT
        assert logs[0].log_metadata["reminder_id"] == reminder.id

    @pytest.mark.asyncio
    async def test_sms_channel_without_phone_falls_back_to_email(
        self, db_session, lease_service, sender, make_request, make_reminder
    ):
        request = make_request(
            due_date=NOW + timedelta(days=1), recipient_phone=None
        )
        make_reminder(
            user_id=request.creator_id,
            entity_type="request",
            entity_id=request.id,
            type=ReminderType.INVOICE_DUE_1D.value,
            channel=ReminderChannel.SMS,
        )

        await _run(db_session, lease_service, sender)

        assert sender.sent[0]["channel"] == ReminderChannel.EMAIL
        assert sender.sent[0]["recipient"] == "client@example.com"
        assert sender.sent[0]["template_type"] == "invoice_due"
        assert sender.sent[0]["data"]["days"] == 1

    @pytest.mark.asyncio
    async def test_sms_channel_with_phone_uses_sms(
        self, db_session, lease_service, sender, make_request, make_reminder
    ):
        request = make_request(
            due_date=NOW - timedelta(days=1), recipient_phone="+2348000000000"
        )
        make_reminder(
            user_id=request.creator_id,
            entity_type="request",
            entity_id=request.id,
            type=ReminderType.INVOICE_OVERDUE_1D.value,
            channel=ReminderChannel.SMS,
        )

        await _run(db_session, lease_service, sender)

        assert sender.sent[0]["channel"] == ReminderChannel.SMS
        assert sender.sent[0]["recipient"] == "+2348000000000"


class TestRetries:
    """Test bounded retry on dispatch failure."""

    @pytest.mark.asyncio
    async def test_failure_reschedules_one_hour_later(
        self, db_session, lease_service, onboarding_reminder
    ):
        reminder = onboarding_reminder()
        sender = RecordingSender(always_fail=True)

        result = await _run(db_session, lease_service, sender)

        row = get_reminder(db_session, reminder.id)
        assert result.failed == 1
        assert result.errors[0].reminder_id == reminder.id
        assert "provider unavailable" in result.errors[0].error
        assert result.outcomes[0].status == "retry_scheduled"
        assert row.status == ReminderStatus.SCHEDULED
        assert row.retry_count == 1
        assert row.scheduled_for == NOW + timedelta(hours=1)
        assert "provider unavailable" in row.error_message

    @pytest.mark.asyncio
    async def test_always_failing_reminder_fails_after_three_attempts(
        self, db_session, lease_service, onboarding_reminder
    ):
        reminder = onboarding_reminder()
        sender = RecordingSender(always_fail=True)
        now = NOW
        statuses = []
        times = []

        for _ in range(3):
            await _run(db_session, lease_service, sender, now)
            row = get_reminder(db_session, reminder.id)
            statuses.append(row.status)
            times.append(row.scheduled_for)
            now = now + timedelta(hours=1)

        assert statuses == [
            ReminderStatus.SCHEDULED,
            ReminderStatus.SCHEDULED,
            ReminderStatus.FAILED,
        ]
        assert times[0] == NOW + timedelta(hours=1)
        assert times[1] == NOW + timedelta(hours=2)
        row = get_reminder(db_session, reminder.id)
        assert row.retry_count == 3
        assert row.error_message is not None
        assert sender.calls == 3

        # Terminal: later runs leave it alone
        result = await _run(db_session, lease_service, sender, now + timedelta(days=1))
        assert result.processed == 0
        assert sender.calls == 3

    @pytest.mark.asyncio
    async def test_failures_then_success(
        self, db_session, lease_service, onboarding_reminder
    ):
        reminder = onboarding_reminder()
        sender = RecordingSender(fail_times=2)

        for hours in range(3):
            await _run(db_session, lease_service, sender, NOW + timedelta(hours=hours))

        row = get_reminder(db_session, reminder.id)
        assert row.status == ReminderStatus.SENT
        assert row.retry_count == 2
        assert row.sent_at == NOW + timedelta(hours=2)
        # Last failure stays on record for audit
        assert row.error_message is not None

    @pytest.mark.asyncio
    async def test_failed_attempt_writes_audit_log(
        self, db_session, lease_service, onboarding_reminder
    ):
        onboarding_reminder()

        await _run(db_session, lease_service, RecordingSender(always_fail=True))

        log = db_session.execute(select(SystemLog)).scalar_one()
        assert log.type == SystemLogType.REMINDER_FAILED
        assert "provider unavailable" in log.error_message

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_the_batch(
        self, db_session, lease_service, make_user, make_reminder
    ):
        failing_user = make_user(email="bounce@example.com")
        ok_user = make_user(email="ok@example.com")
        failing = make_reminder(
            user_id=failing_user.id,
            entity_id=failing_user.id,
            scheduled_for=NOW - timedelta(hours=2),
        )
        ok = make_reminder(
            user_id=ok_user.id,
            entity_id=ok_user.id,
            scheduled_for=NOW - timedelta(hours=1),
        )
        sender = RecordingSender(fail_for={"bounce@example.com"})

        result = await _run(db_session, lease_service, sender)

        assert result.processed == 2
        assert result.sent == 1
        assert result.failed == 1
        assert [e.reminder_id for e in result.errors] == [failing.id]
        assert get_reminder(db_session, ok.id).status == ReminderStatus.SENT


class TestOrderingAndBatching:
    @pytest.mark.asyncio
    async def test_earliest_due_processed_first(
        self, db_session, lease_service, sender, onboarding_reminder
    ):
        later = onboarding_reminder(scheduled_for=NOW - timedelta(minutes=10))
        earlier = onboarding_reminder(scheduled_for=NOW - timedelta(hours=3))

        result = await _run(db_session, lease_service, sender)

        assert [o.reminder_id for o in result.outcomes] == [earlier.id, later.id]

    @pytest.mark.asyncio
    async def test_batch_size_caps_a_run(
        self, db_session, lease_service, sender, onboarding_reminder, monkeypatch
    ):
        from notifier.config.settings import settings

        monkeypatch.setattr(settings, "REMINDER_BATCH_SIZE", 2)
        for minutes in (30, 20, 10):
            onboarding_reminder(scheduled_for=NOW - timedelta(minutes=minutes))

        first = await _run(db_session, lease_service, sender)
        second = await _run(db_session, lease_service, sender)

        assert first.sent == 2
        assert second.sent == 1


class TestUnknownTypes:
    @pytest.mark.asyncio
    async def test_unknown_type_stays_scheduled(
        self, db_session, lease_service, sender, make_reminder
    ):
        reminder = make_reminder(type="weekly_digest")

        for _ in range(2):
            result = await _run(db_session, lease_service, sender)
            assert result.outcomes[0].status == "unhandled"
            assert result.sent == 0
            assert result.failed == 0

        row = get_reminder(db_session, reminder.id)
        assert row.status == ReminderStatus.SCHEDULED
        assert row.retry_count == 0
        assert row.scheduled_for == reminder.scheduled_for

    @pytest.mark.asyncio
    async def test_registered_handler_picks_up_new_type(
        self, db_session, lease_service, sender, make_reminder
    ):
        from notifier.services.reminders.handlers.base import BaseReminderHandler

        class DigestHandler(BaseReminderHandler):
            async def handle(self, reminder):
                return True

        reminder = make_reminder(type="weekly_digest")
        ReminderHandlerRegistry.register_handler(
            "weekly_digest", lambda db, code, snd, now: DigestHandler(db, code, snd, now)
        )
        try:
            result = await _run(db_session, lease_service, sender)
        finally:
            ReminderHandlerRegistry.unregister_handler("weekly_digest")

        assert result.sent == 1
        assert get_reminder(db_session, reminder.id).status == ReminderStatus.SENT


class TestLeases:
    """Test cross-worker coordination through processing leases."""

    @pytest.mark.asyncio
    async def test_leased_reminder_is_skipped(
        self, db_session, lease_service, sender, onboarding_reminder
    ):
        reminder = onboarding_reminder()
        await lease_service.acquire(processing_lease_key(reminder.id), 60_000)

        result = await _run(db_session, lease_service, sender)

        assert result.processed == 0
        assert result.skipped == 1
        assert get_reminder(db_session, reminder.id).status == ReminderStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_lease_released_after_processing(
        self, db_session, lease_service, redis_client, sender, onboarding_reminder
    ):
        reminder = onboarding_reminder()

        await _run(db_session, lease_service, sender)

        assert await redis_client.exists(f"lock:{processing_lease_key(reminder.id)}") == 0

    @pytest.mark.asyncio
    async def test_lease_released_after_failure(
        self, db_session, lease_service, redis_client, onboarding_reminder
    ):
        reminder = onboarding_reminder()

        await _run(db_session, lease_service, RecordingSender(always_fail=True))

        assert await redis_client.exists(f"lock:{processing_lease_key(reminder.id)}") == 0

    @pytest.mark.asyncio
    async def test_concurrent_runs_send_each_reminder_once(
        self, session_factory, redis_client, onboarding_reminder
    ):
        reminders = [
            onboarding_reminder(scheduled_for=NOW - timedelta(minutes=i))
            for i in range(5)
        ]
        sender = RecordingSender()
        sessions = [session_factory() for _ in range(4)]

        try:
            results = await asyncio.gather(
                *(
                    process_due_reminders(
                        session,
                        NOW,
                        lease_service=RedisLeaseService(redis_client),
                        sender=sender,
                    )
                    for session in sessions
                )
            )
        finally:
            for session in sessions:
                session.close()

        assert sum(r.sent for r in results) == len(reminders)
        assert len(sender.sent) == len(reminders)
        assert len({s["recipient"] for s in sender.sent}) == len(reminders)

        check = session_factory()
        statuses = check.execute(select(Reminder.status)).scalars().all()
        check.close()
        assert statuses == [ReminderStatus.SENT] * len(reminders)

    @pytest.mark.asyncio
    async def test_scan_transaction_is_closed_before_rows_are_reread(
        self, db_session, lease_service, sender, onboarding_reminder, monkeypatch
    ):
        onboarding_reminder()
        original_find_due = ReminderProcessor._find_due
        open_after_scan = []

        def find_due(self, now):
            due_ids = original_find_due(self, now)
            open_after_scan.append(self.db.in_transaction())
            return due_ids

        monkeypatch.setattr(ReminderProcessor, "_find_due", find_due)

        result = await _run(db_session, lease_service, sender)

        assert open_after_scan == [False]
        assert result.sent == 1

    @pytest.mark.asyncio
    async def test_row_sent_elsewhere_after_scan_is_not_sent_again(
        self,
        db_session,
        session_factory,
        lease_service,
        sender,
        onboarding_reminder,
        monkeypatch,
    ):
        reminder_id = onboarding_reminder().id
        original_find_due = ReminderProcessor._find_due

        def find_due(self, now):
            due_ids = original_find_due(self, now)
            # Another worker delivers the row between the scan and the lease
            other = session_factory()
            other.execute(
                update(Reminder)
                .where(Reminder.id == reminder_id)
                .values(status=ReminderStatus.SENT, sent_at=now)
            )
            other.commit()
            other.close()
            return due_ids

        monkeypatch.setattr(ReminderProcessor, "_find_due", find_due)

        result = await _run(db_session, lease_service, sender)

        assert result.processed == 1
        assert result.skipped == 1
        assert result.sent == 0
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_lease_backend_error_is_recorded_and_batch_continues(
        self, db_session, lease_service, sender, onboarding_reminder, monkeypatch
    ):
        first = onboarding_reminder(scheduled_for=NOW - timedelta(hours=2))
        second = onboarding_reminder(scheduled_for=NOW - timedelta(hours=1))
        original_acquire = lease_service.acquire
        attempts = []

        async def acquire(key, ttl_ms):
            attempts.append(key)
            if len(attempts) == 1:
                raise LeaseServiceError("redis down")
            return await original_acquire(key, ttl_ms)

        monkeypatch.setattr(lease_service, "acquire", acquire)

        result = await _run(db_session, lease_service, sender)

        assert result.processed == 1
        assert result.sent == 1
        assert [(e.reminder_id, e.error) for e in result.errors] == [
            (first.id, "redis down")
        ]
        assert get_reminder(db_session, first.id).status == ReminderStatus.SCHEDULED
        assert get_reminder(db_session, second.id).status == ReminderStatus.SENT


class TestBookkeepingErrors:
    @pytest.mark.asyncio
    async def test_bookkeeping_error_is_rolled_back_and_batch_continues(
        self, db_session, lease_service, sender, onboarding_reminder, monkeypatch
    ):
        first = onboarding_reminder(scheduled_for=NOW - timedelta(hours=2))
        second = onboarding_reminder(scheduled_for=NOW - timedelta(hours=1))
        original_mark_sent = ReminderProcessor._mark_sent
        calls = []

        def mark_sent(self, reminder, now):
            calls.append(reminder.id)
            if len(calls) == 1:
                reminder.status = ReminderStatus.SENT
                raise RuntimeError("db down")
            original_mark_sent(self, reminder, now)

        monkeypatch.setattr(ReminderProcessor, "_mark_sent", mark_sent)

        result = await _run(db_session, lease_service, sender)

        assert result.processed == 2
        assert result.sent == 1
        assert [(e.reminder_id, e.error) for e in result.errors] == [
            (first.id, "db down")
        ]
        assert result.outcomes[0].status == "error"
        assert get_reminder(db_session, first.id).status == ReminderStatus.SCHEDULED
        assert get_reminder(db_session, second.id).status == ReminderStatus.SENT


class TestScenarios:
    @pytest.mark.asyncio
    async def test_renewal_notice_sent_once(
        self, db_session, scheduling, lease_service, sender, make_subscription
    ):
        period_end = NOW + timedelta(days=7)
        subscription = make_subscription(current_period_end=period_end)

        await scheduling.schedule_reminder(
            user_id=subscription.subscriber_id,
            entity_type="subscription",
            entity_id=subscription_period_entity_id(subscription),
            reminder_type=ReminderType.SUBSCRIPTION_RENEWAL_7D,
            scheduled_for=period_end - timedelta(days=7),
        )

        first = await _run(
            db_session, lease_service, sender, period_end - timedelta(days=6, hours=23)
        )
        second = await _run(
            db_session, lease_service, sender, period_end - timedelta(days=6)
        )

        assert first.sent == 1
        assert second.sent == 0
        assert len(sender.sent) == 1
        assert sender.sent[0]["template_type"] == "subscription_renewal"
        assert "token=" in sender.sent[0]["data"]["manage_url"]

    @pytest.mark.asyncio
    async def test_cancel_before_due_prevents_sending(
        self, db_session, scheduling, lease_service, sender, make_user
    ):
        user = make_user()
        await scheduling.schedule_reminder(
            user_id=user.id,
            entity_type="user",
            entity_id=user.id,
            reminder_type=ReminderType.ONBOARDING_INCOMPLETE_24H,
            scheduled_for=NOW + timedelta(hours=24),
        )
        await scheduling.cancel_all_reminders_for_entity("user", user.id)

        result = await _run(db_session, lease_service, sender, NOW + timedelta(days=2))

        assert result.sent == 0
        assert sender.sent == []
