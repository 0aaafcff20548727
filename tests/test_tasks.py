import fakeredis
import pytest

from notifier.celery import celery
from notifier.db.models import ReminderStatus
from notifier.services.lock_service import RedisLeaseService
from notifier.tasks.cron import missed_reminder_scanner, reminder_processor
from notifier.tasks.cron.missed_reminder_scanner import scan_missed_reminders_task
from notifier.tasks.cron.reminder_processor import process_due_reminders_task

from conftest import NOW, RecordingSender, get_reminder

pytestmark = pytest.mark.integration


@pytest.fixture
def task_env(db_session, monkeypatch):
    """Point the cron tasks at the test database, a fake Redis and a recording sender."""
    server = fakeredis.FakeServer()
    sender = RecordingSender()

    def fake_lease_service():
        return RedisLeaseService(
            fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
        )

    def fake_session():
        yield db_session

    for module in (reminder_processor, missed_reminder_scanner):
        monkeypatch.setattr(module, "get_sync_session", fake_session)
        monkeypatch.setattr(module, "get_lease_service", fake_lease_service)
    monkeypatch.setattr(
        "notifier.services.reminders.processor.get_notification_sender",
        lambda: sender,
    )
    return sender


class TestReminderProcessorTask:
    def test_delivers_due_reminders(self, task_env, db_session, make_user, make_reminder):
        user = make_user()
        reminder = make_reminder(user_id=user.id, entity_id=user.id)

        result = process_due_reminders_task.run("test-run", NOW.isoformat())

        assert result["success"] is True
        assert result["sent"] == 1
        assert result["request_id"] == "test-run"
        assert get_reminder(db_session, reminder.id).status == ReminderStatus.SENT
        assert len(task_env.sent) == 1

    def test_failures_reported_not_raised(
        self, task_env, db_session, make_user, make_reminder
    ):
        user = make_user()
        make_reminder(user_id=user.id, entity_id=user.id)
        task_env.always_fail = True

        result = process_due_reminders_task.run("test-run", NOW.isoformat())

        assert result["success"] is True
        assert result["failed"] == 1
        assert result["errors"][0]["reminder_id"]

    def test_unexpected_error_returns_failure(self, task_env, monkeypatch):
        async def broken(*args, **kwargs):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(reminder_processor, "process_due_reminders", broken)

        result = process_due_reminders_task.run("test-run")

        assert result == {
            "success": False,
            "error": "database unavailable",
            "request_id": "test-run",
        }


class TestMissedReminderScannerTask:
    def test_scan(self, task_env, make_request):
        # Scans run on the real clock: keep the link from expiring
        make_request(token_expires_at=None)

        result = scan_missed_reminders_task.run("test-scan")

        assert result == {"success": True, "scheduled": 2, "request_id": "test-scan"}


class TestBeatSchedule:
    def test_tasks_registered_under_beat_names(self):
        schedule = celery.conf.beat_schedule

        for entry in schedule.values():
            assert entry["task"] in celery.tasks

    def test_processor_runs_hourly(self):
        entry = celery.conf.beat_schedule["process-due-reminders"]

        assert entry["schedule"].minute == {0}
        assert len(entry["schedule"].hour) == 24
