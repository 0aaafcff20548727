import time
from typing import Annotated, Optional

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from notifier.config.settings import settings
from notifier.db.session import get_sync_session
from notifier.middlewares.jobs_auth_middleware import require_jobs_api_key
from notifier.schemas.reminder_schemas import (
    ProcessRemindersRequest,
    ScanMissedRemindersResult,
)
from notifier.services.lock_service import RedisLeaseService, lease_service_dependency
from notifier.services.reminders.core import get_reminder_scheduling_service
from notifier.services.reminders.processor import process_due_reminders
from notifier.services.reminders.recovery import scan_and_schedule_missed_reminders
from notifier.services.senders import NotificationSender, get_notification_sender
from notifier.utils.responses import ResponseBuilder
from notifier.utils.logging import get_logger

jobs_router = APIRouter(dependencies=[Depends(require_jobs_api_key)])
logger = get_logger()


@jobs_router.post("/reminders")
async def run_scheduled_reminders(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
    lease_service: Annotated[RedisLeaseService, Depends(lease_service_dependency)],
    sender: Annotated[NotificationSender, Depends(get_notification_sender)],
    payload: Annotated[Optional[ProcessRemindersRequest], Body()] = None,
):
    """
    Process due reminders (run hourly).

    ``effectiveNow`` pins the processor clock for end-to-end runs and is
    ignored in production.
    """
    effective_now = payload.effective_now if payload else None
    if effective_now is not None and settings.ENVIRONMENT == "production":
        logger.warning("Ignoring effectiveNow override in production")
        effective_now = None
    elif effective_now is not None:
        logger.info(f"Reminder run with time override: {effective_now.isoformat()}")

    started = time.monotonic()
    result = await process_due_reminders(
        db, effective_now, lease_service=lease_service, sender=sender
    )
    duration_ms = int((time.monotonic() - started) * 1000)

    return ResponseBuilder.success(
        request=request,
        data=result,
        message=f"{result.sent}/{result.processed} reminders sent, {result.failed} failed",
        meta={"durationMs": duration_ms},
    )


@jobs_router.post("/scan-missed-reminders")
async def run_missed_reminder_scan(
    request: Request,
    db: Annotated[Session, Depends(get_sync_session)],
    lease_service: Annotated[RedisLeaseService, Depends(lease_service_dependency)],
):
    """Reschedule reminder chains that went missing (run on deploy or weekly)"""
    scheduling = get_reminder_scheduling_service(db, lease_service)
    scheduled = await scan_and_schedule_missed_reminders(db, scheduling)

    return ResponseBuilder.success(
        request=request,
        data=ScanMissedRemindersResult(scheduled=scheduled),
        message=f"{scheduled} reminders scheduled",
    )
