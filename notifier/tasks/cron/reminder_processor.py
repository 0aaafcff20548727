import asyncio
from typing import Optional

from notifier.celery import celery
from notifier.config.settings import settings
from notifier.db.session import get_sync_session
from notifier.services.lock_service import get_lease_service
from notifier.services.reminders.processor import process_due_reminders
from notifier.utils.context import request_id_scope
from notifier.utils.datetime_utils import parse_iso_datetime
from notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=0)
def process_due_reminders_task(
    self, request_id: str, effective_now: Optional[str] = None
):
    """
    Hourly task that delivers due reminders.

    Any number of workers may run this concurrently; per-reminder leases keep
    each reminder to a single delivery. Failed reminders are retried by their
    own schedule, not by Celery.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
        effective_now: Optional ISO-8601 clock override, ignored in production
    """
    return asyncio.run(_async_process_due_reminders(request_id, effective_now))


async def _async_process_due_reminders(
    request_id: str, effective_now: Optional[str] = None
):
    logger = get_logger().bind(request_id=request_id)

    now_override = None
    if effective_now and settings.ENVIRONMENT != "production":
        now_override = parse_iso_datetime(effective_now)

    lease_service = get_lease_service()
    try:
        with request_id_scope(request_id):
            for db_session in get_sync_session():
                result = await process_due_reminders(
                    db_session, now_override, lease_service=lease_service
                )

        logger.info(
            "Reminder processor task completed",
            processed=result.processed,
            sent=result.sent,
            failed=result.failed,
            canceled=result.canceled,
            skipped=result.skipped,
        )
        for error in result.errors:
            logger.warning(
                "Reminder delivery error",
                reminder_id=error.reminder_id,
                error=error.error,
            )

        return {
            "success": True,
            "processed": result.processed,
            "sent": result.sent,
            "failed": result.failed,
            "canceled": result.canceled,
            "skipped": result.skipped,
            "errors": [error.model_dump() for error in result.errors],
            "request_id": request_id,
        }

    except Exception as e:
        logger.opt(exception=e).error("Reminder processor task exception")
        return {
            "success": False,
            "error": str(e),
            "request_id": request_id,
        }
    finally:
        await lease_service.close()
