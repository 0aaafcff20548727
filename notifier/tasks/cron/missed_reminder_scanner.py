import asyncio

from notifier.celery import celery
from notifier.db.session import get_sync_session
from notifier.services.lock_service import get_lease_service
from notifier.services.reminders.core import get_reminder_scheduling_service
from notifier.services.reminders.recovery import scan_and_schedule_missed_reminders
from notifier.utils.context import request_id_scope
from notifier.utils.logging import get_logger


@celery.task(bind=True, max_retries=3, default_retry_delay=300)
def scan_missed_reminders_task(self, request_id: str):
    """
    Weekly backfill of reminder chains for entities that have none.

    Args:
        request_id: The request ID for tracking purposes (provided by Celery Beat configuration)
    """
    return asyncio.run(_async_scan_missed_reminders(request_id))


async def _async_scan_missed_reminders(request_id: str):
    logger = get_logger().bind(request_id=request_id)

    lease_service = get_lease_service()
    try:
        with request_id_scope(request_id):
            for db_session in get_sync_session():
                scheduling = get_reminder_scheduling_service(db_session, lease_service)
                scheduled = await scan_and_schedule_missed_reminders(
                    db_session, scheduling
                )

        logger.info("Missed reminder scan completed", scheduled=scheduled)
        return {"success": True, "scheduled": scheduled, "request_id": request_id}

    except Exception as e:
        logger.opt(exception=e).error("Missed reminder scan task exception")
        return {"success": False, "error": str(e), "request_id": request_id}
    finally:
        await lease_service.close()
