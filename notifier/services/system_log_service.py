from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from notifier.db.models import Reminder, SystemLog, SystemLogType
from notifier.utils.logging import get_logger

logger = get_logger()


class SystemLogService:
    """Writes reminder delivery audit records."""

    def __init__(self, db_session: Session):
        self.db = db_session

    def _write(self, entry: SystemLog) -> None:
        # Audit writes never affect the reminder outcome
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to write system log {entry.type.value}: {e}")

    def log_reminder_sent(self, reminder: Reminder) -> None:
        self._write(
            SystemLog(
                type=SystemLogType.REMINDER_SENT,
                level="info",
                user_id=reminder.user_id,
                entity_type=reminder.entity_type,
                entity_id=reminder.entity_id,
                message=f"Reminder {reminder.type} sent via {reminder.channel.value}",
                log_metadata={
                    "reminder_id": reminder.id,
                    "type": reminder.type,
                    "channel": reminder.channel.value,
                },
            )
        )

    def log_reminder_failed(
        self, reminder: Reminder, error: str, terminal: Optional[bool] = False
    ) -> None:
        self._write(
            SystemLog(
                type=SystemLogType.REMINDER_FAILED,
                level="error" if terminal else "warn",
                user_id=reminder.user_id,
                entity_type=reminder.entity_type,
                entity_id=reminder.entity_id,
                message=f"Reminder {reminder.type} failed",
                log_metadata={
                    "reminder_id": reminder.id,
                    "type": reminder.type,
                    "retry_count": reminder.retry_count,
                    "terminal": bool(terminal),
                },
                error_message=error,
            )
        )


def get_system_log_service(db_session: Session) -> SystemLogService:
    return SystemLogService(db_session)
