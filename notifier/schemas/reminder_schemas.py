from datetime import datetime
from typing import List, Optional

from pydantic import Field

from notifier.schemas.camel_base_model import CamelCaseBaseModel as BaseModel


class ReminderError(BaseModel):
    """Per-reminder failure descriptor surfaced to the cron trigger."""

    reminder_id: str
    error: str


class ReminderOutcome(BaseModel):
    """What one processing attempt did to a reminder row."""

    reminder_id: str
    type: str
    status: str = Field(
        ...,
        description="sent | canceled | retry_scheduled | failed | unhandled | error",
    )


class ReminderRunResult(BaseModel):
    """Aggregate summary of one processor invocation."""

    processed: int = 0
    sent: int = 0
    failed: int = 0
    canceled: int = 0
    skipped: int = 0
    errors: List[ReminderError] = Field(default_factory=list)
    outcomes: List[ReminderOutcome] = Field(default_factory=list)

    def record(self, reminder_id: str, reminder_type: str, status: str) -> None:
        self.outcomes.append(
            ReminderOutcome(reminder_id=reminder_id, type=reminder_type, status=status)
        )

    def add_error(self, reminder_id: str, error: str) -> None:
        self.errors.append(ReminderError(reminder_id=reminder_id, error=error))


class ProcessRemindersRequest(BaseModel):
    """Body of the reminder job trigger."""

    effective_now: Optional[datetime] = Field(
        default=None,
        description="Clock override for deterministic E2E runs; ignored in production",
    )


class ScanMissedRemindersResult(BaseModel):
    scheduled: int
