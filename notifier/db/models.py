from typing import List, Optional
from datetime import datetime
import uuid
import enum

from sqlalchemy import (
    String,
    Boolean,
    Integer,
    Text,
    ForeignKey,
    Enum,
    Index,
    JSON,
    func,
    UniqueConstraint,
    DateTime,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid_str() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


# Enums
class ReminderType(str, enum.Enum):
    # Request / invoice
    REQUEST_UNOPENED_24H = "request_unopened_24h"
    REQUEST_UNOPENED_72H = "request_unopened_72h"
    REQUEST_UNPAID_3D = "request_unpaid_3d"
    REQUEST_EXPIRING = "request_expiring"
    INVOICE_DUE_7D = "invoice_due_7d"
    INVOICE_DUE_3D = "invoice_due_3d"
    INVOICE_DUE_1D = "invoice_due_1d"
    INVOICE_OVERDUE_1D = "invoice_overdue_1d"
    INVOICE_OVERDUE_7D = "invoice_overdue_7d"
    # Payouts and payroll
    PAYOUT_COMPLETED = "payout_completed"
    PAYOUT_FAILED = "payout_failed"
    PAYROLL_READY = "payroll_ready"
    # Onboarding / engagement
    ONBOARDING_INCOMPLETE_24H = "onboarding_incomplete_24h"
    ONBOARDING_INCOMPLETE_72H = "onboarding_incomplete_72h"
    BANK_SETUP_INCOMPLETE = "bank_setup_incomplete"
    NO_SUBSCRIBERS_7D = "no_subscribers_7d"
    # Subscription lifecycle
    SUBSCRIPTION_RENEWAL_7D = "subscription_renewal_7d"
    SUBSCRIPTION_RENEWAL_3D = "subscription_renewal_3d"
    SUBSCRIPTION_RENEWAL_1D = "subscription_renewal_1d"
    SUBSCRIPTION_PAYMENT_FAILED = "subscription_payment_failed"
    SUBSCRIPTION_PAST_DUE = "subscription_past_due"


class ReminderChannel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


class ReminderStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    CANCELED = "canceled"
    FAILED = "failed"


class RequestStatus(enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    PAID = "paid"
    EXPIRED = "expired"


class SendMethod(enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    LINK = "link"


class SubscriptionInterval(enum.Enum):
    MONTH = "month"
    YEAR = "year"
    ONE_TIME = "one_time"


class SubscriptionStatus(enum.Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class PaymentType(enum.Enum):
    RECURRING = "recurring"
    ONE_TIME = "one_time"
    PAYOUT = "payout"


class PaymentStatus(enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SystemLogType(enum.Enum):
    REMINDER_SENT = "reminder_sent"
    REMINDER_FAILED = "reminder_failed"


# Base model with common audit fields
class AuditMixin:
    """Mixin for common audit fields"""

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.current_timestamp(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp(),
    )


class Reminder(Base, AuditMixin):
    """
    A scheduled notification tied to one business entity and one kind.

    ``entity_type``/``entity_id`` form an opaque polymorphic reference that is
    validated lazily by the handler for ``type``; no foreign key is enforced.
    Rows are never deleted.
    """

    __tablename__ = "reminders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    # Stored as the ReminderType code; unknown codes must survive a round trip
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    channel: Mapped[ReminderChannel] = mapped_column(
        Enum(ReminderChannel), default=ReminderChannel.EMAIL, nullable=False
    )
    status: Mapped[ReminderStatus] = mapped_column(
        Enum(ReminderStatus), default=ReminderStatus.SCHEDULED, nullable=False
    )
    scheduled_for: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "entity_id", "type", name="uq_reminders_dedup_key"
        ),
        Index("idx_reminders_status_scheduled_for", "status", "scheduled_for"),
        Index("idx_reminders_user_id", "user_id"),
    )

    def __repr__(self):
        return (
            f"<Reminder(id={self.id}, type={self.type}, "
            f"entity={self.entity_type}:{self.entity_id}, status={self.status})>"
        )


class SystemLog(Base, AuditMixin):
    __tablename__ = "system_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    type: Mapped[SystemLogType] = mapped_column(Enum(SystemLogType), nullable=False)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(36))
    entity_type: Mapped[Optional[str]] = mapped_column(String(50))
    entity_id: Mapped[Optional[str]] = mapped_column(String(100))
    message: Mapped[str] = mapped_column(Text, nullable=False)
    log_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (Index("idx_system_logs_type_created", "type", "created_at"),)


# Entity stores (read-only from the reminder engine's point of view)
class User(Base, AuditMixin):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)

    # Relationships
    profile: Mapped[Optional["Profile"]] = relationship(
        "Profile", back_populates="user", uselist=False
    )
    payment_requests: Mapped[List["PaymentRequest"]] = relationship(
        "PaymentRequest", back_populates="creator"
    )


class Profile(Base, AuditMixin):
    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), unique=True, nullable=False
    )
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    country_code: Mapped[Optional[str]] = mapped_column(String(2))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    payment_provider: Mapped[Optional[str]] = mapped_column(String(20))
    paystack_account_number: Mapped[Optional[str]] = mapped_column(String(64))
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(64))
    share_url: Mapped[Optional[str]] = mapped_column(String(500))
    # {"email": bool, "push": bool, "paymentAlerts": bool, "subscriberAlerts": bool}
    notification_prefs: Mapped[Optional[dict]] = mapped_column(JSON)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="profile")


class PaymentRequest(Base, AuditMixin):
    __tablename__ = "requests"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    creator_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    recipient_email: Mapped[Optional[str]] = mapped_column(String(320))
    recipient_phone: Mapped[Optional[str]] = mapped_column(String(32))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus), default=RequestStatus.DRAFT, nullable=False
    )
    send_method: Mapped[SendMethod] = mapped_column(
        Enum(SendMethod), default=SendMethod.EMAIL, nullable=False
    )
    public_token: Mapped[Optional[str]] = mapped_column(String(128))
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    creator: Mapped["User"] = relationship("User", back_populates="payment_requests")

    __table_args__ = (Index("idx_requests_status", "status"),)


class Subscription(Base, AuditMixin):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    creator_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    subscriber_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    interval: Mapped[SubscriptionInterval] = mapped_column(
        Enum(SubscriptionInterval), default=SubscriptionInterval.MONTH, nullable=False
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus), default=SubscriptionStatus.ACTIVE, nullable=False
    )
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    current_period_end: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    creator: Mapped["User"] = relationship("User", foreign_keys=[creator_id])
    subscriber: Mapped["User"] = relationship("User", foreign_keys=[subscriber_id])

    __table_args__ = (Index("idx_subscriptions_creator", "creator_id"),)


class Payment(Base, AuditMixin):
    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    creator_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    type: Mapped[PaymentType] = mapped_column(Enum(PaymentType), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    net_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)


class PayrollPeriod(Base, AuditMixin):
    __tablename__ = "payroll_periods"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False
    )
    period_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    net_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)

    # Relationships
    user: Mapped["User"] = relationship("User")
