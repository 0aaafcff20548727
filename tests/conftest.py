import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from notifier.db.models import (
    Base,
    PaymentRequest,
    Profile,
    Reminder,
    ReminderChannel,
    ReminderStatus,
    RequestStatus,
    SendMethod,
    Subscription,
    SubscriptionInterval,
    SubscriptionStatus,
    User,
)
from notifier.services.lock_service import RedisLeaseService
from notifier.services.reminders.core import ReminderSchedulingService
from notifier.services.senders import SendOutcome
from notifier.utils.errors import NotificationDeliveryError

# Fixed clock for deterministic scheduling
NOW = datetime(2025, 3, 10, 12, 0, 0)


class RecordingSender:
    """Notification sender double that records deliveries instead of sending.

    ``fail_times`` fails that many calls before succeeding, ``fail_for`` fails
    every send to the given recipients, and ``always_fail`` fails everything.
    """

    def __init__(
        self,
        fail_times: int = 0,
        fail_for: Optional[set] = None,
        always_fail: bool = False,
    ):
        self.fail_times = fail_times
        self.fail_for = fail_for or set()
        self.always_fail = always_fail
        self.calls = 0
        self.sent: List[Dict[str, Any]] = []

    async def send(self, channel, recipient, template_type, data) -> SendOutcome:
        self.calls += 1
        # Yield to the loop so concurrent processors interleave here
        await asyncio.sleep(0)

        if self.always_fail or recipient in self.fail_for or self.calls <= self.fail_times:
            raise NotificationDeliveryError(f"provider unavailable for {recipient}")

        channel = ReminderChannel(channel)
        self.sent.append(
            {
                "channel": channel,
                "recipient": recipient,
                "template_type": template_type,
                "data": data,
            }
        )
        return SendOutcome(
            channel=channel,
            recipient=recipient,
            template_type=template_type,
            provider="recording",
            message_id=str(uuid.uuid4()),
        )


@pytest.fixture
def engine():
    """In-memory database shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(
        server=fakeredis.FakeServer(), decode_responses=True
    )
    yield client
    await client.aclose()


@pytest.fixture
def lease_service(redis_client) -> RedisLeaseService:
    return RedisLeaseService(redis_client)


@pytest.fixture
def scheduling(db_session, lease_service) -> ReminderSchedulingService:
    return ReminderSchedulingService(db_session, lease_service)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


# Test data factories
@pytest.fixture
def make_user(db_session):
    def _make_user(
        email: Optional[str] = None,
        created_at: Optional[datetime] = None,
        with_profile: bool = False,
        **profile_fields,
    ) -> User:
        user = User(
            email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
            created_at=created_at or NOW - timedelta(days=1),
        )
        db_session.add(user)
        db_session.flush()

        if with_profile:
            profile_defaults = {
                "display_name": "Ada Creator",
                "username": f"creator{uuid.uuid4().hex[:8]}",
                "currency": "USD",
            }
            profile_defaults.update(profile_fields)
            db_session.add(Profile(user_id=user.id, **profile_defaults))

        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_request(db_session, make_user):
    def _make_request(creator: Optional[User] = None, **fields) -> PaymentRequest:
        creator = creator or make_user(with_profile=True)
        defaults = {
            "creator_id": creator.id,
            "recipient_email": "client@example.com",
            "amount_cents": 25_000,
            "currency": "USD",
            "status": RequestStatus.SENT,
            "send_method": SendMethod.EMAIL,
            "public_token": uuid.uuid4().hex,
            "token_expires_at": NOW + timedelta(days=30),
        }
        defaults.update(fields)
        request = PaymentRequest(**defaults)
        db_session.add(request)
        db_session.commit()
        return request

    return _make_request


@pytest.fixture
def make_subscription(db_session, make_user):
    def _make_subscription(**fields) -> Subscription:
        if "creator_id" not in fields:
            fields["creator_id"] = make_user(with_profile=True).id
        if "subscriber_id" not in fields:
            fields["subscriber_id"] = make_user(
                email=f"fan-{uuid.uuid4().hex[:8]}@example.com"
            ).id
        defaults = {
            "amount": 1_000,
            "currency": "USD",
            "interval": SubscriptionInterval.MONTH,
            "status": SubscriptionStatus.ACTIVE,
            "cancel_at_period_end": False,
            "current_period_end": NOW + timedelta(days=20),
        }
        defaults.update(fields)
        subscription = Subscription(**defaults)
        db_session.add(subscription)
        db_session.commit()
        return subscription

    return _make_subscription


@pytest.fixture
def make_reminder(db_session):
    def _make_reminder(**fields) -> Reminder:
        defaults = {
            "user_id": str(uuid.uuid4()),
            "entity_type": "user",
            "entity_id": str(uuid.uuid4()),
            "type": "onboarding_incomplete_24h",
            "channel": ReminderChannel.EMAIL,
            "status": ReminderStatus.SCHEDULED,
            "scheduled_for": NOW - timedelta(minutes=5),
            "retry_count": 0,
        }
        defaults.update(fields)
        reminder = Reminder(**defaults)
        db_session.add(reminder)
        db_session.commit()
        return reminder

    return _make_reminder


def get_reminder(session: Session, reminder_id: str) -> Reminder:
    """Fresh read bypassing the identity map"""
    session.expire_all()
    return session.get(Reminder, reminder_id)
