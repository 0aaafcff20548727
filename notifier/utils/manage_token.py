from datetime import datetime, timedelta
from typing import Optional

import jwt

from notifier.config.settings import settings
from notifier.utils.datetime_utils import naive_utc_now

MANAGE_TOKEN_ALGORITHM = "HS256"
MANAGE_TOKEN_TTL_DAYS = 30


def create_manage_token(subscription_id: str, now: Optional[datetime] = None) -> str:
    """Signed token letting a subscriber manage one subscription without login"""
    issued_at = now or naive_utc_now()
    payload = {
        "sub": subscription_id,
        "purpose": "subscription_manage",
        "iat": issued_at,
        "exp": issued_at + timedelta(days=MANAGE_TOKEN_TTL_DAYS),
    }
    return jwt.encode(
        payload, settings.MANAGE_TOKEN_SECRET, algorithm=MANAGE_TOKEN_ALGORITHM
    )


def generate_manage_url(subscription_id: str, now: Optional[datetime] = None) -> str:
    token = create_manage_token(subscription_id, now)
    return f"{settings.PUBLIC_PAGE_URL.rstrip('/')}/subscription/manage?token={token}"

