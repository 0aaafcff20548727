import hmac
from typing import Optional

from fastapi import Header, HTTPException, status

from notifier.config.settings import settings
from notifier.utils.errors import AuthenticationError
from notifier.utils.logging import get_logger

logger = get_logger()

JOBS_API_KEY_HEADER = "X-Jobs-Api-Key"


async def require_jobs_api_key(
    x_jobs_api_key: Optional[str] = Header(default=None, alias=JOBS_API_KEY_HEADER),
) -> None:
    """
    Guard for cron trigger endpoints. The key is only accepted as a header so
    it never ends up in access logs.
    """
    if not settings.JOBS_API_KEY:
        logger.warning("JOBS_API_KEY not configured, jobs endpoints disabled")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Jobs endpoint not configured",
        )

    if not x_jobs_api_key or not hmac.compare_digest(
        x_jobs_api_key, settings.JOBS_API_KEY
    ):
        raise AuthenticationError("Invalid jobs API key", error_code="INVALID_JOBS_KEY")
