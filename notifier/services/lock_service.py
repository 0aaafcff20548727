import uuid
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from notifier.config.settings import settings
from notifier.utils.errors import LeaseServiceError
from notifier.utils.logging import get_logger

logger = get_logger()

LOCK_PREFIX = "lock:"


class RedisLeaseService:
    """
    Time-bounded mutual exclusion on top of Redis.

    A lease is a ``lock:<key>`` entry holding a random token. Acquisition is a
    single ``SET NX PX`` so it fails while another holder's entry is alive, and
    the TTL lets a crashed holder's lease expire on its own.
    """

    def __init__(self, redis_client: Redis):
        self.redis = redis_client

    @staticmethod
    def _lock_key(key: str) -> str:
        return f"{LOCK_PREFIX}{key}"

    async def acquire(self, key: str, ttl_ms: int) -> Optional[str]:
        """
        Try to take the lease for ``key``.

        Args:
            key: Lease name without the ``lock:`` prefix
            ttl_ms: Auto-expiry in milliseconds

        Returns:
            The holder token, or None when the lease is already held
        """
        token = str(uuid.uuid4())
        try:
            acquired = await self.redis.set(
                self._lock_key(key), token, nx=True, px=ttl_ms
            )
        except RedisError as e:
            raise LeaseServiceError(
                f"Failed to acquire lease {key}: {e}",
                error_code="LEASE_ACQUIRE_FAILED",
            ) from e

        return token if acquired else None

    async def release(self, key: str, token: str) -> bool:
        """
        Release the lease only if ``token`` still owns it.

        Returns:
            True when the entry was deleted, False when it had expired or
            changed hands in the meantime
        """
        lock_key = self._lock_key(key)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(lock_key)
                    current = await pipe.get(lock_key)
                    if isinstance(current, bytes):
                        current = current.decode()
                    if current != token:
                        await pipe.unwatch()
                        return False

                    pipe.multi()
                    pipe.delete(lock_key)
                    await pipe.execute()
                    return True
                except WatchError:
                    # Entry changed between WATCH and EXEC: no longer ours
                    return False
        except RedisError as e:
            logger.warning(f"Failed to release lease {key}: {e}")
            return False

    async def close(self) -> None:
        await self.redis.aclose()


def get_lease_service() -> RedisLeaseService:
    """Lease service bound to the configured Redis instance"""
    return RedisLeaseService(Redis.from_url(settings.REDIS_URL, decode_responses=True))


async def lease_service_dependency():
    """FastAPI dependency: a lease service closed after the request"""
    lease_service = get_lease_service()
    try:
        yield lease_service
    finally:
        await lease_service.close()
