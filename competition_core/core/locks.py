"""
Redis advisory locks and cancellation flags for reconciliation runs
"""

import logging
import uuid
from typing import Optional
from uuid import UUID

from competition_core.core.config import settings
from competition_core.core.errors import ReconciliationInProgress

logger = logging.getLogger(__name__)


def lock_key(competition_id: UUID) -> str:
    return f"reconcile:lock:{competition_id}"


def cancel_key(competition_id: UUID) -> str:
    return f"reconcile:cancel:{competition_id}"


class CompetitionLock:
    """
    Non-blocking advisory lock keyed by competition id.

    Acquired with SET NX and a TTL so a crashed worker cannot hold it forever.
    Release only deletes the key when it still carries our token.
    """

    def __init__(self, redis_client, competition_id: UUID, ttl: Optional[int] = None):
        self.redis = redis_client
        self.competition_id = competition_id
        self.key = lock_key(competition_id)
        self.ttl = ttl or settings.reconcile_lock_ttl_seconds
        self.token = uuid.uuid4().hex
        self.acquired = False

    async def acquire(self) -> None:
        ok = await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        if not ok:
            logger.warning(f"Reconciliation lock busy for competition {self.competition_id}")
            raise ReconciliationInProgress(self.competition_id, retry_after=self.ttl)
        self.acquired = True
        logger.debug(f"Acquired reconciliation lock {self.key}")

    async def release(self) -> None:
        if not self.acquired:
            return
        current = await self.redis.get(self.key)
        if current == self.token:
            await self.redis.delete(self.key)
        else:
            logger.warning(f"Reconciliation lock {self.key} expired before release")
        self.acquired = False

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.release()
        return False


async def request_cancel(redis_client, competition_id: UUID) -> None:
    """Ask a running reconciliation to stop at its next checkpoint."""
    await redis_client.set(
        cancel_key(competition_id), "1", ex=settings.reconcile_cancel_ttl_seconds
    )
    logger.info(f"Cancellation requested for reconciliation of competition {competition_id}")


async def is_cancel_requested(redis_client, competition_id: UUID) -> bool:
    return bool(await redis_client.exists(cancel_key(competition_id)))


async def clear_cancel(redis_client, competition_id: UUID) -> None:
    await redis_client.delete(cancel_key(competition_id))
