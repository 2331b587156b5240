"""
Celery tasks for round qualification and entry repair
"""

import asyncio
import logging
from typing import Dict
from uuid import UUID

from competition_core.celery_app import celery
from competition_core.core.errors import ReconciliationInProgress
from competition_core.core.redis_client import close_redis_client, get_redis_client
from competition_core.db.session import AsyncSessionLocal, async_engine
from competition_core.services.qualification import process_ended_rounds
from competition_core.services.reconciliation import fix_all_entries

logger = logging.getLogger(__name__)


async def _process_round_qualifications() -> Dict:
    try:
        async with AsyncSessionLocal() as session:
            return await process_ended_rounds(session)
    finally:
        # Pooled connections are bound to this event loop
        await async_engine.dispose()


async def _fix_competition_entries(competition_id: UUID) -> Dict:
    try:
        async with AsyncSessionLocal() as session:
            redis_client = await get_redis_client()
            result = await fix_all_entries(
                session, competition_id, redis=redis_client, actor="celery:fix_competition_entries"
            )
            result.raise_for_failures()
            return result.to_dict()
    finally:
        # Connections are bound to this event loop
        await close_redis_client()
        await async_engine.dispose()


@celery.task
def process_round_qualifications():
    """Evaluate every ended round of running competitions (beat, every few minutes)."""
    logger.info("Processing round qualifications")
    summary = asyncio.run(_process_round_qualifications())
    logger.info(
        f"Qualification run finished: {len(summary['rounds_evaluated'])} rounds evaluated, "
        f"{len(summary['errors'])} errors"
    )
    return summary


@celery.task(bind=True, max_retries=5, default_retry_delay=60)
def fix_competition_entries(self, competition_id: str):
    """
    Full entry repair for one competition.

    Retries later when another repair holds the lock; a partial failure is
    raised so it shows up as a failed task with the per-participant errors.
    """
    try:
        return asyncio.run(_fix_competition_entries(UUID(competition_id)))
    except ReconciliationInProgress as e:
        logger.info(f"Repair of competition {competition_id} already running, retrying")
        raise self.retry(exc=e, countdown=e.retry_after)
