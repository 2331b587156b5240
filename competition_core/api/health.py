"""
Health check endpoints
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.api.deps import get_redis
from competition_core.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(
    session: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis)
):
    """
    Health check endpoint.

    Always answers 200; ``status`` drops to ``degraded`` when the database or
    Redis cannot be reached so the orchestrator can decide what to do.
    """
    checks = {}

    try:
        await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        checks["database"] = "error"

    try:
        await redis_client.ping()
        checks["redis"] = "ok"
    except Exception as e:
        logger.error(f"Redis health check failed: {str(e)}")
        checks["redis"] = "error"

    status = "ok" if all(v == "ok" for v in checks.values()) else "degraded"
    return {"status": status, **checks}
