"""
Shared FastAPI dependencies
"""

from typing import Optional

from fastapi import Header

from competition_core.core.redis_client import get_redis_client


async def get_redis():
    """Redis client used for reconciliation locks; overridden in tests"""
    return await get_redis_client()


async def get_actor(x_actor: Optional[str] = Header(None)) -> Optional[str]:
    """
    Identity of the caller for audit logs.

    Authentication happens upstream; the gateway forwards the admin id in the
    X-Actor header.
    """
    return x_actor
