"""
Audit log repository for admin and repair action tracking
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc

from competition_core.models.audit_log import AuditLog


def add_audit_log(
    session: AsyncSession,
    action: str,
    resource_type: str,
    resource_id: UUID,
    details: dict,
    actor: Optional[str] = None
) -> AuditLog:
    """
    Stage an audit log entry in the caller's transaction.

    Args:
        session: Database session
        action: Action performed
        resource_type: Type of resource affected
        resource_id: ID of resource affected
        details: Additional details as JSON
        actor: Who performed the action (admin id, job name)

    Returns:
        The pending AuditLog instance
    """
    audit_log = AuditLog(
        actor=actor,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id),
        details=details
    )
    session.add(audit_log)
    return audit_log


async def get_audit_logs(
    session: AsyncSession,
    limit: int = 50,
    offset: int = 0,
    action: Optional[str] = None,
    resource_id: Optional[UUID] = None
) -> List[AuditLog]:
    """
    Get audit logs, newest first.

    Args:
        session: Database session
        limit: Maximum number of logs to return
        offset: Number of logs to skip
        action: Filter by action type
        resource_id: Filter by affected resource

    Returns:
        List of AuditLog instances
    """
    query = select(AuditLog).order_by(desc(AuditLog.created_at))

    if action:
        query = query.where(AuditLog.action == action)

    if resource_id:
        query = query.where(AuditLog.resource_id == str(resource_id))

    query = query.limit(limit).offset(offset)

    result = await session.execute(query)
    return list(result.scalars().all())
