"""
Audit log model for admin and repair actions
"""

import uuid

from sqlalchemy import Column, String, DateTime, JSON, Index
from sqlalchemy.dialects.postgresql import UUID

from competition_core.db.base import Base
from competition_core.models.competition import _utcnow


class AuditLog(Base):
    """Audit log row"""
    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor = Column(String(128), nullable=True)
    action = Column(String(128), nullable=False)
    resource_type = Column(String(64), nullable=True)
    resource_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_audit_logs_action_created", "action", "created_at"),
    )

    def __repr__(self):
        return f"<AuditLog(id={self.id}, actor={self.actor}, action={self.action})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "actor": self.actor,
            "action": self.action,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
