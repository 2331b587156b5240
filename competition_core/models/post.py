"""
Read-side models for posts and likes owned by the content service
"""

import uuid

from sqlalchemy import Column, DateTime, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from competition_core.db.base import Base
from competition_core.models.competition import _utcnow


class Post(Base):
    """Post row as replicated from the content service"""
    __tablename__ = "posts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<Post(id={self.id}, user_id={self.user_id})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class PostLike(Base):
    """A like on a post; created_at decides which round window it counts for"""
    __tablename__ = "post_likes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    post_id = Column(UUID(as_uuid=True), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_post_like_user"),
        Index("idx_post_likes_post_created", "post_id", "created_at"),
    )
