"""
Participant model and its authoritative post history
"""

import uuid

from sqlalchemy import Column, String, DateTime, Boolean, Text, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID

from competition_core.db.base import Base
from competition_core.models.competition import _utcnow


class Participant(Base):
    """A user's membership in one competition"""
    __tablename__ = "competition_participants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    competition_id = Column(UUID(as_uuid=True), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    is_disqualified = Column(Boolean, nullable=False, default=False)
    disqualify_reason = Column(Text, nullable=True)
    disqualified_at = Column(DateTime(timezone=True), nullable=True)
    current_round_id = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="uq_participant_competition_user"),
    )

    def __repr__(self):
        return f"<Participant(id={self.id}, user_id={self.user_id}, disqualified={self.is_disqualified})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "competition_id": str(self.competition_id),
            "user_id": str(self.user_id),
            "is_disqualified": self.is_disqualified,
            "disqualify_reason": self.disqualify_reason,
            "current_round_id": str(self.current_round_id) if self.current_round_id else None,
        }


class ParticipantPost(Base):
    """Every post a participant ever submitted; source of truth for rebuilds"""
    __tablename__ = "participant_posts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participant_id = Column(
        UUID(as_uuid=True), ForeignKey("competition_participants.id", ondelete="CASCADE"), nullable=False
    )
    post_id = Column(UUID(as_uuid=True), nullable=False)
    source = Column(String(32), nullable=False, default="submission")
    submitted_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        UniqueConstraint("participant_id", "post_id", name="uq_participant_post"),
    )

    def __repr__(self):
        return f"<ParticipantPost(participant_id={self.participant_id}, post_id={self.post_id})>"
