"""
Round entry model - the (participant, round, post) join
"""

import uuid

from sqlalchemy import Column, Integer, DateTime, Boolean, ForeignKey, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID

from competition_core.db.base import Base
from competition_core.models.competition import _utcnow


class RoundEntry(Base):
    """A participant's post entered into one round"""
    __tablename__ = "competition_round_entries"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    participant_id = Column(
        UUID(as_uuid=True), ForeignKey("competition_participants.id", ondelete="CASCADE"), nullable=False
    )
    # No FK on round_id: entries must survive round edits until a sync remaps them
    round_id = Column(UUID(as_uuid=True), nullable=False)
    # Posts live in the content service and may disappear under us
    post_id = Column(UUID(as_uuid=True), nullable=False)
    qualified_for_next_round = Column(Boolean, nullable=True)
    competition_likes = Column(Integer, nullable=True)
    visible_in_competition_feed = Column(Boolean, nullable=False, default=True)
    visible_in_normal_feed = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("participant_id", "round_id", name="uq_entry_participant_round"),
        UniqueConstraint("round_id", "post_id", name="uq_entry_round_post"),
        Index("idx_entries_post", "post_id"),
    )

    def __repr__(self):
        return f"<RoundEntry(id={self.id}, participant_id={self.participant_id}, round_id={self.round_id}, post_id={self.post_id})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "participant_id": str(self.participant_id),
            "round_id": str(self.round_id),
            "post_id": str(self.post_id),
            "qualified_for_next_round": self.qualified_for_next_round,
            "competition_likes": self.competition_likes,
            "visible_in_competition_feed": self.visible_in_competition_feed,
            "visible_in_normal_feed": self.visible_in_normal_feed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
