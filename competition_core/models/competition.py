"""
Competition, round and prize models
"""

from datetime import datetime, timezone
import uuid

import sqlalchemy as sa
from sqlalchemy import Column, String, Numeric, DateTime, Integer, Boolean, Text, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID

from competition_core.db.base import Base
from competition_core.models.enums import PrizePosition


def _utcnow():
    return datetime.now(timezone.utc)


class Competition(Base):
    """Competition aggregate - owns rounds and prizes"""
    __tablename__ = "competitions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    show_stickers = Column(Boolean, nullable=False, default=False)
    completion_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Competition(id={self.id}, slug={self.slug}, is_active={self.is_active})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "title": self.title,
            "slug": self.slug,
            "is_active": self.is_active,
            "show_stickers": self.show_stickers,
            "completion_reason": self.completion_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Round(Base):
    """
    Time-boxed round of a competition.

    Round edits recreate rows under the same name; the most recently created
    row per name is the active one.
    """
    __tablename__ = "competition_rounds"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    competition_id = Column(UUID(as_uuid=True), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(128), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    likes_to_pass = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        sa.CheckConstraint("end_date > start_date", name="ck_round_window"),
        Index("idx_rounds_competition_start", "competition_id", "start_date"),
    )

    def __repr__(self):
        return f"<Round(id={self.id}, name={self.name}, start={self.start_date}, end={self.end_date})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "competition_id": str(self.competition_id),
            "name": self.name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "likes_to_pass": self.likes_to_pass,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Prize(Base):
    """Prize offered by a competition"""
    __tablename__ = "competition_prizes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    competition_id = Column(UUID(as_uuid=True), ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    position = Column(sa.Enum(PrizePosition, name="prize_position"), nullable=False)
    amount = Column(Numeric(30, 8), nullable=False)
    currency = Column(String(16), nullable=False, default="INR")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self):
        return f"<Prize(id={self.id}, position={self.position}, amount={self.amount})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "competition_id": str(self.competition_id),
            "position": self.position.value if self.position else None,
            "amount": str(self.amount),
            "currency": self.currency,
        }
