"""
Prize payment model - append-only payout attempts
"""

import uuid

import sqlalchemy as sa
from sqlalchemy import Column, String, Numeric, DateTime, Text, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID

from competition_core.db.base import Base
from competition_core.models.competition import _utcnow
from competition_core.models.enums import PaymentStatus


class PrizePayment(Base):
    """One payout attempt of a prize to a winning participant"""
    __tablename__ = "prize_payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    prize_id = Column(UUID(as_uuid=True), ForeignKey("competition_prizes.id"), nullable=False)
    participant_id = Column(UUID(as_uuid=True), ForeignKey("competition_participants.id"), nullable=False)
    amount = Column(Numeric(30, 8), nullable=False)
    status = Column(sa.Enum(PaymentStatus, name="payment_status"), nullable=False, default=PaymentStatus.PENDING)
    transaction_id = Column(String(128), nullable=True)
    notes = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # At most one live (non-failed) payment per prize and winner
    __table_args__ = (
        Index(
            "uq_prize_payment_live",
            "prize_id",
            "participant_id",
            unique=True,
            postgresql_where=sa.text("status != 'FAILED'"),
            sqlite_where=sa.text("status != 'FAILED'"),
        ),
    )

    def __repr__(self):
        return f"<PrizePayment(id={self.id}, prize_id={self.prize_id}, status={self.status})>"

    def to_dict(self):
        return {
            "id": str(self.id),
            "prize_id": str(self.prize_id),
            "participant_id": str(self.participant_id),
            "amount": str(self.amount),
            "status": self.status.value if self.status else None,
            "transaction_id": self.transaction_id,
            "notes": self.notes,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
