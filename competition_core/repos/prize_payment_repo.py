"""
Prize payment repository
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.models.competition import Prize
from competition_core.models.enums import PaymentStatus
from competition_core.models.prize_payment import PrizePayment


async def get_payment(session: AsyncSession, payment_id: UUID, for_update: bool = False) -> Optional[PrizePayment]:
    """
    Get payment by ID.

    Args:
        session: Database session
        payment_id: Payment UUID
        for_update: Lock the row (ignored by SQLite)

    Returns:
        PrizePayment instance or None if not found
    """
    query = select(PrizePayment).where(PrizePayment.id == payment_id)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_live_payment(
    session: AsyncSession,
    prize_id: UUID,
    participant_id: UUID
) -> Optional[PrizePayment]:
    """The PENDING or COMPLETED payment for a prize and winner, if any."""
    result = await session.execute(
        select(PrizePayment).where(
            PrizePayment.prize_id == prize_id,
            PrizePayment.participant_id == participant_id,
            PrizePayment.status != PaymentStatus.FAILED
        )
    )
    return result.scalars().first()


async def has_completed_payment(session: AsyncSession, prize_id: UUID) -> bool:
    result = await session.execute(
        select(PrizePayment.id).where(
            PrizePayment.prize_id == prize_id,
            PrizePayment.status == PaymentStatus.COMPLETED
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_payments(
    session: AsyncSession,
    competition_id: UUID,
    status: Optional[PaymentStatus] = None,
    participant_id: Optional[UUID] = None
) -> List[PrizePayment]:
    """
    Get payments of a competition, newest first.

    Failed attempts stay in the list so the payout history is auditable.
    """
    query = (
        select(PrizePayment)
        .join(Prize, Prize.id == PrizePayment.prize_id)
        .where(Prize.competition_id == competition_id)
    )
    if status:
        query = query.where(PrizePayment.status == status)
    if participant_id:
        query = query.where(PrizePayment.participant_id == participant_id)

    query = query.order_by(desc(PrizePayment.created_at))
    result = await session.execute(query)
    return list(result.scalars().all())
