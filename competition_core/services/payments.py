"""
Prize payment state machine.

PENDING -> COMPLETED and PENDING -> FAILED are the only moves. COMPLETED is
terminal; a FAILED attempt is never resurrected, a retry is a new PENDING row.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.core.errors import (
    AlreadyCompleted,
    CompetitionNotConcluded,
    DuplicatePayment,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from competition_core.core.metrics import PAYMENT_TRANSITIONS
from competition_core.models.competition import Competition, Prize
from competition_core.models.enums import PaymentStatus, RoundPhase
from competition_core.models.prize_payment import PrizePayment
from competition_core.repos import prize_payment_repo
from competition_core.repos.audit_log_repo import add_audit_log
from competition_core.repos.competition_repo import (
    get_competition,
    get_participant,
    get_prize,
    list_rounds,
)
from competition_core.services.clock import phase_of, utcnow

logger = logging.getLogger(__name__)


async def is_concluded(session: AsyncSession, competition: Competition, now: Optional[datetime] = None) -> bool:
    """A competition is over once it has a completion reason or all live rounds have ended."""
    if competition.completion_reason:
        return True
    rounds = await list_rounds(session, competition.id, active_only=True)
    if not rounds:
        return False
    now = now or utcnow()
    return all(phase_of(r, now) is RoundPhase.ENDED for r in rounds)


async def create_payment(
    session: AsyncSession,
    prize_id: UUID,
    participant_id: UUID,
    amount: Optional[Decimal] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
    actor: Optional[str] = None
) -> PrizePayment:
    """
    Open a PENDING payment of a prize to a winning participant.

    Args:
        session: Database session
        prize_id: Prize UUID
        participant_id: Winning participant UUID
        amount: Payout amount (defaults to the prize amount)
        notes: Free-form admin notes
        now: Evaluation instant for the conclusion check
        actor: Admin who opened the payment

    Returns:
        Created PrizePayment instance
    """
    prize = await get_prize(session, prize_id)
    participant = await get_participant(session, participant_id)
    if participant.competition_id != prize.competition_id:
        raise NotFound("Participant", participant_id)

    competition = await get_competition(session, prize.competition_id)
    if not await is_concluded(session, competition, now):
        raise CompetitionNotConcluded(
            "Prizes can only be paid after the competition has concluded",
            {"competition_id": str(competition.id)},
        )

    amount = prize.amount if amount is None else Decimal(str(amount))
    if amount < 0:
        raise ValidationError("Payment amount must be at least 0", {"amount": str(amount)})

    existing = await prize_payment_repo.get_live_payment(session, prize_id, participant_id)
    if existing:
        raise DuplicatePayment(
            f"Prize {prize_id} already has a {existing.status.value} payment for participant {participant_id}",
            {"payment_id": str(existing.id), "status": existing.status.value},
        )

    payment = PrizePayment(
        prize_id=prize_id,
        participant_id=participant_id,
        amount=amount,
        status=PaymentStatus.PENDING,
        notes=notes,
    )
    try:
        async with session.begin_nested():
            session.add(payment)
    except IntegrityError:
        await session.rollback()
        raise DuplicatePayment(
            f"Prize {prize_id} already has a live payment for participant {participant_id}",
            {"prize_id": str(prize_id), "participant_id": str(participant_id)},
        )

    add_audit_log(
        session,
        action="prize_payment_created",
        resource_type="prize_payment",
        resource_id=payment.id,
        details={
            "prize_id": str(prize_id),
            "participant_id": str(participant_id),
            "amount": str(amount),
            "position": prize.position.value,
        },
        actor=actor,
    )
    await session.commit()
    PAYMENT_TRANSITIONS.labels(status=PaymentStatus.PENDING.value).inc()
    logger.info(f"Created payment {payment.id} of {amount} {prize.currency} for participant {participant_id}")
    return payment


async def _load_for_transition(session: AsyncSession, payment_id: UUID) -> PrizePayment:
    payment = await prize_payment_repo.get_payment(session, payment_id, for_update=True)
    if not payment:
        raise NotFound("Payment", payment_id)
    return payment


async def complete_payment(
    session: AsyncSession,
    payment_id: UUID,
    transaction_id: str,
    now: Optional[datetime] = None,
    actor: Optional[str] = None
) -> PrizePayment:
    """
    Mark a PENDING payment as paid.

    Raises:
        AlreadyCompleted: payment is already COMPLETED
        InvalidTransition: payment has FAILED
    """
    if not transaction_id or not transaction_id.strip():
        raise ValidationError("transaction_id is required to complete a payment")

    payment = await _load_for_transition(session, payment_id)
    if payment.status == PaymentStatus.COMPLETED:
        raise AlreadyCompleted(payment_id)
    if payment.status != PaymentStatus.PENDING:
        raise InvalidTransition(payment.status.value, PaymentStatus.COMPLETED.value)

    payment.status = PaymentStatus.COMPLETED
    payment.transaction_id = transaction_id.strip()
    payment.processed_at = now or utcnow()

    add_audit_log(
        session,
        action="prize_payment_completed",
        resource_type="prize_payment",
        resource_id=payment.id,
        details={"transaction_id": payment.transaction_id, "amount": str(payment.amount)},
        actor=actor,
    )
    await session.commit()
    PAYMENT_TRANSITIONS.labels(status=PaymentStatus.COMPLETED.value).inc()
    logger.info(f"Payment {payment_id} completed with transaction {payment.transaction_id}")
    return payment


async def fail_payment(
    session: AsyncSession,
    payment_id: UUID,
    notes: str,
    now: Optional[datetime] = None,
    actor: Optional[str] = None
) -> PrizePayment:
    """Mark a payment as FAILED. Anything but a COMPLETED payment can fail."""
    if not notes or not notes.strip():
        raise ValidationError("notes are required when failing a payment")

    payment = await _load_for_transition(session, payment_id)
    if payment.status == PaymentStatus.COMPLETED:
        raise InvalidTransition(PaymentStatus.COMPLETED.value, PaymentStatus.FAILED.value)

    previous = payment.status
    payment.status = PaymentStatus.FAILED
    payment.notes = notes.strip()
    payment.processed_at = now or utcnow()

    add_audit_log(
        session,
        action="prize_payment_failed",
        resource_type="prize_payment",
        resource_id=payment.id,
        details={"previous_status": previous.value, "notes": payment.notes},
        actor=actor,
    )
    await session.commit()
    PAYMENT_TRANSITIONS.labels(status=PaymentStatus.FAILED.value).inc()
    logger.warning(f"Payment {payment_id} failed: {payment.notes}")
    return payment


async def correct_prize_amount(
    session: AsyncSession,
    prize_id: UUID,
    amount: Decimal,
    actor: Optional[str] = None
) -> Prize:
    """Change a prize amount; refused once any payment of the prize has completed."""
    prize = await get_prize(session, prize_id)
    amount = Decimal(str(amount))
    if amount < 0:
        raise ValidationError("Prize amount must be at least 0", {"amount": str(amount)})

    if await prize_payment_repo.has_completed_payment(session, prize_id):
        raise InvalidTransition(
            PaymentStatus.COMPLETED.value,
            "AMOUNT_CORRECTED",
            f"Prize {prize_id} has a completed payment, its amount can no longer change",
        )

    previous = prize.amount
    prize.amount = amount
    add_audit_log(
        session,
        action="prize_amount_corrected",
        resource_type="prize",
        resource_id=prize.id,
        details={"previous_amount": str(previous), "amount": str(amount)},
        actor=actor,
    )
    await session.commit()
    return prize


async def list_payments(
    session: AsyncSession,
    competition_id: UUID,
    status: Optional[PaymentStatus] = None,
    participant_id: Optional[UUID] = None
) -> List[PrizePayment]:
    await get_competition(session, competition_id)
    if status is not None:
        status = PaymentStatus(status)
    return await prize_payment_repo.list_payments(
        session, competition_id, status=status, participant_id=participant_id
    )
