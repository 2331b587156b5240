"""
Admin endpoints: disqualification, qualification, reconciliation and payouts
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.api.deps import get_actor, get_redis
from competition_core.core.locks import request_cancel
from competition_core.db.session import get_db
from competition_core.models.enums import PaymentStatus
from competition_core.repos.audit_log_repo import get_audit_logs
from competition_core.repos.competition_repo import get_competition
from competition_core.services import payments, reconciliation
from competition_core.services.entries import disqualify_participant
from competition_core.services.qualification import evaluate_round

router = APIRouter()


class DisqualifyRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class PaymentCreate(BaseModel):
    prize_id: UUID
    participant_id: UUID
    amount: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class PaymentComplete(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=128)


class PaymentFail(BaseModel):
    notes: str = Field(..., min_length=1)


class PrizeCorrection(BaseModel):
    amount: Decimal = Field(..., ge=0)


@router.post("/participants/{participant_id}/disqualify")
async def disqualify_participant_endpoint(
    participant_id: UUID,
    payload: DisqualifyRequest,
    session: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor)
):
    participant = await disqualify_participant(session, participant_id, payload.reason, actor=actor)
    return participant.to_dict()


@router.post("/rounds/{round_id}/evaluate")
async def evaluate_round_endpoint(
    round_id: UUID,
    session: AsyncSession = Depends(get_db)
):
    """Run qualification for an ended round. Re-running is harmless."""
    result = await evaluate_round(session, round_id)
    return result.to_dict()


@router.post("/competitions/{competition_id}/rebuild-entries")
async def rebuild_entries_endpoint(
    competition_id: UUID,
    session: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis),
    actor: Optional[str] = Depends(get_actor)
):
    """
    Rebuild entries from participant post history.

    Per-participant failures are reported in ``failures``; the run itself
    still answers 200 since committed participants are consistent.
    """
    result = await reconciliation.rebuild_entries(
        session, competition_id, redis=redis_client, actor=actor
    )
    return result.to_dict()


@router.post("/competitions/{competition_id}/sync-round-entries")
async def sync_round_entries_endpoint(
    competition_id: UUID,
    session: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis),
    actor: Optional[str] = Depends(get_actor)
):
    result = await reconciliation.sync_round_entries(
        session, competition_id, redis=redis_client, actor=actor
    )
    return result.to_dict()


@router.post("/competitions/{competition_id}/fix-all-entries")
async def fix_all_entries_endpoint(
    competition_id: UUID,
    session: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis),
    actor: Optional[str] = Depends(get_actor)
):
    result = await reconciliation.fix_all_entries(
        session, competition_id, redis=redis_client, actor=actor
    )
    return result.to_dict()


@router.post("/competitions/{competition_id}/reconcile/cancel", status_code=status.HTTP_202_ACCEPTED)
async def cancel_reconciliation_endpoint(
    competition_id: UUID,
    session: AsyncSession = Depends(get_db),
    redis_client=Depends(get_redis)
):
    await get_competition(session, competition_id)
    await request_cancel(redis_client, competition_id)
    return {"competition_id": str(competition_id), "cancel_requested": True}


@router.post("/payments", status_code=status.HTTP_201_CREATED)
async def create_payment_endpoint(
    payload: PaymentCreate,
    session: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor)
):
    payment = await payments.create_payment(
        session,
        payload.prize_id,
        payload.participant_id,
        amount=payload.amount,
        notes=payload.notes,
        actor=actor,
    )
    return payment.to_dict()


@router.post("/payments/{payment_id}/complete")
async def complete_payment_endpoint(
    payment_id: UUID,
    payload: PaymentComplete,
    session: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor)
):
    payment = await payments.complete_payment(session, payment_id, payload.transaction_id, actor=actor)
    return payment.to_dict()


@router.post("/payments/{payment_id}/fail")
async def fail_payment_endpoint(
    payment_id: UUID,
    payload: PaymentFail,
    session: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor)
):
    payment = await payments.fail_payment(session, payment_id, payload.notes, actor=actor)
    return payment.to_dict()


@router.get("/competitions/{competition_id}/payments")
async def list_payments_endpoint(
    competition_id: UUID,
    status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
    participant_id: Optional[UUID] = None,
    session: AsyncSession = Depends(get_db)
):
    rows = await payments.list_payments(
        session, competition_id, status=status_filter, participant_id=participant_id
    )
    return {"payments": [p.to_dict() for p in rows], "count": len(rows)}


@router.patch("/prizes/{prize_id}")
async def correct_prize_endpoint(
    prize_id: UUID,
    payload: PrizeCorrection,
    session: AsyncSession = Depends(get_db),
    actor: Optional[str] = Depends(get_actor)
):
    prize = await payments.correct_prize_amount(session, prize_id, payload.amount, actor=actor)
    return prize.to_dict()


@router.get("/audit-logs")
async def list_audit_logs_endpoint(
    action: Optional[str] = None,
    resource_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db)
):
    """Disqualifications, repair runs and payment transitions, newest first"""
    logs = await get_audit_logs(
        session, limit=limit, offset=offset, action=action, resource_id=resource_id
    )
    return {"audit_logs": [log.to_dict() for log in logs], "count": len(logs)}
