"""
Competition, round, participant and prize endpoints
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.core.errors import NotFound
from competition_core.db.session import get_db
from competition_core.models.enums import PrizePosition
from competition_core.repos.competition_repo import (
    add_round,
    create_competition,
    create_prize,
    get_competition,
    get_round,
    join_competition,
    list_rounds,
    remove_round,
)
from competition_core.services.clock import phase_of

router = APIRouter()


class CompetitionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=255)
    show_stickers: bool = False


class RoundCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    start_date: datetime
    end_date: datetime
    likes_to_pass: Optional[int] = Field(None, ge=0)


class JoinRequest(BaseModel):
    user_id: UUID


class PrizeCreate(BaseModel):
    position: PrizePosition
    amount: Decimal = Field(..., ge=0)
    currency: str = Field("INR", min_length=1, max_length=16)


def _round_view(round_) -> dict:
    data = round_.to_dict()
    data["phase"] = phase_of(round_).value
    return data


@router.post("/competitions", status_code=status.HTTP_201_CREATED)
async def create_competition_endpoint(
    payload: CompetitionCreate,
    session: AsyncSession = Depends(get_db)
):
    competition = await create_competition(
        session, title=payload.title, slug=payload.slug, show_stickers=payload.show_stickers
    )
    return competition.to_dict()


@router.get("/competitions/{competition_id}")
async def get_competition_endpoint(
    competition_id: UUID,
    session: AsyncSession = Depends(get_db)
):
    """Competition with its live rounds in start order"""
    competition = await get_competition(session, competition_id)
    rounds = await list_rounds(session, competition_id, active_only=True)
    return {**competition.to_dict(), "rounds": [_round_view(r) for r in rounds]}


@router.post("/competitions/{competition_id}/rounds", status_code=status.HTTP_201_CREATED)
async def add_round_endpoint(
    competition_id: UUID,
    payload: RoundCreate,
    session: AsyncSession = Depends(get_db)
):
    round_ = await add_round(
        session,
        competition_id,
        name=payload.name,
        start_date=payload.start_date,
        end_date=payload.end_date,
        likes_to_pass=payload.likes_to_pass,
    )
    return _round_view(round_)


@router.get("/competitions/{competition_id}/rounds")
async def list_rounds_endpoint(
    competition_id: UUID,
    include_inactive: bool = False,
    session: AsyncSession = Depends(get_db)
):
    """
    Rounds of a competition.

    By default only live rounds are listed; ``include_inactive`` adds
    superseded and soft-deleted rows for admin inspection.
    """
    await get_competition(session, competition_id)
    rounds = await list_rounds(session, competition_id, active_only=not include_inactive)
    return {"rounds": [_round_view(r) for r in rounds]}


@router.delete("/competitions/{competition_id}/rounds/{round_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_round_endpoint(
    competition_id: UUID,
    round_id: UUID,
    session: AsyncSession = Depends(get_db)
):
    round_ = await get_round(session, round_id)
    if round_.competition_id != competition_id:
        raise NotFound("Round", round_id)
    await remove_round(session, round_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/competitions/{competition_id}/participants")
async def join_competition_endpoint(
    competition_id: UUID,
    payload: JoinRequest,
    response: Response,
    session: AsyncSession = Depends(get_db)
):
    participant, created = await join_competition(session, competition_id, payload.user_id)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return participant.to_dict()


@router.post("/competitions/{competition_id}/prizes", status_code=status.HTTP_201_CREATED)
async def create_prize_endpoint(
    competition_id: UUID,
    payload: PrizeCreate,
    session: AsyncSession = Depends(get_db)
):
    prize = await create_prize(
        session,
        competition_id,
        position=payload.position,
        amount=payload.amount,
        currency=payload.currency,
    )
    return prize.to_dict()
