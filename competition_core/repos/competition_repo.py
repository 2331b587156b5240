"""
Competition repository for competitions, rounds, participants and prizes
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.core.errors import NotFound, ParticipantDisqualified, ValidationError
from competition_core.models.competition import Competition, Round, Prize
from competition_core.models.enums import PrizePosition
from competition_core.models.participant import Participant
from competition_core.services.clock import ensure_utc, utcnow, validate_window

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoundSnapshot:
    """Detached, immutable view of a round used by batch jobs"""
    id: UUID
    competition_id: UUID
    name: str
    start_date: datetime
    end_date: datetime
    likes_to_pass: Optional[int]
    created_at: datetime
    deleted: bool

    @classmethod
    def from_model(cls, round_: Round) -> "RoundSnapshot":
        return cls(
            id=round_.id,
            competition_id=round_.competition_id,
            name=round_.name,
            start_date=ensure_utc(round_.start_date),
            end_date=ensure_utc(round_.end_date),
            likes_to_pass=round_.likes_to_pass,
            created_at=ensure_utc(round_.created_at),
            deleted=round_.deleted_at is not None,
        )


def resolve_active_rounds(rounds: Iterable) -> List:
    """
    Pick the live round per name.

    Soft-deleted rounds are dropped; among rounds sharing a name the most
    recently created wins (ties broken by id). Result is ordered by start date.
    """
    latest_by_name: Dict[str, object] = {}
    for round_ in rounds:
        deleted = getattr(round_, "deleted", None)
        if deleted is None:
            deleted = getattr(round_, "deleted_at", None) is not None
        if deleted:
            continue
        current = latest_by_name.get(round_.name)
        key = (ensure_utc(round_.created_at), str(round_.id))
        if current is None or key > (ensure_utc(current.created_at), str(current.id)):
            latest_by_name[round_.name] = round_
    return sorted(latest_by_name.values(), key=lambda r: ensure_utc(r.start_date))


async def create_competition(
    session: AsyncSession,
    title: str,
    slug: str,
    show_stickers: bool = False
) -> Competition:
    """
    Create a new competition.

    Args:
        session: Database session
        title: Competition title
        slug: Unique URL slug
        show_stickers: Display flag for sticker overlays

    Returns:
        Created Competition instance
    """
    if not title or not title.strip():
        raise ValidationError("Competition title is required")
    if not slug or not slug.strip():
        raise ValidationError("Competition slug is required")

    competition = Competition(title=title.strip(), slug=slug.strip(), show_stickers=show_stickers)
    session.add(competition)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ValidationError(f"Competition slug '{slug}' is already taken", {"slug": slug})
    await session.refresh(competition)
    return competition


async def get_competition(session: AsyncSession, competition_id: UUID) -> Competition:
    result = await session.execute(
        select(Competition).where(Competition.id == competition_id)
    )
    competition = result.scalar_one_or_none()
    if not competition:
        raise NotFound("Competition", competition_id)
    return competition


async def add_round(
    session: AsyncSession,
    competition_id: UUID,
    name: str,
    start_date: datetime,
    end_date: datetime,
    likes_to_pass: Optional[int] = None,
    created_at: Optional[datetime] = None
) -> Round:
    """
    Add a round to a competition.

    Re-adding a round under an existing name supersedes the older row; the
    next sync moves entries across.
    """
    await get_competition(session, competition_id)

    if not name or not name.strip():
        raise ValidationError("Round name is required")
    validate_window(start_date, end_date)
    if likes_to_pass is not None and likes_to_pass < 0:
        raise ValidationError("likes_to_pass cannot be negative", {"likes_to_pass": likes_to_pass})

    round_ = Round(
        competition_id=competition_id,
        name=name.strip(),
        start_date=ensure_utc(start_date),
        end_date=ensure_utc(end_date),
        likes_to_pass=likes_to_pass,
        created_at=ensure_utc(created_at) if created_at else utcnow(),
    )
    session.add(round_)
    await session.commit()
    await session.refresh(round_)
    logger.info(f"Added round '{round_.name}' ({round_.id}) to competition {competition_id}")
    return round_


async def get_round(session: AsyncSession, round_id: UUID) -> Round:
    result = await session.execute(select(Round).where(Round.id == round_id))
    round_ = result.scalar_one_or_none()
    if not round_:
        raise NotFound("Round", round_id)
    return round_


async def list_rounds(
    session: AsyncSession,
    competition_id: UUID,
    active_only: bool = True
) -> List[Round]:
    """
    Get rounds of a competition ordered by start date.

    With active_only, superseded duplicate-named rounds and soft-deleted
    rounds are left out.
    """
    result = await session.execute(
        select(Round)
        .where(Round.competition_id == competition_id)
        .order_by(Round.start_date, Round.created_at)
    )
    rounds = list(result.scalars().all())
    if active_only:
        return resolve_active_rounds(rounds)
    return rounds


async def snapshot_rounds(session: AsyncSession, competition_id: UUID) -> List[RoundSnapshot]:
    rounds = await list_rounds(session, competition_id, active_only=False)
    return [RoundSnapshot.from_model(r) for r in rounds]


async def remove_round(session: AsyncSession, round_id: UUID) -> Round:
    """Soft-delete a round; its entries are remapped by the next sync."""
    round_ = await get_round(session, round_id)
    if round_.deleted_at is None:
        round_.deleted_at = utcnow()
        await session.commit()
        logger.info(f"Soft-deleted round {round_id} ('{round_.name}')")
    return round_


async def get_participant(session: AsyncSession, participant_id: UUID) -> Participant:
    result = await session.execute(
        select(Participant).where(Participant.id == participant_id)
    )
    participant = result.scalar_one_or_none()
    if not participant:
        raise NotFound("Participant", participant_id)
    return participant


async def join_competition(
    session: AsyncSession,
    competition_id: UUID,
    user_id: UUID
) -> Tuple[Participant, bool]:
    """
    Get or create the participant for a user.

    Returns:
        Tuple of (participant, created)
    """
    competition = await get_competition(session, competition_id)
    if not competition.is_active:
        raise ValidationError("Competition is not active", {"competition_id": str(competition_id)})

    result = await session.execute(
        select(Participant).where(
            Participant.competition_id == competition_id,
            Participant.user_id == user_id
        )
    )
    participant = result.scalar_one_or_none()
    if participant:
        if participant.is_disqualified:
            raise ParticipantDisqualified(
                f"User {user_id} is disqualified from competition {competition_id}",
                {"participant_id": str(participant.id)},
            )
        return participant, False

    participant = Participant(competition_id=competition_id, user_id=user_id)
    session.add(participant)
    try:
        await session.commit()
    except IntegrityError:
        # Concurrent join won the race
        await session.rollback()
        result = await session.execute(
            select(Participant).where(
                Participant.competition_id == competition_id,
                Participant.user_id == user_id
            )
        )
        return result.scalar_one(), False
    await session.refresh(participant)
    return participant, True


async def list_participant_ids(session: AsyncSession, competition_id: UUID) -> List[UUID]:
    result = await session.execute(
        select(Participant.id)
        .where(Participant.competition_id == competition_id)
        .order_by(Participant.created_at, Participant.id)
    )
    return list(result.scalars().all())


async def create_prize(
    session: AsyncSession,
    competition_id: UUID,
    position: PrizePosition,
    amount: Decimal,
    currency: str = "INR"
) -> Prize:
    await get_competition(session, competition_id)
    if amount is None or Decimal(str(amount)) < 0:
        raise ValidationError("Prize amount must be at least 0", {"amount": str(amount)})

    prize = Prize(
        competition_id=competition_id,
        position=position,
        amount=Decimal(str(amount)),
        currency=currency,
    )
    session.add(prize)
    await session.commit()
    await session.refresh(prize)
    return prize


async def get_prize(session: AsyncSession, prize_id: UUID) -> Prize:
    result = await session.execute(select(Prize).where(Prize.id == prize_id))
    prize = result.scalar_one_or_none()
    if not prize:
        raise NotFound("Prize", prize_id)
    return prize
