"""
Qualification engine.

Decides which entries of an ended round advance, counting only the likes a post
received inside the round's own window ("competition likes").
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.core.errors import CompetitionError, NotFound, RoundNotEnded
from competition_core.core.metrics import ROUND_EVALUATIONS
from competition_core.models.competition import Competition, Round
from competition_core.models.enums import RoundPhase
from competition_core.models.participant import Participant
from competition_core.models.post import Post, PostLike
from competition_core.models.round_entry import RoundEntry
from competition_core.repos.competition_repo import get_competition, get_round, list_rounds
from competition_core.services.clock import ensure_utc, phase_of, utcnow

logger = logging.getLogger(__name__)


@dataclass
class QualificationResult:
    round_id: UUID
    evaluated: int = 0
    entries_updated: int = 0
    participants_advanced: int = 0
    entries_hidden: int = 0
    qualified_participant_ids: List[UUID] = field(default_factory=list)
    eliminated_participant_ids: List[UUID] = field(default_factory=list)
    competition_likes: Dict[UUID, int] = field(default_factory=dict)
    next_round_id: Optional[UUID] = None
    completion_reason: Optional[str] = None

    @property
    def writes(self) -> int:
        return self.entries_updated + self.participants_advanced + self.entries_hidden

    def to_dict(self) -> Dict:
        return {
            "round_id": str(self.round_id),
            "evaluated": self.evaluated,
            "entries_updated": self.entries_updated,
            "participants_advanced": self.participants_advanced,
            "entries_hidden": self.entries_hidden,
            "qualified_participant_ids": [str(p) for p in self.qualified_participant_ids],
            "eliminated_participant_ids": [str(p) for p in self.eliminated_participant_ids],
            "competition_likes": {str(k): v for k, v in self.competition_likes.items()},
            "next_round_id": str(self.next_round_id) if self.next_round_id else None,
            "completion_reason": self.completion_reason,
        }


def is_qualified(likes: int, likes_to_pass: Optional[int], disqualified: bool = False) -> bool:
    """Inclusive threshold; no threshold means everyone still in the competition passes."""
    if disqualified:
        return False
    if likes_to_pass is None:
        return True
    return likes >= likes_to_pass


async def count_competition_likes(
    session: AsyncSession,
    post_ids: List[UUID],
    start_date: datetime,
    end_date: datetime
) -> Dict[UUID, int]:
    """
    Likes per post created in [start_date, end_date).

    One aggregate statement so every entry is counted against the same read.
    Likes of deleted posts are not counted.
    """
    if not post_ids:
        return {}
    result = await session.execute(
        select(PostLike.post_id, func.count(PostLike.id))
        .join(Post, Post.id == PostLike.post_id)
        .where(
            PostLike.post_id.in_(post_ids),
            PostLike.created_at >= ensure_utc(start_date),
            PostLike.created_at < ensure_utc(end_date)
        )
        .group_by(PostLike.post_id)
    )
    return {post_id: count for post_id, count in result.all()}


def _next_round(rounds: List[Round], round_: Round) -> Optional[Round]:
    start = ensure_utc(round_.start_date)
    for candidate in rounds:
        if candidate.id != round_.id and ensure_utc(candidate.start_date) > start:
            return candidate
    return None


def _can_advance(
    current_round_id: Optional[UUID],
    start_by_id: Dict[UUID, datetime],
    round_start: datetime
) -> bool:
    """The current round only moves forward; a stale or unknown pointer may be replaced."""
    if current_round_id is None or current_round_id not in start_by_id:
        return True
    return start_by_id[current_round_id] <= round_start


def _completion_reason(
    round_: Round,
    is_first_round: bool,
    evaluated: int,
    qualified: int,
    has_next_round: bool
) -> Optional[str]:
    if evaluated == 0:
        if is_first_round:
            return "Competition ended: No participants submitted posts for the competition. No winner declared."
        return f"Competition ended: No participants available in {round_.name}. No winner declared."
    if has_next_round and qualified == 0:
        if is_first_round:
            return "Competition ended: No participants met the minimum requirements to pass the first round. No winner declared."
        return f"Competition ended: No participants qualified from {round_.name}. No winner declared."
    return None


async def _evaluate_round_inner(
    session: AsyncSession,
    round_: Round,
    competition: Competition,
    now: datetime
) -> QualificationResult:
    result = QualificationResult(round_id=round_.id)

    rounds = await list_rounds(session, competition.id, active_only=True)
    next_round = _next_round(rounds, round_)
    round_start = ensure_utc(round_.start_date)
    start_by_id = {r.id: ensure_utc(r.start_date) for r in rounds}
    later_round_ids = [r_id for r_id, start in start_by_id.items() if start > round_start]
    is_first_round = bool(rounds) and rounds[0].id == round_.id
    result.next_round_id = next_round.id if next_round else None

    rows = await session.execute(
        select(RoundEntry, Participant)
        .join(Participant, Participant.id == RoundEntry.participant_id)
        .where(RoundEntry.round_id == round_.id)
        .order_by(RoundEntry.created_at, RoundEntry.id)
    )
    pairs = rows.all()

    likes_by_post = await count_competition_likes(
        session, [entry.post_id for entry, _ in pairs], round_.start_date, round_.end_date
    )

    for entry, participant in pairs:
        likes = likes_by_post.get(entry.post_id, 0)
        qualified = is_qualified(likes, round_.likes_to_pass, participant.is_disqualified)

        changed = False
        if entry.qualified_for_next_round is not qualified:
            entry.qualified_for_next_round = qualified
            changed = True
        if entry.competition_likes != likes:
            entry.competition_likes = likes
            changed = True
        if changed:
            result.entries_updated += 1

        result.evaluated += 1
        result.competition_likes[entry.id] = likes

        if qualified:
            result.qualified_participant_ids.append(participant.id)
            if next_round and _can_advance(participant.current_round_id, start_by_id, round_start):
                participant.current_round_id = next_round.id
                result.participants_advanced += 1
        else:
            result.eliminated_participant_ids.append(participant.id)
            if later_round_ids:
                hidden = await session.execute(
                    update(RoundEntry)
                    .where(
                        RoundEntry.participant_id == participant.id,
                        RoundEntry.round_id.in_(later_round_ids),
                        RoundEntry.visible_in_competition_feed.is_(True)
                    )
                    .values(visible_in_competition_feed=False)
                    .execution_options(synchronize_session=False)
                )
                result.entries_hidden += hidden.rowcount or 0

    reason = _completion_reason(
        round_,
        is_first_round,
        result.evaluated,
        len(result.qualified_participant_ids),
        next_round is not None,
    )
    if reason:
        result.completion_reason = reason
        if competition.completion_reason is None:
            competition.completion_reason = reason
            competition.is_active = False
            logger.info(f"Competition {competition.id} completed after round {round_.id}: {reason}")

    return result


async def evaluate_round(
    session: AsyncSession,
    round_id: UUID,
    now: Optional[datetime] = None,
    commit: bool = True
) -> QualificationResult:
    """
    Decide qualification for every entry of an ended round.

    Safe to re-run: values are only written when they change, so a second run
    over unchanged inputs reports zero writes.

    Args:
        session: Database session
        round_id: Round UUID
        now: Evaluation instant (defaults to the current time)
        commit: Commit when done (batch callers commit themselves)

    Returns:
        QualificationResult with the advancing set
    """
    now = now or utcnow()
    round_ = await get_round(session, round_id)
    if round_.deleted_at is not None:
        raise NotFound("Round", round_id)

    phase = phase_of(round_, now)
    if phase is not RoundPhase.ENDED:
        raise RoundNotEnded(
            f"Cannot process qualification before round '{round_.name}' has ended",
            {"round_id": str(round_id), "phase": phase.value},
        )

    competition = await get_competition(session, round_.competition_id)
    result = await _evaluate_round_inner(session, round_, competition, now)

    if commit:
        await session.commit()
    ROUND_EVALUATIONS.inc()

    logger.info(
        f"Evaluated round {round_id}: {result.evaluated} entries, "
        f"{len(result.qualified_participant_ids)} qualified, {result.entries_updated} updated"
    )
    return result


async def _round_needs_evaluation(session: AsyncSession, round_id: UUID) -> bool:
    total = await session.scalar(
        select(func.count(RoundEntry.id)).where(RoundEntry.round_id == round_id)
    )
    if not total:
        return True
    pending = await session.scalar(
        select(func.count(RoundEntry.id)).where(
            RoundEntry.round_id == round_id,
            RoundEntry.qualified_for_next_round.is_(None)
        )
    )
    return bool(pending)


async def process_ended_rounds(session: AsyncSession, now: Optional[datetime] = None) -> Dict:
    """
    Scheduler entry point: evaluate ended rounds of all running competitions.

    A failure in one competition is logged and reported; the others still run.
    """
    now = now or utcnow()
    result = await session.execute(
        select(Competition.id).where(
            Competition.is_active.is_(True),
            Competition.completion_reason.is_(None)
        )
    )
    competition_ids = list(result.scalars().all())
    logger.info(f"Checking {len(competition_ids)} active competitions for ended rounds")

    summary = {"competitions_checked": len(competition_ids), "rounds_evaluated": [], "errors": []}

    for competition_id in competition_ids:
        try:
            rounds = await list_rounds(session, competition_id, active_only=True)
            for round_ in rounds:
                if phase_of(round_, now) is not RoundPhase.ENDED:
                    continue
                if not await _round_needs_evaluation(session, round_.id):
                    continue
                outcome = await evaluate_round(session, round_.id, now=now)
                summary["rounds_evaluated"].append(outcome.to_dict())
                if outcome.completion_reason:
                    break
        except CompetitionError as e:
            await session.rollback()
            logger.error(f"Qualification failed for competition {competition_id}: {e.message}")
            summary["errors"].append({"competition_id": str(competition_id), **e.to_dict()})
        except Exception as e:
            await session.rollback()
            logger.exception(f"Qualification crashed for competition {competition_id}: {e}")
            summary["errors"].append({
                "competition_id": str(competition_id),
                "error": type(e).__name__,
                "message": str(e),
            })

    return summary
