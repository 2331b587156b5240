"""
Reconciliation engine.

Repairs the entry table after posts are deleted, rounds are re-created under
the same name or soft-deleted, or history was imported from the legacy
``post_ids`` column. Every operation:

- holds the per-competition Redis lock for the whole run,
- works one participant at a time and commits after each (a checkpoint),
- records a failing participant and moves on,
- stops between participants when a cancel flag is set.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.core.errors import CompetitionError, EntryConflict, ReconciliationPartialFailure
from competition_core.core.locks import CompetitionLock, clear_cancel, is_cancel_requested
from competition_core.core.metrics import RECONCILIATION_RUNS
from competition_core.core.redis_client import get_redis_client
from competition_core.models.enums import RoundPhase
from competition_core.models.post import Post
from competition_core.models.round_entry import RoundEntry
from competition_core.repos.audit_log_repo import add_audit_log
from competition_core.repos.competition_repo import (
    RoundSnapshot,
    get_competition,
    get_participant,
    list_participant_ids,
    resolve_active_rounds,
    snapshot_rounds,
)
from competition_core.repos.round_entry_repo import (
    get_entry_for_post_in_round,
    get_participant_entries,
    get_participant_history,
    get_posts_by_id,
)
from competition_core.services.clock import ensure_utc, phase_of, utcnow, window_contains
from competition_core.services.qualification import evaluate_round

logger = logging.getLogger(__name__)


@dataclass
class _Delta:
    created: int = 0
    updated: int = 0
    removed: int = 0
    conflicts: List[EntryConflict] = field(default_factory=list)


@dataclass
class ReconciliationResult:
    competition_id: UUID
    created: int = 0
    updated: int = 0
    removed: int = 0
    rounds_evaluated: int = 0
    failures: List[Dict] = field(default_factory=list)
    interrupted: bool = False
    processed_ids: set = field(default_factory=set)

    @property
    def participants_processed(self) -> int:
        return len(self.processed_ids)

    @property
    def is_noop(self) -> bool:
        return not (self.created or self.updated or self.removed)

    def apply(self, delta: _Delta) -> None:
        self.created += delta.created
        self.updated += delta.updated
        self.removed += delta.removed

    def to_dict(self) -> Dict:
        return {
            "competition_id": str(self.competition_id),
            "created": self.created,
            "updated": self.updated,
            "removed": self.removed,
            "rounds_evaluated": self.rounds_evaluated,
            "participants_processed": self.participants_processed,
            "failures": self.failures,
            "interrupted": self.interrupted,
        }

    def raise_for_failures(self) -> None:
        if self.failures:
            raise ReconciliationPartialFailure(self.failures, summary=self.to_dict())


ParticipantHandler = Callable[[AsyncSession, UUID], Awaitable[_Delta]]


def _failure(stage: str, exc: Exception, participant_id: Optional[UUID] = None,
             round_id: Optional[UUID] = None) -> Dict:
    record = {
        "stage": stage,
        "error": exc.kind if isinstance(exc, CompetitionError) else type(exc).__name__,
        "message": exc.message if isinstance(exc, CompetitionError) else str(exc),
    }
    if participant_id is not None:
        record["participant_id"] = str(participant_id)
    if round_id is not None:
        record["round_id"] = str(round_id)
    return record


async def _cancel_requested(
    redis_client,
    competition_id: UUID,
    cancel_event: Optional[asyncio.Event]
) -> bool:
    if cancel_event is not None and cancel_event.is_set():
        return True
    return await is_cancel_requested(redis_client, competition_id)


def _round_for_moment(active: List[RoundSnapshot], moment: datetime) -> Optional[RoundSnapshot]:
    for round_ in active:
        if window_contains(round_, moment):
            return round_
    return None


def _remap_round(
    source: Optional[RoundSnapshot],
    post: Optional[Post],
    active: List[RoundSnapshot]
) -> RoundSnapshot:
    """
    Live round for something attached to a superseded, deleted or unknown round.

    Same name first, then the round whose window holds the post, then the
    earliest live round.
    """
    if source is not None:
        for round_ in active:
            if round_.name == source.name:
                return round_
    if post is not None:
        target = _round_for_moment(active, ensure_utc(post.created_at))
        if target is not None:
            return target
    return active[0]


async def _run_per_participant(
    session: AsyncSession,
    competition_id: UUID,
    stage: str,
    handler: ParticipantHandler,
    result: ReconciliationResult,
    redis_client,
    cancel_event: Optional[asyncio.Event]
) -> None:
    participant_ids = await list_participant_ids(session, competition_id)
    if session.in_transaction():
        await session.commit()

    logger.info(f"{stage}: {len(participant_ids)} participants in competition {competition_id}")

    for participant_id in participant_ids:
        if await _cancel_requested(redis_client, competition_id, cancel_event):
            result.interrupted = True
            logger.warning(f"{stage} interrupted for competition {competition_id}")
            return

        try:
            delta = await handler(session, participant_id)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"{stage} failed for participant {participant_id}: {str(e)}")
            result.failures.append(_failure(stage, e, participant_id=participant_id))
            continue

        result.apply(delta)
        result.processed_ids.add(participant_id)
        for conflict in delta.conflicts:
            result.failures.append(_failure(stage, conflict, participant_id=participant_id))


async def _rebuild_participant(
    session: AsyncSession,
    participant_id: UUID,
    rounds: List[RoundSnapshot],
    now: datetime
) -> _Delta:
    """
    Recreate a participant's entries from their post history.

    Entries already sitting in a live round keep their post. Rounds with no
    entry get the latest-submitted post whose timestamp falls in them.
    Entries pointing at deleted posts are refilled from history or removed.
    """
    delta = _Delta()
    active = resolve_active_rounds(rounds)
    if not active:
        return delta
    active_ids = {r.id for r in active}

    participant = await get_participant(session, participant_id)
    entries = await get_participant_entries(session, participant_id)
    history = await get_participant_history(session, participant_id)

    posts = {post.id: post for _, post in history if post is not None}
    posts.update(await get_posts_by_id(
        session, [e.post_id for e in entries if e.post_id not in posts]
    ))

    dangling = {e.round_id: e for e in entries if e.post_id not in posts}
    kept = [e for e in entries if e.post_id in posts]
    entered_posts = {e.post_id for e in kept}
    filled_rounds = {e.round_id for e in kept}
    start_by_id = {r.id: ensure_utc(r.start_date) for r in active}
    failed_starts = [
        start_by_id[e.round_id] for e in kept
        if e.qualified_for_next_round is False and e.round_id in start_by_id
    ]

    winners: Dict[UUID, tuple] = {}
    for record, post in history:
        if post is None or post.id in entered_posts:
            continue
        target = _round_for_moment(active, ensure_utc(post.created_at)) or active[0]
        if target.id in filled_rounds:
            continue
        key = (ensure_utc(record.submitted_at), str(post.id))
        if target.id not in winners or key > winners[target.id]:
            winners[target.id] = key

    for round_id, (_, post_id) in winners.items():
        post_id = UUID(post_id)
        holder = await get_entry_for_post_in_round(session, round_id, post_id)
        if holder is not None:
            logger.warning(
                f"Post {post_id} already entered in round {round_id} by participant "
                f"{holder.participant_id}, skipping for participant {participant_id}"
            )
            delta.conflicts.append(EntryConflict(
                f"Post {post_id} is already entered in round {round_id} by another participant",
                {"post_id": str(post_id), "round_id": str(round_id),
                 "holder_participant_id": str(holder.participant_id)},
            ))
            continue

        entry = dangling.pop(round_id, None)
        if entry is not None:
            entry.post_id = post_id
            entry.qualified_for_next_round = None
            entry.competition_likes = None
            delta.updated += 1
            continue

        session.add(RoundEntry(
            participant_id=participant_id,
            round_id=round_id,
            post_id=post_id,
            visible_in_competition_feed=not (
                participant.is_disqualified
                or any(start < start_by_id[round_id] for start in failed_starts)
            ),
            visible_in_normal_feed=True,
            created_at=now,
        ))
        delta.created += 1

    for entry in dangling.values():
        logger.info(f"Removing entry {entry.id}: post {entry.post_id} no longer exists")
        await session.delete(entry)
        delta.removed += 1

    if delta.created or delta.updated or delta.removed:
        logger.debug(f"Rebuilt participant {participant_id} against rounds {sorted(map(str, active_ids))}")
    return delta


async def _sync_participant(
    session: AsyncSession,
    participant_id: UUID,
    rounds: List[RoundSnapshot]
) -> _Delta:
    """Move entries off superseded, soft-deleted or missing rounds."""
    delta = _Delta()
    active = resolve_active_rounds(rounds)
    if not active:
        return delta
    active_ids = {r.id for r in active}
    by_id = {r.id: r for r in rounds}

    participant = await get_participant(session, participant_id)
    entries = await get_participant_entries(session, participant_id)

    occupied = {e.round_id for e in entries if e.round_id in active_ids}
    stale = [e for e in entries if e.round_id not in active_ids]
    posts = await get_posts_by_id(session, [e.post_id for e in stale])

    for entry in stale:
        target = _remap_round(by_id.get(entry.round_id), posts.get(entry.post_id), active)

        if target.id in occupied:
            logger.info(
                f"Participant {participant_id} already has an entry in round {target.id}, "
                f"removing stale entry {entry.id}"
            )
            await session.delete(entry)
            delta.removed += 1
            continue

        holder = await get_entry_for_post_in_round(session, target.id, entry.post_id)
        if holder is not None:
            logger.warning(
                f"Cannot move entry {entry.id} to round {target.id}: post {entry.post_id} "
                f"already entered by participant {holder.participant_id}"
            )
            delta.conflicts.append(EntryConflict(
                f"Cannot move entry {entry.id}: post {entry.post_id} is already entered "
                f"in round {target.id} by another participant",
                {"entry_id": str(entry.id), "post_id": str(entry.post_id), "round_id": str(target.id),
                 "holder_participant_id": str(holder.participant_id)},
            ))
            continue

        entry.round_id = target.id
        entry.qualified_for_next_round = None
        entry.competition_likes = None
        occupied.add(target.id)
        delta.updated += 1

    if participant.current_round_id is not None and participant.current_round_id not in active_ids:
        target = _remap_round(by_id.get(participant.current_round_id), None, active)
        participant.current_round_id = target.id
        delta.updated += 1

    return delta


async def _rebuild_inner(session, competition_id, rounds, result, redis_client, now, cancel_event):
    async def handler(s, participant_id):
        return await _rebuild_participant(s, participant_id, rounds, now)

    await _run_per_participant(
        session, competition_id, "rebuild", handler, result, redis_client, cancel_event
    )


async def _sync_inner(session, competition_id, rounds, result, redis_client, cancel_event):
    async def handler(s, participant_id):
        return await _sync_participant(s, participant_id, rounds)

    await _run_per_participant(
        session, competition_id, "sync", handler, result, redis_client, cancel_event
    )


async def _evaluate_inner(session, rounds, result, now, redis_client, cancel_event):
    for round_ in resolve_active_rounds(rounds):
        if phase_of(round_, now) is not RoundPhase.ENDED:
            continue
        if await _cancel_requested(redis_client, round_.competition_id, cancel_event):
            result.interrupted = True
            return
        try:
            outcome = await evaluate_round(session, round_.id, now=now)
        except Exception as e:
            await session.rollback()
            logger.error(f"Evaluation failed for round {round_.id}: {str(e)}")
            result.failures.append(_failure("evaluate", e, round_id=round_.id))
            continue
        result.updated += outcome.writes
        result.rounds_evaluated += 1


async def _record_run(
    session: AsyncSession,
    action: str,
    result: ReconciliationResult,
    actor: Optional[str]
) -> None:
    add_audit_log(
        session,
        action=action,
        resource_type="competition",
        resource_id=result.competition_id,
        details=result.to_dict(),
        actor=actor,
    )
    await session.commit()
    if result.interrupted:
        outcome = "interrupted"
    elif result.failures:
        outcome = "partial"
    else:
        outcome = "ok"
    RECONCILIATION_RUNS.labels(action=action, outcome=outcome).inc()
    logger.info(
        f"{action} for competition {result.competition_id}: created={result.created} "
        f"updated={result.updated} removed={result.removed} failures={len(result.failures)} "
        f"interrupted={result.interrupted}"
    )


async def _prepare(session: AsyncSession, competition_id: UUID, redis_client):
    await get_competition(session, competition_id)
    return redis_client or await get_redis_client()


async def rebuild_entries(
    session: AsyncSession,
    competition_id: UUID,
    redis=None,
    now: Optional[datetime] = None,
    cancel_event: Optional[asyncio.Event] = None,
    actor: Optional[str] = None
) -> ReconciliationResult:
    """
    Rebuild entries of a competition from participant post history.

    Args:
        session: Database session
        competition_id: Competition UUID
        redis: Redis client holding the lock and cancel flag
        now: Timestamp for new entries
        cancel_event: In-process cancellation signal
        actor: Who triggered the run, for the audit log

    Returns:
        ReconciliationResult; call ``raise_for_failures()`` to escalate
    """
    now = now or utcnow()
    redis_client = await _prepare(session, competition_id, redis)
    result = ReconciliationResult(competition_id=competition_id)

    async with CompetitionLock(redis_client, competition_id):
        await clear_cancel(redis_client, competition_id)
        rounds = await snapshot_rounds(session, competition_id)
        await _rebuild_inner(session, competition_id, rounds, result, redis_client, now, cancel_event)
        await _record_run(session, "entries_rebuilt", result, actor)

    return result


async def sync_round_entries(
    session: AsyncSession,
    competition_id: UUID,
    redis=None,
    now: Optional[datetime] = None,
    cancel_event: Optional[asyncio.Event] = None,
    actor: Optional[str] = None
) -> ReconciliationResult:
    """Move entries attached to superseded or deleted rounds onto live rounds."""
    redis_client = await _prepare(session, competition_id, redis)
    result = ReconciliationResult(competition_id=competition_id)

    async with CompetitionLock(redis_client, competition_id):
        await clear_cancel(redis_client, competition_id)
        rounds = await snapshot_rounds(session, competition_id)
        await _sync_inner(session, competition_id, rounds, result, redis_client, cancel_event)
        await _record_run(session, "round_entries_synced", result, actor)

    return result


async def fix_all_entries(
    session: AsyncSession,
    competition_id: UUID,
    redis=None,
    now: Optional[datetime] = None,
    cancel_event: Optional[asyncio.Event] = None,
    actor: Optional[str] = None
) -> ReconciliationResult:
    """
    Full repair under a single lock: rebuild, then sync, then re-evaluate every
    ended live round. Counters are summed across the three passes.
    """
    now = now or utcnow()
    redis_client = await _prepare(session, competition_id, redis)
    result = ReconciliationResult(competition_id=competition_id)

    async with CompetitionLock(redis_client, competition_id):
        await clear_cancel(redis_client, competition_id)
        rounds = await snapshot_rounds(session, competition_id)

        await _rebuild_inner(session, competition_id, rounds, result, redis_client, now, cancel_event)
        if not result.interrupted:
            await _sync_inner(session, competition_id, rounds, result, redis_client, cancel_event)
        if not result.interrupted:
            await _evaluate_inner(session, rounds, result, now, redis_client, cancel_event)

        await _record_run(session, "entries_fixed", result, actor)

    return result
