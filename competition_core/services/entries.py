"""
Entry store: submitting posts into rounds and disqualifying participants
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.core.config import Settings, settings as default_settings
from competition_core.core.errors import (
    EntryConflict,
    NotFound,
    ParticipantDisqualified,
    RoundNotActive,
    ValidationError,
)
from competition_core.core.metrics import ENTRY_SUBMISSIONS
from competition_core.models.enums import ResubmissionPolicy, RoundPhase
from competition_core.models.participant import Participant
from competition_core.models.round_entry import RoundEntry
from competition_core.repos.audit_log_repo import add_audit_log
from competition_core.repos.competition_repo import get_participant, get_round, list_rounds
from competition_core.repos.round_entry_repo import (
    get_entry,
    get_entry_for_post_in_round,
    get_participant_entries_for_post,
    has_failed_any_round,
    list_round_entries,
    record_participant_post,
)
from competition_core.services.clock import ensure_utc, phase_of, utcnow

logger = logging.getLogger(__name__)


def _resolve_policy(
    policy: Optional[Union[str, ResubmissionPolicy]],
    settings: Optional[Settings]
) -> ResubmissionPolicy:
    if policy is None:
        policy = (settings or default_settings).entry_resubmission_policy
    return ResubmissionPolicy(policy)


async def _eliminated_before(session: AsyncSession, participant_id: UUID, round_) -> bool:
    """Whether the participant failed a live round that starts before round_."""
    start = ensure_utc(round_.start_date)
    earlier = [
        r.id for r in await list_rounds(session, round_.competition_id, active_only=True)
        if ensure_utc(r.start_date) < start
    ]
    return await has_failed_any_round(session, participant_id, earlier)


async def _resubmit(
    session: AsyncSession,
    entry: RoundEntry,
    post_id: UUID,
    policy: ResubmissionPolicy,
    now: datetime,
    visible: bool
) -> Tuple[RoundEntry, bool]:
    if entry.post_id == post_id:
        # Same post again: a retried request, nothing to change
        ENTRY_SUBMISSIONS.labels(outcome="unchanged").inc()
        return entry, False

    if policy is ResubmissionPolicy.REJECT:
        ENTRY_SUBMISSIONS.labels(outcome="rejected").inc()
        raise EntryConflict(
            "Participant already has an entry for this round",
            {"entry_id": str(entry.id), "round_id": str(entry.round_id)},
        )

    logger.info(f"Replacing post {entry.post_id} with {post_id} on entry {entry.id}")
    entry.post_id = post_id
    entry.qualified_for_next_round = None
    entry.competition_likes = None
    entry.visible_in_competition_feed = visible
    entry.visible_in_normal_feed = True
    await record_participant_post(session, entry.participant_id, post_id, submitted_at=now)
    await session.commit()
    ENTRY_SUBMISSIONS.labels(outcome="updated").inc()
    return entry, False


async def submit_entry(
    session: AsyncSession,
    participant_id: UUID,
    round_id: UUID,
    post_id: UUID,
    now: Optional[datetime] = None,
    policy: Optional[Union[str, ResubmissionPolicy]] = None,
    settings: Optional[Settings] = None
) -> Tuple[RoundEntry, bool]:
    """
    Enter a post into a round.

    The round must be ACTIVE and the participant must not be disqualified. A
    second submission for the same round follows the resubmission policy:
    ``update`` swaps the post in place, ``reject`` raises EntryConflict.
    Participants who failed an earlier round are kept out of the competition
    feed.

    Args:
        session: Database session
        participant_id: Participant UUID
        round_id: Round UUID
        post_id: Post UUID from the content service
        now: Evaluation instant (defaults to the current time)
        policy: Per-call override of the configured resubmission policy
        settings: Configuration snapshot

    Returns:
        Tuple of (entry, created)
    """
    now = now or utcnow()
    policy = _resolve_policy(policy, settings)

    participant = await get_participant(session, participant_id)
    round_ = await get_round(session, round_id)
    if round_.competition_id != participant.competition_id or round_.deleted_at is not None:
        raise NotFound("Round", round_id)

    if participant.is_disqualified:
        raise ParticipantDisqualified(
            f"Participant {participant_id} is disqualified",
            {"participant_id": str(participant_id), "reason": participant.disqualify_reason},
        )

    phase = phase_of(round_, now)
    if phase is not RoundPhase.ACTIVE:
        raise RoundNotActive(
            f"Round '{round_.name}' is {phase.value}, entries are only accepted while it is ACTIVE",
            {"round_id": str(round_id), "phase": phase.value},
        )

    taken = await get_entry_for_post_in_round(session, round_id, post_id)
    if taken and taken.participant_id != participant_id:
        raise EntryConflict(
            "Post is already entered in this round by another participant",
            {"post_id": str(post_id), "round_id": str(round_id)},
        )

    reused = [
        e for e in await get_participant_entries_for_post(session, participant_id, post_id)
        if e.round_id != round_id
    ]
    if reused:
        raise EntryConflict(
            "Post is already entered in another round",
            {"post_id": str(post_id), "round_id": str(reused[0].round_id)},
        )

    visible = not await _eliminated_before(session, participant_id, round_)

    existing = await get_entry(session, participant_id, round_id)
    if existing:
        return await _resubmit(session, existing, post_id, policy, now, visible)

    entry = RoundEntry(
        participant_id=participant_id,
        round_id=round_id,
        post_id=post_id,
        visible_in_competition_feed=visible,
        visible_in_normal_feed=True,
        created_at=now,
    )
    try:
        async with session.begin_nested():
            session.add(entry)
    except IntegrityError:
        # Lost the (participant, round) race; the winner's row is the entry
        logger.info(f"Concurrent submit for participant {participant_id} round {round_id}, retrying as update")
        existing = await get_entry(session, participant_id, round_id)
        if existing is None:
            raise EntryConflict(
                "Post is already entered in this round",
                {"post_id": str(post_id), "round_id": str(round_id)},
            )
        return await _resubmit(session, existing, post_id, policy, now, visible)

    await record_participant_post(session, participant_id, post_id, submitted_at=now)
    await session.commit()
    ENTRY_SUBMISSIONS.labels(outcome="created").inc()
    logger.info(f"Created entry {entry.id} for participant {participant_id} in round {round_id}")
    return entry, True


async def list_entries(
    session: AsyncSession,
    round_id: UUID,
    qualified: Optional[bool] = None,
    visible_only: bool = False,
    include_posts: bool = False,
    limit: int = 100,
    offset: int = 0
) -> List[Dict]:
    """
    List entries of a round for feed and admin readers.

    Returns:
        List of entry dicts; with include_posts each carries ``post`` (None
        when the post was deleted) and ``participant_disqualified``.
    """
    await get_round(session, round_id)
    rows = await list_round_entries(
        session, round_id, qualified=qualified, visible_only=visible_only, limit=limit, offset=offset
    )

    entries = []
    for entry, post, disqualified in rows:
        data = entry.to_dict()
        data["participant_disqualified"] = disqualified
        if include_posts:
            data["post"] = post.to_dict() if post else None
        entries.append(data)
    return entries


async def disqualify_participant(
    session: AsyncSession,
    participant_id: UUID,
    reason: str,
    actor: Optional[str] = None,
    now: Optional[datetime] = None
) -> Participant:
    """
    Ban a participant from the whole competition.

    Existing entries are kept for history but hidden from the competition
    feed. Calling it again only refreshes the reason.
    """
    if not reason or not reason.strip():
        raise ValidationError("Disqualification reason is required")

    participant = await get_participant(session, participant_id)
    was_disqualified = participant.is_disqualified

    participant.is_disqualified = True
    participant.disqualify_reason = reason.strip()
    if not was_disqualified:
        participant.disqualified_at = now or utcnow()

    result = await session.execute(
        update(RoundEntry)
        .where(
            RoundEntry.participant_id == participant_id,
            RoundEntry.visible_in_competition_feed.is_(True)
        )
        .values(visible_in_competition_feed=False)
    )

    add_audit_log(
        session,
        action="participant_disqualified",
        resource_type="participant",
        resource_id=participant_id,
        details={
            "competition_id": str(participant.competition_id),
            "reason": participant.disqualify_reason,
            "entries_hidden": result.rowcount or 0,
            "already_disqualified": was_disqualified,
        },
        actor=actor,
    )
    await session.commit()
    logger.info(f"Disqualified participant {participant_id}: {participant.disqualify_reason}")
    return participant
