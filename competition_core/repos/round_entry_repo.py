"""
Round entry repository for entry lookups and participant post history
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.models.participant import Participant, ParticipantPost
from competition_core.models.post import Post
from competition_core.models.round_entry import RoundEntry
from competition_core.services.clock import utcnow


async def get_entry(
    session: AsyncSession,
    participant_id: UUID,
    round_id: UUID
) -> Optional[RoundEntry]:
    """
    Get the entry for a (participant, round) pair.

    Args:
        session: Database session
        participant_id: Participant UUID
        round_id: Round UUID

    Returns:
        RoundEntry instance or None if not found
    """
    result = await session.execute(
        select(RoundEntry).where(
            RoundEntry.participant_id == participant_id,
            RoundEntry.round_id == round_id
        )
    )
    return result.scalar_one_or_none()


async def get_entry_for_post_in_round(
    session: AsyncSession,
    round_id: UUID,
    post_id: UUID
) -> Optional[RoundEntry]:
    result = await session.execute(
        select(RoundEntry).where(
            RoundEntry.round_id == round_id,
            RoundEntry.post_id == post_id
        )
    )
    return result.scalar_one_or_none()


async def get_participant_entries_for_post(
    session: AsyncSession,
    participant_id: UUID,
    post_id: UUID
) -> List[RoundEntry]:
    result = await session.execute(
        select(RoundEntry).where(
            RoundEntry.participant_id == participant_id,
            RoundEntry.post_id == post_id
        )
    )
    return list(result.scalars().all())


async def has_failed_any_round(
    session: AsyncSession,
    participant_id: UUID,
    round_ids: Iterable[UUID]
) -> bool:
    """True when one of the participant's entries in round_ids did not qualify."""
    round_ids = list(round_ids)
    if not round_ids:
        return False
    result = await session.execute(
        select(RoundEntry.id).where(
            RoundEntry.participant_id == participant_id,
            RoundEntry.round_id.in_(round_ids),
            RoundEntry.qualified_for_next_round.is_(False)
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def get_participant_entries(session: AsyncSession, participant_id: UUID) -> List[RoundEntry]:
    result = await session.execute(
        select(RoundEntry)
        .where(RoundEntry.participant_id == participant_id)
        .order_by(RoundEntry.created_at, RoundEntry.id)
    )
    return list(result.scalars().all())


async def list_round_entries(
    session: AsyncSession,
    round_id: UUID,
    qualified: Optional[bool] = None,
    visible_only: bool = False,
    limit: int = 100,
    offset: int = 0
) -> List[Tuple[RoundEntry, Optional[Post], bool]]:
    """
    Get entries of a round joined with their post and disqualification flag.

    Args:
        session: Database session
        round_id: Round UUID
        qualified: Filter by qualification outcome (None = no filter)
        visible_only: Only entries visible in the competition feed
        limit: Maximum number of entries to return
        offset: Number of entries to skip

    Returns:
        List of (entry, post or None for a dangling reference, is_disqualified)
    """
    query = (
        select(RoundEntry, Post, Participant.is_disqualified)
        .join(Participant, Participant.id == RoundEntry.participant_id)
        .outerjoin(Post, Post.id == RoundEntry.post_id)
        .where(RoundEntry.round_id == round_id)
    )

    if qualified is not None:
        query = query.where(RoundEntry.qualified_for_next_round.is_(qualified))

    if visible_only:
        query = query.where(
            and_(
                RoundEntry.visible_in_competition_feed.is_(True),
                Participant.is_disqualified.is_(False)
            )
        )

    query = query.order_by(RoundEntry.created_at, RoundEntry.id).limit(limit).offset(offset)

    result = await session.execute(query)
    return [(row[0], row[1], bool(row[2])) for row in result.all()]


async def record_participant_post(
    session: AsyncSession,
    participant_id: UUID,
    post_id: UUID,
    submitted_at: Optional[datetime] = None,
    source: str = "submission"
) -> ParticipantPost:
    """
    Add a post to the participant's history if it is not there yet.

    Does not commit; callers commit together with the entry write.
    """
    result = await session.execute(
        select(ParticipantPost).where(
            ParticipantPost.participant_id == participant_id,
            ParticipantPost.post_id == post_id
        )
    )
    record = result.scalar_one_or_none()
    if record:
        return record

    record = ParticipantPost(
        participant_id=participant_id,
        post_id=post_id,
        source=source,
        submitted_at=submitted_at or utcnow(),
    )
    session.add(record)
    await session.flush()
    return record


async def get_participant_history(
    session: AsyncSession,
    participant_id: UUID
) -> List[Tuple[ParticipantPost, Optional[Post]]]:
    """Participant post history, oldest submission first, joined with the post row."""
    result = await session.execute(
        select(ParticipantPost, Post)
        .outerjoin(Post, Post.id == ParticipantPost.post_id)
        .where(ParticipantPost.participant_id == participant_id)
        .order_by(ParticipantPost.submitted_at, ParticipantPost.id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def get_posts_by_id(session: AsyncSession, post_ids: Iterable[UUID]) -> Dict[UUID, Post]:
    """Post rows for the given ids; missing (deleted) posts are simply absent."""
    post_ids = list(post_ids)
    if not post_ids:
        return {}
    result = await session.execute(select(Post).where(Post.id.in_(post_ids)))
    return {post.id: post for post in result.scalars().all()}
