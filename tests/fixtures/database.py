"""
Database-specific test fixtures and utilities
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from competition_core.models.competition import Competition, Prize, Round
from competition_core.models.enums import PrizePosition
from competition_core.models.participant import Participant, ParticipantPost
from competition_core.models.post import Post, PostLike
from competition_core.models.round_entry import RoundEntry
from competition_core.repos.competition_repo import (
    add_round,
    create_competition,
    create_prize,
    join_competition,
)

# Fixed reference instant so window arithmetic in tests is deterministic
T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class CompetitionTestHelper:
    """Helper class for common competition test setup."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def competition(self, title: str = "Photo Challenge", slug: Optional[str] = None) -> Competition:
        return await create_competition(self.session, title=title, slug=slug or f"comp-{uuid4().hex[:8]}")

    async def round(
        self,
        competition_id: UUID,
        name: str,
        start: datetime,
        end: datetime,
        likes_to_pass: Optional[int] = None,
        created_at: Optional[datetime] = None
    ) -> Round:
        return await add_round(
            self.session,
            competition_id,
            name=name,
            start_date=start,
            end_date=end,
            likes_to_pass=likes_to_pass,
            created_at=created_at,
        )

    async def participant(self, competition_id: UUID, user_id: Optional[UUID] = None) -> Participant:
        participant, _ = await join_competition(self.session, competition_id, user_id or uuid4())
        return participant

    async def post(self, user_id: Optional[UUID] = None, created_at: datetime = T0) -> Post:
        post = Post(id=uuid4(), user_id=user_id or uuid4(), created_at=created_at)
        self.session.add(post)
        await self.session.commit()
        return post

    async def likes(self, post_id: UUID, timestamps: Iterable[datetime]) -> List[PostLike]:
        """Add one like per timestamp, each from a different user."""
        likes = [PostLike(post_id=post_id, user_id=uuid4(), created_at=ts) for ts in timestamps]
        self.session.add_all(likes)
        await self.session.commit()
        return likes

    async def history(self, participant_id: UUID, post_id: UUID, submitted_at: datetime) -> ParticipantPost:
        record = ParticipantPost(
            participant_id=participant_id,
            post_id=post_id,
            source="legacy",
            submitted_at=submitted_at,
        )
        self.session.add(record)
        await self.session.commit()
        return record

    async def raw_entry(self, participant_id: UUID, round_id: UUID, post_id: UUID, **fields) -> RoundEntry:
        """Insert an entry directly, bypassing submit rules (drifted data)."""
        entry = RoundEntry(participant_id=participant_id, round_id=round_id, post_id=post_id, **fields)
        self.session.add(entry)
        await self.session.commit()
        return entry

    async def delete_post(self, post: Post) -> None:
        await self.session.delete(post)
        await self.session.commit()

    async def prize(
        self,
        competition_id: UUID,
        position: PrizePosition = PrizePosition.FIRST,
        amount: Decimal = Decimal("500.00")
    ) -> Prize:
        return await create_prize(self.session, competition_id, position=position, amount=amount)

    async def entries_for(self, participant_id: UUID) -> List[RoundEntry]:
        result = await self.session.execute(
            select(RoundEntry)
            .where(RoundEntry.participant_id == participant_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def round_entries(self, round_id: UUID) -> List[RoundEntry]:
        result = await self.session.execute(
            select(RoundEntry)
            .where(RoundEntry.round_id == round_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def refresh(self, instance):
        await self.session.refresh(instance)
        return instance


def hours(n: float) -> timedelta:
    return timedelta(hours=n)
