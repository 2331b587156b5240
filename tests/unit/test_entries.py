"""
Unit tests for the entry store: submissions, resubmission policy and disqualification
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from competition_core.core.config import Settings
from competition_core.core.errors import (
    EntryConflict,
    NotFound,
    ParticipantDisqualified,
    RoundNotActive,
    ValidationError,
)
from competition_core.models.audit_log import AuditLog
from competition_core.models.participant import ParticipantPost
from competition_core.repos.competition_repo import remove_round
from competition_core.services import entries as entries_service
from competition_core.services.entries import disqualify_participant, list_entries, submit_entry
from competition_core.services.qualification import evaluate_round
from tests.fixtures.database import T0, hours

T1 = T0 + hours(24)
DURING = T0 + timedelta(minutes=1)


async def _setup(helper, likes_to_pass=None):
    competition = await helper.competition()
    round_ = await helper.round(competition.id, "Week 1", T0, T0 + hours(24), likes_to_pass)
    participant = await helper.participant(competition.id)
    post = await helper.post(participant.user_id, DURING)
    return competition, round_, participant, post


class TestSubmitEntry:

    @pytest.mark.asyncio
    async def test_creates_entry_during_active_window(self, async_session, helper):
        _, round_, participant, post = await _setup(helper)

        entry, created = await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)

        assert created is True
        assert entry.round_id == round_.id
        assert entry.post_id == post.id
        assert entry.qualified_for_next_round is None
        assert entry.visible_in_competition_feed is True
        assert entry.visible_in_normal_feed is True

        history = (await async_session.execute(
            select(ParticipantPost).where(ParticipantPost.participant_id == participant.id)
        )).scalars().all()
        assert [h.post_id for h in history] == [post.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [timedelta(seconds=-1), hours(24), hours(48)])
    async def test_rejected_outside_window(self, async_session, helper, offset):
        _, round_, participant, post = await _setup(helper)

        with pytest.raises(RoundNotActive) as exc_info:
            await submit_entry(async_session, participant.id, round_.id, post.id, now=T0 + offset)
        assert exc_info.value.details["round_id"] == str(round_.id)

    @pytest.mark.asyncio
    async def test_disqualified_participant_cannot_enter(self, async_session, helper):
        _, round_, participant, post = await _setup(helper)
        await disqualify_participant(async_session, participant.id, "vote buying")

        with pytest.raises(ParticipantDisqualified):
            await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)

    @pytest.mark.asyncio
    async def test_same_post_twice_is_a_noop(self, async_session, helper):
        _, round_, participant, post = await _setup(helper)

        first, created_first = await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)
        second, created_second = await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)

        assert created_first is True
        assert created_second is False
        assert first.id == second.id
        assert len(await helper.round_entries(round_.id)) == 1

    @pytest.mark.asyncio
    async def test_update_policy_replaces_post_in_place(self, async_session, helper):
        _, round_, participant, post = await _setup(helper)
        replacement = await helper.post(participant.user_id, DURING + timedelta(minutes=5))

        first, _ = await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)
        second, created = await submit_entry(
            async_session, participant.id, round_.id, replacement.id, now=DURING, policy="update"
        )

        assert created is False
        assert second.id == first.id
        assert second.post_id == replacement.id
        assert len(await helper.round_entries(round_.id)) == 1

    @pytest.mark.asyncio
    async def test_reject_policy_from_settings(self, async_session, helper):
        _, round_, participant, post = await _setup(helper)
        replacement = await helper.post(participant.user_id, DURING)
        settings = Settings(entry_resubmission_policy="reject")

        await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING, settings=settings)
        with pytest.raises(EntryConflict):
            await submit_entry(
                async_session, participant.id, round_.id, replacement.id, now=DURING, settings=settings
            )

        entries = await helper.round_entries(round_.id)
        assert [e.post_id for e in entries] == [post.id]

    @pytest.mark.asyncio
    async def test_post_taken_by_another_participant(self, async_session, helper):
        competition, round_, participant, post = await _setup(helper)
        other = await helper.participant(competition.id)

        await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)
        with pytest.raises(EntryConflict):
            await submit_entry(async_session, other.id, round_.id, post.id, now=DURING)

    @pytest.mark.asyncio
    async def test_post_cannot_be_reused_in_another_round(self, async_session, helper):
        competition, round_, participant, post = await _setup(helper)
        week2 = await helper.round(competition.id, "Week 2", T0 + hours(24), T0 + hours(48))

        await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)
        with pytest.raises(EntryConflict):
            await submit_entry(async_session, participant.id, week2.id, post.id, now=T0 + hours(25))

    @pytest.mark.asyncio
    async def test_round_of_another_competition(self, async_session, helper):
        _, _, participant, post = await _setup(helper)
        other_competition = await helper.competition()
        foreign_round = await helper.round(other_competition.id, "Week 1", T0, T0 + hours(24))

        with pytest.raises(NotFound):
            await submit_entry(async_session, participant.id, foreign_round.id, post.id, now=DURING)

    @pytest.mark.asyncio
    async def test_soft_deleted_round(self, async_session, helper):
        _, round_, participant, post = await _setup(helper)
        await remove_round(async_session, round_.id)

        with pytest.raises(NotFound):
            await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)

    @pytest.mark.asyncio
    async def test_one_entry_per_participant_and_round(self, async_session, helper):
        _, round_, participant, _ = await _setup(helper)
        posts = [await helper.post(participant.user_id, DURING) for _ in range(4)]

        for post in posts + posts[:2]:
            await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)

        entries = await helper.round_entries(round_.id)
        assert len(entries) == 1
        assert entries[0].post_id == posts[1].id

    @pytest.mark.asyncio
    async def test_lost_insert_race_becomes_update(self, async_session, helper, monkeypatch):
        _, round_, participant, post = await _setup(helper)
        replacement = await helper.post(participant.user_id, DURING)
        await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)

        real_get_entry = entries_service.get_entry
        calls = {"n": 0}

        async def stale_get_entry(session, participant_id, round_id):
            # First lookup misses the row another request just inserted
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_get_entry(session, participant_id, round_id)

        monkeypatch.setattr(entries_service, "get_entry", stale_get_entry)

        entry, created = await submit_entry(async_session, participant.id, round_.id, replacement.id, now=DURING)

        assert created is False
        assert entry.post_id == replacement.id
        assert len(await helper.round_entries(round_.id)) == 1


class TestEliminatedParticipants:

    async def _first_round_entries(self, async_session, helper):
        competition = await helper.competition()
        week1 = await helper.round(competition.id, "Week 1", T0, T1, likes_to_pass=1)
        week2 = await helper.round(competition.id, "Week 2", T1, T1 + hours(24))
        winner = await helper.participant(competition.id)
        loser = await helper.participant(competition.id)
        winner_post = await helper.post(winner.user_id, DURING)
        loser_post = await helper.post(loser.user_id, DURING)
        await submit_entry(async_session, winner.id, week1.id, winner_post.id, now=DURING)
        await submit_entry(async_session, loser.id, week1.id, loser_post.id, now=DURING)
        await helper.likes(winner_post.id, [T0 + hours(1)])
        return week1, week2, winner, loser

    @pytest.mark.asyncio
    async def test_entry_after_elimination_is_hidden_from_competition_feed(self, async_session, helper):
        week1, week2, winner, loser = await self._first_round_entries(async_session, helper)
        await evaluate_round(async_session, week1.id, now=T1 + hours(1))
        loser_post = await helper.post(loser.user_id, T1 + hours(2))
        winner_post = await helper.post(winner.user_id, T1 + hours(2))

        hidden, created = await submit_entry(async_session, loser.id, week2.id, loser_post.id, now=T1 + hours(2))
        shown, _ = await submit_entry(async_session, winner.id, week2.id, winner_post.id, now=T1 + hours(2))

        assert created is True
        assert hidden.visible_in_competition_feed is False
        assert hidden.visible_in_normal_feed is True
        assert shown.visible_in_competition_feed is True

    @pytest.mark.asyncio
    async def test_resubmission_keeps_entry_hidden(self, async_session, helper):
        week1, week2, _, loser = await self._first_round_entries(async_session, helper)
        first = await helper.post(loser.user_id, T1 + hours(1))
        second = await helper.post(loser.user_id, T1 + hours(2))
        entry, _ = await submit_entry(async_session, loser.id, week2.id, first.id, now=T1 + hours(1))
        assert entry.visible_in_competition_feed is True

        await evaluate_round(async_session, week1.id, now=T1 + hours(1))
        entry, created = await submit_entry(
            async_session, loser.id, week2.id, second.id, now=T1 + hours(2), policy="update"
        )

        assert created is False
        assert entry.post_id == second.id
        [stored] = await helper.round_entries(week2.id)
        assert stored.visible_in_competition_feed is False
        assert stored.visible_in_normal_feed is True


class TestListEntries:

    @pytest.mark.asyncio
    async def test_dangling_post_and_disqualified_flag(self, async_session, helper):
        competition, round_, participant, post = await _setup(helper)
        other = await helper.participant(competition.id)
        other_post = await helper.post(other.user_id, DURING)

        await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)
        await submit_entry(async_session, other.id, round_.id, other_post.id, now=DURING + timedelta(seconds=1))
        await helper.delete_post(post)
        await disqualify_participant(async_session, other.id, "duplicate account")

        listed = await list_entries(async_session, round_.id, include_posts=True)

        assert len(listed) == 2
        by_participant = {e["participant_id"]: e for e in listed}
        assert by_participant[str(participant.id)]["post"] is None
        assert by_participant[str(other.id)]["post"]["id"] == str(other_post.id)
        assert by_participant[str(other.id)]["participant_disqualified"] is True

        visible = await list_entries(async_session, round_.id, visible_only=True)
        assert [e["participant_id"] for e in visible] == [str(participant.id)]

    @pytest.mark.asyncio
    async def test_unknown_round(self, async_session, helper):
        from uuid import uuid4

        with pytest.raises(NotFound):
            await list_entries(async_session, uuid4())


class TestDisqualify:

    @pytest.mark.asyncio
    async def test_reason_required(self, async_session, helper):
        _, _, participant, _ = await _setup(helper)

        with pytest.raises(ValidationError):
            await disqualify_participant(async_session, participant.id, "   ")

    @pytest.mark.asyncio
    async def test_hides_entries_from_competition_feed_only(self, async_session, helper):
        _, round_, participant, post = await _setup(helper)
        await submit_entry(async_session, participant.id, round_.id, post.id, now=DURING)

        result = await disqualify_participant(async_session, participant.id, "bot likes", actor="admin-1")

        assert result.is_disqualified is True
        assert result.disqualify_reason == "bot likes"
        assert result.disqualified_at is not None

        [entry] = await helper.entries_for(participant.id)
        assert entry.visible_in_competition_feed is False
        assert entry.visible_in_normal_feed is True

        logs = (await async_session.execute(
            select(AuditLog).where(AuditLog.action == "participant_disqualified")
        )).scalars().all()
        assert len(logs) == 1
        assert logs[0].actor == "admin-1"
        assert logs[0].details["entries_hidden"] == 1

    @pytest.mark.asyncio
    async def test_idempotent(self, async_session, helper):
        _, _, participant, _ = await _setup(helper)

        first = await disqualify_participant(async_session, participant.id, "spam")
        disqualified_at = first.disqualified_at
        second = await disqualify_participant(async_session, participant.id, "spam, confirmed")

        assert second.is_disqualified is True
        assert second.disqualified_at == disqualified_at
        assert second.disqualify_reason == "spam, confirmed"
