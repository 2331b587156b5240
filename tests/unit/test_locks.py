"""
Unit tests for the reconciliation lock and cancel flag
"""

from uuid import uuid4

import pytest

from competition_core.core.errors import ReconciliationInProgress
from competition_core.core.locks import (
    CompetitionLock,
    clear_cancel,
    is_cancel_requested,
    lock_key,
    request_cancel,
)


class TestCompetitionLock:

    @pytest.mark.asyncio
    async def test_second_holder_is_refused(self, mock_redis):
        competition_id = uuid4()

        async with CompetitionLock(mock_redis, competition_id, ttl=30):
            with pytest.raises(ReconciliationInProgress) as exc_info:
                await CompetitionLock(mock_redis, competition_id, ttl=30).acquire()
            assert exc_info.value.retry_after == 30
            assert exc_info.value.status_code == 409

        assert await mock_redis.get(lock_key(competition_id)) is None

    @pytest.mark.asyncio
    async def test_locks_are_per_competition(self, mock_redis):
        async with CompetitionLock(mock_redis, uuid4()):
            async with CompetitionLock(mock_redis, uuid4()) as other:
                assert other.acquired

    @pytest.mark.asyncio
    async def test_release_leaves_foreign_token(self, mock_redis):
        competition_id = uuid4()
        lock = CompetitionLock(mock_redis, competition_id, ttl=30)
        await lock.acquire()

        # Our lease expired and another worker took over
        await mock_redis.set(lock_key(competition_id), "other-worker", ex=30)
        await lock.release()

        assert await mock_redis.get(lock_key(competition_id)) == "other-worker"

    @pytest.mark.asyncio
    async def test_released_on_error(self, mock_redis):
        competition_id = uuid4()

        with pytest.raises(RuntimeError):
            async with CompetitionLock(mock_redis, competition_id):
                raise RuntimeError("boom")

        assert await mock_redis.get(lock_key(competition_id)) is None


@pytest.mark.asyncio
async def test_cancel_flag_round_trip(mock_redis):
    competition_id = uuid4()
    assert not await is_cancel_requested(mock_redis, competition_id)

    await request_cancel(mock_redis, competition_id)
    assert await is_cancel_requested(mock_redis, competition_id)

    await clear_cancel(mock_redis, competition_id)
    assert not await is_cancel_requested(mock_redis, competition_id)
