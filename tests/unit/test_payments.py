"""
Unit tests for the prize payment state machine
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from competition_core.core.errors import (
    AlreadyCompleted,
    CompetitionNotConcluded,
    DuplicatePayment,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from competition_core.models.enums import PaymentStatus
from competition_core.services.payments import (
    complete_payment,
    correct_prize_amount,
    create_payment,
    fail_payment,
    is_concluded,
    list_payments,
)
from tests.fixtures.database import T0, hours

T1 = T0 + hours(24)
AFTER = T1 + hours(1)


@pytest.fixture
async def finished(helper):
    """A competition whose only round has ended by AFTER, with a winner and a prize."""
    competition = await helper.competition()
    await helper.round(competition.id, "Final", T0, T1)
    winner = await helper.participant(competition.id)
    prize = await helper.prize(competition.id)
    return competition, winner, prize


class TestConclusion:

    @pytest.mark.asyncio
    async def test_running_round_blocks_payouts(self, async_session, finished):
        _, winner, prize = finished

        with pytest.raises(CompetitionNotConcluded):
            await create_payment(async_session, prize.id, winner.id, now=T0 + hours(1))

    @pytest.mark.asyncio
    async def test_competition_without_rounds_is_not_concluded(self, async_session, helper):
        competition = await helper.competition()
        assert await is_concluded(async_session, competition, now=AFTER) is False

    @pytest.mark.asyncio
    async def test_completion_reason_concludes_early(self, async_session, finished):
        competition, winner, prize = finished
        competition.completion_reason = "Competition ended: No participants submitted posts."
        await async_session.commit()

        payment = await create_payment(async_session, prize.id, winner.id, now=T0 + hours(1))
        assert payment.status == PaymentStatus.PENDING


class TestCreatePayment:

    @pytest.mark.asyncio
    async def test_defaults_to_prize_amount(self, async_session, finished):
        _, winner, prize = finished

        payment = await create_payment(async_session, prize.id, winner.id, notes="bank transfer", now=AFTER)

        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("500.00")
        assert payment.notes == "bank transfer"
        assert payment.transaction_id is None

    @pytest.mark.asyncio
    async def test_second_live_payment_is_refused(self, async_session, finished):
        """A pending payment blocks another one for the same prize and winner"""
        _, winner, prize = finished
        first = await create_payment(async_session, prize.id, winner.id, now=AFTER)

        with pytest.raises(DuplicatePayment) as exc_info:
            await create_payment(async_session, prize.id, winner.id, amount=Decimal("100"), now=AFTER)

        assert exc_info.value.details["payment_id"] == str(first.id)
        assert len(await list_payments(async_session, prize.competition_id)) == 1

    @pytest.mark.asyncio
    async def test_negative_amount(self, async_session, finished):
        _, winner, prize = finished

        with pytest.raises(ValidationError):
            await create_payment(async_session, prize.id, winner.id, amount=Decimal("-1"), now=AFTER)

    @pytest.mark.asyncio
    async def test_participant_of_another_competition(self, async_session, helper, finished):
        _, _, prize = finished
        elsewhere = await helper.competition()
        stranger = await helper.participant(elsewhere.id)

        with pytest.raises(NotFound):
            await create_payment(async_session, prize.id, stranger.id, now=AFTER)


class TestTransitions:

    @pytest.mark.asyncio
    async def test_complete_records_transaction(self, async_session, finished):
        _, winner, prize = finished
        payment = await create_payment(async_session, prize.id, winner.id, now=AFTER)

        paid = await complete_payment(async_session, payment.id, " TXN-0001 ", now=AFTER + hours(1))

        assert paid.status == PaymentStatus.COMPLETED
        assert paid.transaction_id == "TXN-0001"
        assert paid.processed_at is not None

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, async_session, finished):
        _, winner, prize = finished
        payment = await create_payment(async_session, prize.id, winner.id, now=AFTER)
        await complete_payment(async_session, payment.id, "TXN-0001")

        with pytest.raises(AlreadyCompleted):
            await complete_payment(async_session, payment.id, "TXN-0002")

        with pytest.raises(InvalidTransition) as exc_info:
            await fail_payment(async_session, payment.id, "chargeback")
        assert exc_info.value.source == "COMPLETED"
        assert exc_info.value.target == "FAILED"

        with pytest.raises(DuplicatePayment):
            await create_payment(async_session, prize.id, winner.id, now=AFTER)

        payment = (await list_payments(async_session, prize.competition_id))[0]
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.transaction_id == "TXN-0001"

    @pytest.mark.asyncio
    async def test_failed_payment_cannot_complete(self, async_session, finished):
        _, winner, prize = finished
        payment = await create_payment(async_session, prize.id, winner.id, now=AFTER)
        await fail_payment(async_session, payment.id, "account closed")

        with pytest.raises(InvalidTransition) as exc_info:
            await complete_payment(async_session, payment.id, "TXN-0003")

        assert exc_info.value.source == "FAILED"

    @pytest.mark.asyncio
    async def test_retry_after_failure_opens_new_payment(self, async_session, finished):
        competition, winner, prize = finished
        failed = await create_payment(async_session, prize.id, winner.id, now=AFTER)
        await fail_payment(async_session, failed.id, "wrong IFSC code")

        retry = await create_payment(async_session, prize.id, winner.id, now=AFTER)

        assert retry.id != failed.id
        assert retry.status == PaymentStatus.PENDING
        history = await list_payments(async_session, competition.id)
        assert {p.status for p in history} == {PaymentStatus.PENDING, PaymentStatus.FAILED}
        only_failed = await list_payments(async_session, competition.id, status=PaymentStatus.FAILED)
        assert [p.id for p in only_failed] == [failed.id]
        assert only_failed[0].notes == "wrong IFSC code"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("notes", ["", "   "])
    async def test_fail_requires_notes(self, async_session, finished, notes):
        _, winner, prize = finished
        payment = await create_payment(async_session, prize.id, winner.id, now=AFTER)

        with pytest.raises(ValidationError):
            await fail_payment(async_session, payment.id, notes)

    @pytest.mark.asyncio
    async def test_complete_requires_transaction_id(self, async_session, finished):
        _, winner, prize = finished
        payment = await create_payment(async_session, prize.id, winner.id, now=AFTER)

        with pytest.raises(ValidationError):
            await complete_payment(async_session, payment.id, "  ")

    @pytest.mark.asyncio
    async def test_unknown_payment(self, async_session):
        with pytest.raises(NotFound):
            await complete_payment(async_session, uuid4(), "TXN-0004")


class TestPrizeCorrection:

    @pytest.mark.asyncio
    async def test_correct_before_payout(self, async_session, finished):
        _, winner, prize = finished
        await create_payment(async_session, prize.id, winner.id, now=AFTER)

        corrected = await correct_prize_amount(async_session, prize.id, Decimal("750"))

        assert corrected.amount == Decimal("750")

    @pytest.mark.asyncio
    async def test_refused_after_completed_payment(self, async_session, finished):
        _, winner, prize = finished
        payment = await create_payment(async_session, prize.id, winner.id, now=AFTER)
        await complete_payment(async_session, payment.id, "TXN-0005")

        with pytest.raises(InvalidTransition) as exc_info:
            await correct_prize_amount(async_session, prize.id, Decimal("10"))

        assert exc_info.value.target == "AMOUNT_CORRECTED"
        assert payment.amount == Decimal("500.00")
