"""
Transaction recorder tests: the balance_after chain, replay and the
delete policy.
"""

from decimal import Decimal

import pytest

from backend.app.core.exceptions import ConcurrencyConflictError, LedgerInconsistencyError, ResourceNotFoundError
from backend.app.domain.ledger.accumulator import LedgerAccumulator
from backend.app.domain.ledger.recorder import TransactionRecorder
from backend.app.models.ledger_enums import CounterpartyType, TransactionType
from backend.app.models.ledger_transaction import LedgerTransaction


async def _dealer_with_history(db_session, deltas):
    accumulator = LedgerAccumulator(db_session)
    dealer = await accumulator.resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)
    recorder = TransactionRecorder(db_session, accumulator)
    transactions = []
    for delta in deltas:
        transactions.append(
            await recorder.post(dealer, TransactionType.MANUAL_ADJUSTMENT, Decimal(delta), note="test")
        )
    await db_session.commit()
    return dealer, recorder, transactions


@pytest.mark.asyncio
async def test_balance_after_chain(db_session):
    dealer, recorder, transactions = await _dealer_with_history(db_session, ["5", "-2.5", "10"])

    assert [t.balance_after for t in transactions] == [Decimal("5.000"), Decimal("2.500"), Decimal("12.500")]
    assert [t.sequence for t in transactions] == [1, 2, 3]
    for previous, current in zip(transactions, transactions[1:]):
        assert current.balance_after == previous.balance_after + current.amount

    assert transactions[0].counterparty_type == CounterpartyType.DEALER
    assert len(transactions[0].date) == 10


@pytest.mark.asyncio
async def test_replay_matches_stored_balance(db_session):
    dealer, recorder, _ = await _dealer_with_history(db_session, ["5", "3", "-1.001"])

    replay = await recorder.replay(dealer.id)

    assert replay.consistent is True
    assert replay.replayed_balance == Decimal("6.999")
    assert replay.stored_balance == Decimal("6.999")
    assert replay.transaction_count == 3
    assert replay.mismatches == []


@pytest.mark.asyncio
async def test_history_is_newest_first(db_session):
    dealer, recorder, transactions = await _dealer_with_history(db_session, ["1", "2", "3"])

    history = await recorder.history(counterparty_id=dealer.id)
    assert {t.id for t in history} == {t.id for t in transactions}
    assert history[0].id == transactions[-1].id

    assert await recorder.history(counterparty_type=CounterpartyType.LINE_STOCKER) == []
    assert len(await recorder.history(limit=2)) == 2


@pytest.mark.asyncio
async def test_delete_latest_reverses_balance(db_session):
    dealer, recorder, transactions = await _dealer_with_history(db_session, ["5", "3"])

    balance = await recorder.delete(transactions[-1].id)
    await db_session.commit()

    assert balance == Decimal("5.000")
    replay = await recorder.replay(dealer.id)
    assert replay.consistent is True
    assert replay.transaction_count == 1


@pytest.mark.asyncio
async def test_delete_earlier_transaction_refused(db_session):
    dealer, recorder, transactions = await _dealer_with_history(db_session, ["5", "3"])

    with pytest.raises(LedgerInconsistencyError) as exc_info:
        await recorder.delete(transactions[0].id)

    assert exc_info.value.status_code == 409
    assert exc_info.value.details["later_transactions"] == 1
    assert await recorder.accumulator.current_balance(dealer.id) == Decimal("8.000")


@pytest.mark.asyncio
async def test_delete_unknown_transaction(db_session):
    with pytest.raises(ResourceNotFoundError):
        await TransactionRecorder(db_session).delete(12345)


@pytest.mark.asyncio
async def test_sequence_keeps_increasing_after_delete(db_session):
    dealer, recorder, transactions = await _dealer_with_history(db_session, ["5", "3"])
    await recorder.delete(transactions[-1].id)

    following = await recorder.post(dealer, TransactionType.MANUAL_ADJUSTMENT, Decimal("1"), note="after")

    assert following.sequence > transactions[-1].sequence
    assert following.balance_after == Decimal("6.000")


@pytest.mark.asyncio
async def test_delete_refused_when_a_post_lands_after_the_check(db_session, mocker):
    dealer, recorder, transactions = await _dealer_with_history(db_session, ["5", "3"])

    real_latest = recorder._latest_sequence

    async def latest_then_concurrent_post(counterparty_id):
        latest = await real_latest(counterparty_id)
        await TransactionRecorder(db_session).post(
            dealer, TransactionType.MANUAL_ADJUSTMENT, Decimal("2"), note="concurrent"
        )
        return latest

    mocker.patch.object(recorder, "_latest_sequence", side_effect=latest_then_concurrent_post)

    with pytest.raises(ConcurrencyConflictError):
        await recorder.delete(transactions[-1].id)

    assert await db_session.get(LedgerTransaction, transactions[-1].id) is not None
    replay = await TransactionRecorder(db_session).replay(dealer.id)
    assert replay.consistent is True
    assert replay.transaction_count == 3
    assert replay.stored_balance == Decimal("10.000")


@pytest.mark.asyncio
async def test_post_balance_records_the_applied_delta(db_session):
    dealer, recorder, _ = await _dealer_with_history(db_session, ["5"])

    opening = await recorder.post_balance(dealer, TransactionType.OPENING_BALANCE, Decimal("-2"))
    assert opening.amount == Decimal("-7.000")
    assert opening.balance_after == Decimal("-2.000")

    unchanged = await recorder.post_balance(
        dealer, TransactionType.MANUAL_ADJUSTMENT, Decimal("-2"), record_unchanged=False
    )
    assert unchanged is None
    assert (await recorder.replay(dealer.id)).transaction_count == 2
