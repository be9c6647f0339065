"""
Ledger accumulator tests: balance ownership, compare-and-swap retries and
counterparty resolution.
"""

from decimal import Decimal

import pytest

from backend.app.core.exceptions import ConcurrencyConflictError, ResourceNotFoundError, ValidationFailedError
from backend.app.domain.ledger.accumulator import LedgerAccumulator, normalize_name
from backend.app.models.ledger_enums import BalanceType, CounterpartyType


@pytest.mark.asyncio
async def test_new_counterparty_starts_at_zero(db_session):
    accumulator = LedgerAccumulator(db_session)
    dealer = await accumulator.resolve_counterparty("Ravi", "9000000001", CounterpartyType.DEALER)

    assert dealer.running_balance == Decimal("0")
    assert dealer.version == 0
    assert await accumulator.current_balance(dealer.id) == Decimal("0.000")
    assert await accumulator.current_balance(dealer.id + 100) == Decimal("0.000")


@pytest.mark.asyncio
async def test_names_resolve_case_insensitively(db_session):
    accumulator = LedgerAccumulator(db_session)
    first = await accumulator.resolve_counterparty("Ravi ", "9000000001", CounterpartyType.DEALER)
    second = await accumulator.resolve_counterparty("ravi", None, CounterpartyType.DEALER)

    assert first.id == second.id
    assert normalize_name("  RaVi ") == "ravi"


@pytest.mark.asyncio
async def test_same_name_different_type_is_separate(db_session):
    accumulator = LedgerAccumulator(db_session)
    dealer = await accumulator.resolve_counterparty("Priya", "1", CounterpartyType.DEALER)
    stocker = await accumulator.resolve_counterparty("Priya", "1", CounterpartyType.LINE_STOCKER)
    assert dealer.id != stocker.id


@pytest.mark.asyncio
async def test_blank_name_rejected(db_session):
    with pytest.raises(ValidationFailedError):
        await LedgerAccumulator(db_session).resolve_counterparty("  ", None, CounterpartyType.DEALER)


@pytest.mark.asyncio
async def test_apply_delta_accumulates_and_bumps_version(db_session):
    accumulator = LedgerAccumulator(db_session)
    dealer = await accumulator.resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)

    first = await accumulator.apply_delta(dealer.id, Decimal("5"))
    second = await accumulator.apply_delta(dealer.id, Decimal("-7.25"))

    assert first.balance == Decimal("5.000")
    assert second.previous_balance == Decimal("5.000")
    assert second.balance == Decimal("-2.250")
    assert second.version == 2

    refreshed = await accumulator.get(dealer.id)
    assert refreshed.running_balance == Decimal("-2.250")
    assert refreshed.balance_type == BalanceType.WE_OWE_DEALER


@pytest.mark.asyncio
async def test_apply_delta_unknown_counterparty(db_session):
    with pytest.raises(ResourceNotFoundError):
        await LedgerAccumulator(db_session).apply_delta(999, Decimal("1"))


@pytest.mark.asyncio
async def test_interleaved_updates_are_not_lost(db_session, mocker):
    """
    A +3 request reads the balance, a +5 request commits first, and the +3
    request's compare-and-swap must fail and retry against the new balance.
    """
    accumulator = LedgerAccumulator(db_session, backoff_ms=0)
    dealer = await accumulator.resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)
    await db_session.commit()

    real_read = accumulator._read
    calls = {"count": 0}

    async def read_then_lose_race(counterparty_id):
        snapshot = await real_read(counterparty_id)
        calls["count"] += 1
        if calls["count"] == 1:
            # Another request lands between this read and the swap
            await LedgerAccumulator(db_session).apply_delta(counterparty_id, Decimal("5"))
        return snapshot

    mocker.patch.object(accumulator, "_read", side_effect=read_then_lose_race)

    result = await accumulator.apply_delta(dealer.id, Decimal("3"))

    assert calls["count"] == 2
    assert result.previous_balance == Decimal("5.000")
    assert result.balance == Decimal("8.000")
    assert result.version == 2
    assert await LedgerAccumulator(db_session).current_balance(dealer.id) == Decimal("8.000")


@pytest.mark.asyncio
async def test_retries_exhausted_raises_conflict(db_session, mocker):
    accumulator = LedgerAccumulator(db_session, max_retries=2, backoff_ms=0)
    dealer = await accumulator.resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)

    swap = mocker.patch.object(accumulator, "_compare_and_swap", return_value=False)

    with pytest.raises(ConcurrencyConflictError) as exc_info:
        await accumulator.apply_delta(dealer.id, Decimal("1"))

    assert swap.call_count == 3
    assert exc_info.value.status_code == 409
    assert exc_info.value.details["retryable"] is True
    assert await accumulator.current_balance(dealer.id) == Decimal("0.000")


@pytest.mark.asyncio
async def test_set_balance_lands_on_target_after_interleaved_write(db_session, mocker):
    accumulator = LedgerAccumulator(db_session, backoff_ms=0)
    dealer = await accumulator.resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)
    await db_session.commit()

    real_read = accumulator._read
    calls = {"count": 0}

    async def read_then_lose_race(counterparty_id):
        snapshot = await real_read(counterparty_id)
        calls["count"] += 1
        if calls["count"] == 1:
            await LedgerAccumulator(db_session).apply_delta(counterparty_id, Decimal("5"))
        return snapshot

    mocker.patch.object(accumulator, "_read", side_effect=read_then_lose_race)

    result = await accumulator.set_balance(dealer.id, Decimal("100"))

    assert result.previous_balance == Decimal("5.000")
    assert result.delta == Decimal("95.000")
    assert result.balance == Decimal("100.000")
    assert result.version == 2
    assert await LedgerAccumulator(db_session).current_balance(dealer.id) == Decimal("100.000")


@pytest.mark.asyncio
async def test_set_balance_already_at_target(db_session):
    accumulator = LedgerAccumulator(db_session)
    dealer = await accumulator.resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)
    await accumulator.apply_delta(dealer.id, Decimal("12"))

    skipped = await accumulator.set_balance(dealer.id, Decimal("12"), write_unchanged=False)
    assert skipped.delta == Decimal("0.000")
    assert skipped.version == 1

    written = await accumulator.set_balance(dealer.id, Decimal("12"))
    assert written.delta == Decimal("0.000")
    assert written.version == 2


@pytest.mark.asyncio
async def test_expected_version_is_a_single_attempt(db_session, mocker):
    accumulator = LedgerAccumulator(db_session, max_retries=5, backoff_ms=0)
    dealer = await accumulator.resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)
    await accumulator.apply_delta(dealer.id, Decimal("4"))

    swap = mocker.spy(accumulator, "_compare_and_swap")
    with pytest.raises(ConcurrencyConflictError):
        await accumulator.apply_delta(dealer.id, Decimal("-4"), expected_version=0)

    assert swap.call_count == 0
    assert await accumulator.current_balance(dealer.id) == Decimal("4.000")

    applied = await accumulator.apply_delta(dealer.id, Decimal("-4"), expected_version=1)
    assert applied.balance == Decimal("0.000")


@pytest.mark.asyncio
async def test_lock_loads_counterparty(db_session):
    accumulator = LedgerAccumulator(db_session)
    dealer = await accumulator.resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)
    await accumulator.apply_delta(dealer.id, Decimal("2"))

    locked = await accumulator.lock(dealer.id)
    assert locked.version == 1
    assert locked.running_balance == Decimal("2")

    with pytest.raises(ResourceNotFoundError):
        await accumulator.lock(999)
