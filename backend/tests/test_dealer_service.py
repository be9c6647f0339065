"""
Dealer service tests with a second request landing mid-update.

The interleaving is injected just before the first compare-and-swap, the
point where a concurrent request would commit in production.
"""

from decimal import Decimal

import pytest

from backend.app.domain.dealer.service import DealerService
from backend.app.domain.ledger.accumulator import LedgerAccumulator
from backend.app.domain.ledger.recorder import TransactionRecorder
from backend.app.models.ledger_enums import BalanceType, CounterpartyType, TransactionType
from backend.app.schemas.dealer import OpeningBalanceRequest, StockInAction, StockInRequest


def _transaction_only(dealer_id, dealer_purchase_cost):
    return StockInRequest(
        dealer_id=dealer_id,
        action_type=StockInAction.TRANSACTION_ONLY,
        total_gram_purchase="0",
        sri_bill="0",
        dealer_purchase_cost=dealer_purchase_cost,
        date="2024-05-01",
        time="10:00:00",
    )


async def _dealer(db_session):
    dealer = await LedgerAccumulator(db_session).resolve_counterparty("Ravi", "1", CounterpartyType.DEALER)
    await db_session.commit()
    return dealer


def _interleave_before_first_swap(mocker, concurrent):
    """Run `concurrent` once, right before the first compare-and-swap."""
    real_swap = LedgerAccumulator._compare_and_swap
    state = {"done": False}

    async def swap(self, *args, **kwargs):
        if not state["done"]:
            state["done"] = True
            await concurrent()
        return await real_swap(self, *args, **kwargs)

    return mocker.patch.object(LedgerAccumulator, "_compare_and_swap", autospec=True, side_effect=swap)


@pytest.mark.asyncio
async def test_concurrent_stock_ins_both_land(db_session, mocker):
    dealer = await _dealer(db_session)

    async def other_request():
        await DealerService.stock_in(db_session, _transaction_only(dealer.id, "5"))

    _interleave_before_first_swap(mocker, other_request)

    result = await DealerService.stock_in(db_session, _transaction_only(dealer.id, "3"))

    assert result.transaction.amount == Decimal("3.000")
    assert result.transaction.balance_after == Decimal("8.000")
    assert await LedgerAccumulator(db_session).current_balance(dealer.id) == Decimal("8.000")

    history = await TransactionRecorder(db_session).history(counterparty_id=dealer.id)
    assert sorted(t.sequence for t in history) == [1, 2]
    assert (await TransactionRecorder(db_session).replay(dealer.id)).consistent is True


@pytest.mark.asyncio
async def test_opening_balance_hits_target_despite_concurrent_write(db_session, mocker):
    dealer = await _dealer(db_session)

    async def other_request():
        await TransactionRecorder(db_session).post(
            dealer, TransactionType.MANUAL_ADJUSTMENT, Decimal("5"), note="concurrent"
        )

    _interleave_before_first_swap(mocker, other_request)

    opening = await DealerService.set_opening_balance(db_session, OpeningBalanceRequest(
        dealer_id=dealer.id,
        net_balance="100",
        balance_type=BalanceType.DEALER_OWES_US,
    ))

    assert opening.amount == Decimal("95.000")
    assert opening.balance_after == Decimal("100.000")
    assert await LedgerAccumulator(db_session).current_balance(dealer.id) == Decimal("100.000")
    assert (await TransactionRecorder(db_session).replay(dealer.id)).consistent is True
