"""
Transaction Recorder.

Appends immutable LedgerTransaction rows carrying the balance produced by
the accumulator, and serves the ledger history views.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func, desc
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import LedgerInconsistencyError, ResourceNotFoundError
from backend.app.domain.ledger.accumulator import LedgerAccumulator
from backend.app.domain.ledger.arithmetic import ZERO, round3
from backend.app.models.counterparty import Counterparty
from backend.app.models.ledger_enums import CounterpartyType, TransactionType
from backend.app.models.ledger_transaction import LedgerTransaction

logger = logging.getLogger(__name__)


def format_date(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def format_time(moment: datetime) -> str:
    return moment.strftime("%H:%M:%S")


@dataclass
class LedgerReplay:
    """Result of replaying a counterparty's deltas from zero."""
    counterparty_id: int
    consistent: bool
    replayed_balance: Decimal
    stored_balance: Decimal
    transaction_count: int
    mismatches: List[Dict[str, Any]] = field(default_factory=list)


class TransactionRecorder:
    """Append-only ledger writes; balance changes go through post()."""

    def __init__(self, db: AsyncSession, accumulator: Optional[LedgerAccumulator] = None):
        self.db = db
        self.accumulator = accumulator or LedgerAccumulator(db)

    async def record(
        self,
        counterparty: Counterparty,
        transaction_type: TransactionType,
        delta: Decimal,
        balance_after: Decimal,
        sequence: int,
        items: Optional[List[Dict[str, Any]]] = None,
        timestamp: Optional[datetime] = None,
        **extra: Any,
    ) -> LedgerTransaction:
        """Append one ledger row. Never touches earlier rows."""
        timestamp = timestamp or datetime.now(timezone.utc)
        transaction = LedgerTransaction(
            counterparty_id=counterparty.id,
            counterparty_type=counterparty.counterparty_type,
            transaction_type=transaction_type,
            sequence=sequence,
            amount=round3(delta),
            balance_after=round3(balance_after),
            items=items or [],
            date=extra.pop("date", None) or format_date(timestamp),
            time=extra.pop("time", None) or format_time(timestamp),
            **extra,
        )
        self.db.add(transaction)
        await self.db.flush()
        await self.db.refresh(transaction)
        return transaction

    async def post(
        self,
        counterparty: Counterparty,
        transaction_type: TransactionType,
        delta: Decimal,
        items: Optional[List[Dict[str, Any]]] = None,
        timestamp: Optional[datetime] = None,
        **extra: Any,
    ) -> LedgerTransaction:
        """Apply delta to the balance and append the matching ledger row."""
        timestamp = timestamp or datetime.now(timezone.utc)
        applied = await self.accumulator.apply_delta(counterparty.id, delta, as_of=timestamp)
        return await self.record(
            counterparty,
            transaction_type,
            applied.delta,
            applied.balance,
            sequence=applied.version,
            items=items,
            timestamp=timestamp,
            **extra,
        )

    async def post_balance(
        self,
        counterparty: Counterparty,
        transaction_type: TransactionType,
        target: Decimal,
        items: Optional[List[Dict[str, Any]]] = None,
        timestamp: Optional[datetime] = None,
        record_unchanged: bool = True,
        **extra: Any,
    ) -> Optional[LedgerTransaction]:
        """
        Move the balance to target and append a row carrying the delta applied.

        Returns None when record_unchanged is off and the balance was already
        at target.
        """
        timestamp = timestamp or datetime.now(timezone.utc)
        applied = await self.accumulator.set_balance(
            counterparty.id, target, as_of=timestamp, write_unchanged=record_unchanged
        )
        if applied.delta == ZERO and not record_unchanged:
            return None
        return await self.record(
            counterparty,
            transaction_type,
            applied.delta,
            applied.balance,
            sequence=applied.version,
            items=items,
            timestamp=timestamp,
            **extra,
        )

    async def history(
        self,
        counterparty_id: Optional[int] = None,
        counterparty_type: Optional[CounterpartyType] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[LedgerTransaction]:
        """Ledger rows newest first, optionally filtered by counterparty and YYYY-MM-DD range."""
        query = select(LedgerTransaction).order_by(
            desc(LedgerTransaction.created_at), desc(LedgerTransaction.id)
        )
        if counterparty_id is not None:
            query = query.where(LedgerTransaction.counterparty_id == counterparty_id)
        if counterparty_type is not None:
            query = query.where(LedgerTransaction.counterparty_type == counterparty_type)
        if date_from:
            query = query.where(LedgerTransaction.date >= date_from)
        if date_to:
            query = query.where(LedgerTransaction.date <= date_to)
        if limit:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def replay(self, counterparty_id: int) -> LedgerReplay:
        """Recompute every balance_after from zero and compare with what is stored."""
        counterparty = await self.accumulator.get(counterparty_id)
        result = await self.db.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.counterparty_id == counterparty_id)
            .order_by(LedgerTransaction.sequence)
        )
        transactions = result.scalars().all()

        running = round3(ZERO)
        mismatches = []
        for transaction in transactions:
            running = round3(running + transaction.amount)
            if running != round3(transaction.balance_after):
                mismatches.append({
                    "transaction_id": transaction.id,
                    "sequence": transaction.sequence,
                    "expected": str(running),
                    "stored": str(round3(transaction.balance_after)),
                })

        stored = round3(counterparty.running_balance)
        return LedgerReplay(
            counterparty_id=counterparty_id,
            consistent=not mismatches and running == stored,
            replayed_balance=running,
            stored_balance=stored,
            transaction_count=len(transactions),
            mismatches=mismatches,
        )

    async def _latest_sequence(self, counterparty_id: int) -> Optional[int]:
        result = await self.db.execute(
            select(func.max(LedgerTransaction.sequence))
            .where(LedgerTransaction.counterparty_id == counterparty_id)
        )
        return result.scalar()

    async def delete(self, transaction_id: int) -> Decimal:
        """
        Delete a ledger row and reverse its delta.

        Only the latest row of a counterparty can go; removing an earlier one
        would leave every later balance_after wrong.

        Raises:
            ResourceNotFoundError: unknown transaction
            LedgerInconsistencyError: later transactions depend on this one
            ConcurrencyConflictError: the balance moved after the check
        """
        transaction = await self.db.get(LedgerTransaction, transaction_id)
        if not transaction:
            raise ResourceNotFoundError("Transaction", transaction_id)

        # Posts for this counterparty wait on the lock until the reversal commits
        counterparty = await self.accumulator.lock(transaction.counterparty_id)
        locked_version = counterparty.version
        latest_sequence = await self._latest_sequence(transaction.counterparty_id)

        if transaction.sequence != latest_sequence:
            later = await self.db.execute(
                select(func.count(LedgerTransaction.id)).where(
                    LedgerTransaction.counterparty_id == transaction.counterparty_id,
                    LedgerTransaction.sequence > transaction.sequence,
                )
            )
            dependents = later.scalar()
            logger.warning(
                "Refusing to delete transaction with later dependents",
                extra={
                    "transaction_id": transaction_id,
                    "counterparty_id": transaction.counterparty_id,
                    "dependents": dependents,
                }
            )
            raise LedgerInconsistencyError(
                "Only the latest transaction of a counterparty can be deleted",
                details={"transaction_id": transaction_id, "later_transactions": dependents},
            )

        applied = await self.accumulator.apply_delta(
            transaction.counterparty_id, -transaction.amount, expected_version=locked_version
        )
        await self.db.delete(transaction)
        await self.db.flush()

        logger.info(
            "Transaction deleted",
            extra={
                "transaction_id": transaction_id,
                "counterparty_id": transaction.counterparty_id,
                "balance_after": str(applied.balance),
            }
        )
        return applied.balance
