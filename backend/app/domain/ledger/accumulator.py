"""
Ledger Accumulator.

Sole owner of Counterparty.running_balance. Every balance change is a
compare-and-swap on the counterparty's version column, retried a bounded
number of times when a concurrent request wins the race.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    ConcurrencyConflictError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from backend.app.domain.ledger.arithmetic import ZERO, round3
from backend.app.models.counterparty import Counterparty
from backend.app.models.ledger_enums import CounterpartyType

logger = logging.getLogger(__name__)


def normalize_name(name: str) -> str:
    """Lookup key for a counterparty name: trimmed and case-folded."""
    return (name or "").strip().casefold()


@dataclass(frozen=True)
class BalanceUpdate:
    """Outcome of one applied delta."""
    counterparty_id: int
    previous_balance: Decimal
    delta: Decimal
    balance: Decimal
    version: int


class LedgerAccumulator:
    """Per-counterparty running balances inside one request's DB transaction."""

    def __init__(self, db: AsyncSession, max_retries: Optional[int] = None,
                 backoff_ms: Optional[int] = None):
        self.db = db
        self.max_retries = settings.ledger_max_retries if max_retries is None else max_retries
        self.backoff_ms = settings.ledger_retry_backoff_ms if backoff_ms is None else backoff_ms

    async def get(self, counterparty_id: int) -> Counterparty:
        result = await self.db.execute(
            select(Counterparty)
            .where(Counterparty.id == counterparty_id)
            .execution_options(populate_existing=True)
        )
        counterparty = result.scalar_one_or_none()
        if not counterparty:
            raise ResourceNotFoundError("Counterparty", counterparty_id)
        return counterparty

    async def current_balance(self, counterparty_id: int) -> Decimal:
        """Latest stored balance; an unknown counterparty implicitly starts at 0."""
        snapshot = await self._read(counterparty_id)
        if snapshot is None:
            return round3(ZERO)
        return round3(snapshot[0])

    async def _read(self, counterparty_id: int):
        result = await self.db.execute(
            select(Counterparty.running_balance, Counterparty.version).where(Counterparty.id == counterparty_id)
        )
        return result.one_or_none()

    async def _compare_and_swap(self, counterparty_id: int, seen_version: int,
                                new_balance: Decimal, as_of: datetime) -> bool:
        result = await self.db.execute(
            update(Counterparty)
            .where(Counterparty.id == counterparty_id, Counterparty.version == seen_version)
            .values(running_balance=new_balance, version=seen_version + 1, updated_at=as_of)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def lock(self, counterparty_id: int) -> Counterparty:
        """
        Load the counterparty row FOR UPDATE.

        Balance writers on the same row wait until this transaction ends.
        """
        result = await self.db.execute(
            select(Counterparty)
            .where(Counterparty.id == counterparty_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counterparty = result.scalar_one_or_none()
        if not counterparty:
            raise ResourceNotFoundError("Counterparty", counterparty_id)
        return counterparty

    async def apply_delta(self, counterparty_id: int, delta: Decimal,
                          as_of: Optional[datetime] = None,
                          expected_version: Optional[int] = None) -> BalanceUpdate:
        """
        Add delta to the stored balance and return the new balance.

        The write only lands when the version read alongside the balance is
        still current, so the result is always computed against the latest
        committed balance. With expected_version the write is a single
        attempt that fails when the row has moved past that version.

        Raises:
            ResourceNotFoundError: unknown counterparty
            ConcurrencyConflictError: retries exhausted or version moved
        """
        delta = round3(delta)
        return await self._swap(counterparty_id, lambda previous: delta, as_of, expected_version)

    async def set_balance(self, counterparty_id: int, target: Decimal,
                          as_of: Optional[datetime] = None,
                          write_unchanged: bool = True) -> BalanceUpdate:
        """
        Move the stored balance to target.

        The delta is target minus the balance read in the same attempt, so a
        concurrent write between attempts never leaves the balance off target.
        With write_unchanged=False a balance already at target is returned
        as-is with a zero delta and no version bump.
        """
        target = round3(target)
        if not write_unchanged:
            snapshot = await self._read(counterparty_id)
            if snapshot is None:
                raise ResourceNotFoundError("Counterparty", counterparty_id)
            if round3(snapshot[0]) == target:
                return BalanceUpdate(
                    counterparty_id=counterparty_id,
                    previous_balance=target,
                    delta=round3(ZERO),
                    balance=target,
                    version=snapshot[1],
                )
        return await self._swap(counterparty_id, lambda previous: target - previous, as_of)

    async def _swap(self, counterparty_id: int, delta_for: Callable[[Decimal], Decimal],
                    as_of: Optional[datetime] = None,
                    expected_version: Optional[int] = None) -> BalanceUpdate:
        as_of = as_of or datetime.now(timezone.utc)
        attempts = 1 if expected_version is not None else self.max_retries + 1

        for attempt in range(1, attempts + 1):
            snapshot = await self._read(counterparty_id)
            if snapshot is None:
                raise ResourceNotFoundError("Counterparty", counterparty_id)

            previous, seen_version = round3(snapshot[0]), snapshot[1]
            if expected_version is not None and seen_version != expected_version:
                logger.warning(
                    "Balance moved past the expected version",
                    extra={
                        "counterparty_id": counterparty_id,
                        "expected_version": expected_version,
                        "seen_version": seen_version,
                    }
                )
                raise ConcurrencyConflictError(counterparty_id, attempt)

            delta = round3(delta_for(previous))
            new_balance = round3(previous + delta)

            if await self._compare_and_swap(counterparty_id, seen_version, new_balance, as_of):
                # Keep any loaded Counterparty instance in step with the row
                await self.get(counterparty_id)
                logger.info(
                    "Balance updated",
                    extra={
                        "counterparty_id": counterparty_id,
                        "delta": str(delta),
                        "balance_after": str(new_balance),
                        "version": seen_version + 1,
                    }
                )
                return BalanceUpdate(
                    counterparty_id=counterparty_id,
                    previous_balance=previous,
                    delta=delta,
                    balance=new_balance,
                    version=seen_version + 1,
                )

            logger.warning(
                "Balance version conflict, retrying",
                extra={"counterparty_id": counterparty_id, "attempt": attempt, "seen_version": seen_version}
            )
            if attempt < attempts and self.backoff_ms:
                await asyncio.sleep(self.backoff_ms * attempt / 1000)

        logger.error(
            "Balance update retries exhausted",
            extra={"counterparty_id": counterparty_id, "attempts": attempts}
        )
        raise ConcurrencyConflictError(counterparty_id, attempts)

    async def find_by_name(self, name: str, counterparty_type: CounterpartyType) -> Optional[Counterparty]:
        result = await self.db.execute(
            select(Counterparty).where(
                Counterparty.normalized_name == normalize_name(name),
                Counterparty.counterparty_type == counterparty_type,
            )
        )
        return result.scalar_one_or_none()

    async def resolve_counterparty(self, name: str, phone: Optional[str],
                                   counterparty_type: CounterpartyType,
                                   create: bool = True) -> Counterparty:
        """
        Find a counterparty by trimmed, case-insensitive name, creating it at
        balance 0 when missing.

        Names differing only in case or surrounding spaces resolve to the same
        counterparty; a warning is logged when that happens.
        """
        display_name = (name or "").strip()
        if not display_name:
            raise ValidationFailedError("Counterparty name is required")

        counterparty = await self.find_by_name(display_name, counterparty_type)
        if counterparty is None and create:
            counterparty = await self._create(display_name, phone, counterparty_type)
        if counterparty is None:
            raise ResourceNotFoundError(counterparty_type.value, display_name)

        if counterparty.name != display_name and settings.warn_on_duplicate_names:
            logger.warning(
                "Counterparty name collision merged",
                extra={
                    "counterparty_id": counterparty.id,
                    "stored_name": counterparty.name,
                    "requested_name": display_name,
                }
            )

        if phone and not counterparty.phone_number:
            counterparty.phone_number = phone.strip()
            await self.db.flush()

        return counterparty

    async def _create(self, name: str, phone: Optional[str],
                      counterparty_type: CounterpartyType) -> Counterparty:
        counterparty = Counterparty(
            name=name,
            normalized_name=normalize_name(name),
            phone_number=(phone or "").strip(),
            counterparty_type=counterparty_type,
            running_balance=round3(ZERO),
            version=0,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(counterparty)
                await self.db.flush()
        except IntegrityError:
            # Created by a concurrent request between lookup and insert
            existing = await self.find_by_name(name, counterparty_type)
            if existing is None:
                raise
            return existing

        logger.info(
            "Counterparty created",
            extra={"counterparty_id": counterparty.id, "type": counterparty_type.value}
        )
        return counterparty
