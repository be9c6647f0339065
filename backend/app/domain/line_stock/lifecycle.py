"""
Line stock status derivation.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.ledger_enums import LineStockStatus
from backend.app.models.line_stock import LineStock

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (LineStockStatus.SETTLED, LineStockStatus.CLOSED)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Normalize to aware UTC; naive datetimes (as SQLite returns them) are taken as UTC."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def derive_status(now: datetime, expected_return_date: Optional[datetime], is_settled: bool,
                  current: Optional[LineStockStatus] = None) -> LineStockStatus:
    """
    Status of an episode at `now`.

    SETTLED and CLOSED never change back. An unsettled episode is OVERDUE once
    its expected return date has passed, otherwise ISSUED.
    """
    if current in TERMINAL_STATUSES:
        return current
    if is_settled:
        return LineStockStatus.SETTLED
    if expected_return_date is not None and as_utc(expected_return_date) < as_utc(now):
        return LineStockStatus.OVERDUE
    return LineStockStatus.ISSUED


async def sync_overdue(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Mark ISSUED episodes past their expected return date as OVERDUE."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        update(LineStock)
        .where(LineStock.status == LineStockStatus.ISSUED, LineStock.expected_return_date < now)
        .values(status=LineStockStatus.OVERDUE)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Line stock marked overdue", extra={"count": result.rowcount})
    return result.rowcount
