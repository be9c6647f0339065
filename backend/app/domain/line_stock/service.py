"""
Line Stock Service (Domain Logic).

Issues jewellery on consignment to a sales-person, settles sold vs. returned
pieces, and keeps the line stocker's running balance in step through the
TransactionRecorder. Callers commit the session.
"""

import logging
import math
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    LedgerInconsistencyError,
    ResourceNotFoundError,
    ValidationFailedError,
)
from backend.app.domain.ledger.accumulator import LedgerAccumulator
from backend.app.domain.ledger.arithmetic import (
    ZERO,
    issuance_value,
    parse_decimal_or_zero,
    round3,
    settlement_value,
)
from backend.app.domain.ledger.recorder import TransactionRecorder
from backend.app.domain.line_stock.lifecycle import TERMINAL_STATUSES, as_utc, derive_status, sync_overdue
from backend.app.domain.sales.service import adjust_stock_count
from backend.app.models.counterparty import Counterparty
from backend.app.models.ledger_enums import CounterpartyType, LineStockStatus, TransactionType
from backend.app.models.line_stock import LineStock, LineStockItem, LineStockSale
from backend.app.models.stock import Stock
from backend.app.schemas.line_stock import (
    LineStockCorrect,
    LineStockCreate,
    LineStockItemResponse,
    LineStockManualCreate,
    LineStockSaleResponse,
    LineStockSettle,
)

logger = logging.getLogger(__name__)

# Severity order for the receivables view
_STATUS_RANK = {LineStockStatus.ISSUED: 1, LineStockStatus.OVERDUE: 2}


def _override_value(raw: Any, field: str) -> Optional[Decimal]:
    """
    A manual gram value, or None when absent.

    Unlike parse_decimal_or_zero this keeps "not supplied" apart from a
    supplied 0. Malformed or negative input counts as not supplied unless
    strict numeric input is on.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    try:
        return round3(parse_decimal_or_zero(raw, allow_negative=False, strict=True, field=field))
    except ValidationFailedError:
        if settings.strict_numeric_input:
            raise
        return None


def line_number_for(line_stock_id: int) -> str:
    return f"LS-{line_stock_id:04d}"


def invoice_number_for(moment: datetime, used: set) -> str:
    """INV-LS-YYYYMMDDHHMMSS-NNNN, unique within one settlement."""
    stamp = moment.strftime("%Y%m%d%H%M%S")
    while True:
        candidate = f"INV-LS-{stamp}-{1000 + secrets.randbelow(9000)}"
        if candidate not in used:
            used.add(candidate)
            return candidate


class LineStockService:

    @staticmethod
    async def _get_episode(db: AsyncSession, line_stock_id: int) -> LineStock:
        episode = await db.get(LineStock, line_stock_id)
        if not episode:
            raise ResourceNotFoundError("Line Stock", line_stock_id)
        return episode

    @staticmethod
    async def _get_stock(db: AsyncSession, product_id: int) -> Stock:
        stock = await db.get(Stock, product_id)
        if not stock:
            raise ResourceNotFoundError("Product", product_id)
        return stock

    @staticmethod
    async def _counterparty_for(accumulator: LedgerAccumulator, episode: LineStock) -> Counterparty:
        if episode.counterparty_id is not None:
            return await accumulator.get(episode.counterparty_id)
        counterparty = await accumulator.resolve_counterparty(
            episode.person_name, episode.phone_number, CounterpartyType.LINE_STOCKER
        )
        episode.counterparty_id = counterparty.id
        return counterparty

    @staticmethod
    async def _items(db: AsyncSession, line_stock_id: int) -> List[LineStockItem]:
        result = await db.execute(
            select(LineStockItem).where(LineStockItem.line_stock_id == line_stock_id).order_by(LineStockItem.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _new_episode(db: AsyncSession, **fields) -> LineStock:
        # The line number is derived from the primary key once it is assigned
        episode = LineStock(line_number=f"PENDING-{uuid.uuid4().hex[:12]}", **fields)
        db.add(episode)
        await db.flush()
        episode.line_number = line_number_for(episode.id)
        await db.flush()
        return episode

    @staticmethod
    async def _claim_for_settlement(db: AsyncSession, episode: LineStock, now: datetime) -> None:
        """
        Move an open episode to SETTLED with one conditional update.

        A concurrent settlement of the same episode matches no row and gets a
        conflict before any stock or balance changes.
        """
        result = await db.execute(
            update(LineStock)
            .where(LineStock.id == episode.id, LineStock.status.notin_(list(TERMINAL_STATUSES)))
            .values(status=LineStockStatus.SETTLED, settled_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await db.refresh(episode, ["status"])
            raise LedgerInconsistencyError(
                f"Line stock {episode.line_number} is already {episode.status.value}",
                details={"line_stock_id": episode.id, "status": episode.status.value},
            )

    @staticmethod
    async def issue(db: AsyncSession, payload: LineStockCreate) -> LineStock:
        """
        Issue items to a sales-person.

        Flow:
        1. Validate every product and its available count
        2. Deduct issued pieces from stock
        3. Create the episode (status ISSUED, or OVERDUE for a past return date)
        4. Post +issued grams on the line stocker's balance

        Raises:
            ResourceNotFoundError: unknown product
            ValidationFailedError: insufficient stock or duplicate product lines
        """
        person_name = payload.person_name.strip()
        phone_number = payload.phone_number.strip()
        if not person_name or not phone_number:
            raise ValidationFailedError("Person name and phone number are required")

        product_ids = [item.product_id for item in payload.items]
        if len(set(product_ids)) != len(product_ids):
            raise ValidationFailedError("Each product may appear only once per issuance")

        stocks = {}
        for item in payload.items:
            stock = await LineStockService._get_stock(db, item.product_id)
            if (stock.current_count or 0) < item.issued_qty:
                raise ValidationFailedError(
                    f"Insufficient stock for {stock.item_name}. Available: {stock.current_count}",
                    details={"product_id": stock.id, "available": stock.current_count, "requested": item.issued_qty},
                )
            stocks[item.product_id] = stock

        computed = issuance_value((item.issued_qty, stocks[item.product_id].gross_weight) for item in payload.items)
        manual = _override_value(payload.total_value, "total_value")
        issued_total = manual if manual is not None else computed

        counterparty = await LedgerAccumulator(db).resolve_counterparty(
            person_name, phone_number, CounterpartyType.LINE_STOCKER
        )

        now = datetime.now(timezone.utc)
        expected = as_utc(payload.expected_return_date)
        episode = await LineStockService._new_episode(
            db,
            person_name=person_name,
            phone_number=phone_number,
            counterparty_id=counterparty.id,
            issued_date=as_utc(payload.issued_date) or now,
            expected_return_date=expected,
            status=derive_status(now, expected, is_settled=False),
            is_manual=False,
            total_issued=issued_total,
            manual_value=manual if manual is not None else ZERO,
        )

        snapshot = []
        for item in payload.items:
            stock = stocks[item.product_id]
            await adjust_stock_count(db, stock, -item.issued_qty)
            gross_weight = round3(stock.gross_weight)
            db.add(LineStockItem(
                line_stock_id=episode.id,
                product_id=stock.id,
                product_name=stock.item_name,
                gross_weight=gross_weight,
                issued_qty=item.issued_qty,
                total_issued_value=round3(gross_weight * item.issued_qty),
            ))
            snapshot.append({"item_name": stock.item_name, "quantity": item.issued_qty, "gross_weight": str(gross_weight)})
        await db.flush()

        if issued_total > 0:
            await TransactionRecorder(db).post(
                counterparty,
                TransactionType.LINE_STOCK_ISSUANCE,
                issued_total,
                items=snapshot,
                timestamp=now,
                line_stock_id=episode.id,
                note=episode.line_number,
            )

        logger.info(
            "Line stock issued",
            extra={"line_stock_id": episode.id, "counterparty_id": counterparty.id, "issued": str(issued_total)}
        )
        return episode

    @staticmethod
    async def create_manual(db: AsyncSession, payload: LineStockManualCreate) -> LineStock:
        """
        Record a balance-only episode without items.

        The line stocker's balance is moved to total_value through a Manual
        Adjustment record.
        """
        person_name = payload.person_name.strip()
        phone_number = payload.phone_number.strip()
        if not person_name or not phone_number:
            raise ValidationFailedError("Person name and phone number are required")

        value = round3(parse_decimal_or_zero(
            payload.total_value, strict=settings.strict_numeric_input, field="total_value"
        ))

        accumulator = LedgerAccumulator(db)
        counterparty = await accumulator.resolve_counterparty(person_name, phone_number, CounterpartyType.LINE_STOCKER)

        now = datetime.now(timezone.utc)
        issued_date = as_utc(payload.issued_date)
        episode = await LineStockService._new_episode(
            db,
            person_name=person_name,
            phone_number=phone_number,
            counterparty_id=counterparty.id,
            issued_date=issued_date,
            expected_return_date=as_utc(payload.expected_return_date) or issued_date or now,
            status=payload.status,
            is_manual=True,
            total_issued=value,
            manual_value=value,
            settled_at=now if payload.status in TERMINAL_STATUSES else None,
        )

        await TransactionRecorder(db, accumulator).post_balance(
            counterparty,
            TransactionType.MANUAL_ADJUSTMENT,
            value,
            timestamp=now,
            record_unchanged=False,
            line_stock_id=episode.id,
            note=f"{episode.line_number} balance set to {value}",
        )

        logger.info(
            "Manual line stock recorded",
            extra={"line_stock_id": episode.id, "counterparty_id": counterparty.id, "value": str(value)}
        )
        return episode

    @staticmethod
    async def settle(db: AsyncSession, line_stock_id: int, payload: LineStockSettle) -> LineStock:
        """
        Settle an episode.

        Every item ends with sold_qty + returned_qty == issued_qty; items left
        out of the request count as fully returned. Returned pieces go back to
        stock, sold pieces become LineStockSale invoices, and the returned
        grams are taken off the line stocker's balance. Manual items add their
        issued grams in the same record since they were never posted at issue.

        Raises:
            ResourceNotFoundError: unknown episode or product
            LedgerInconsistencyError: episode already settled or closed
            ValidationFailedError: sold quantity out of range
        """
        episode = await LineStockService._get_episode(db, line_stock_id)
        now = datetime.now(timezone.utc)
        await LineStockService._claim_for_settlement(db, episode, now)

        existing = {item.product_id: item for item in await LineStockService._items(db, episode.id)}
        requested = {}
        for line in payload.items:
            if line.product_id in requested:
                raise ValidationFailedError("Each product may appear only once per settlement")
            requested[line.product_id] = line

        # Validate everything before touching stock or balances
        plan = []
        for product_id, item in existing.items():
            line = requested.get(product_id)
            sold = line.sold_qty if line else 0
            if sold > item.issued_qty:
                raise ValidationFailedError(
                    f"Sold quantity cannot exceed issued quantity for {item.product_name}",
                    details={"product_id": product_id, "issued_qty": item.issued_qty, "sold_qty": sold},
                )
            stock = await LineStockService._get_stock(db, product_id)
            plan.append((item, stock, sold, line))

        for product_id, line in requested.items():
            if product_id in existing:
                continue
            if not line.issued_qty:
                raise ValidationFailedError(
                    "issued_qty is required for items added during settlement",
                    details={"product_id": product_id},
                )
            if line.sold_qty > line.issued_qty:
                raise ValidationFailedError(
                    "Sold quantity cannot exceed issued quantity",
                    details={"product_id": product_id, "issued_qty": line.issued_qty, "sold_qty": line.sold_qty},
                )
            stock = await LineStockService._get_stock(db, product_id)
            if (stock.current_count or 0) < line.sold_qty:
                raise ValidationFailedError(
                    f"Insufficient stock for {stock.item_name}. Available: {stock.current_count}",
                    details={"product_id": product_id, "available": stock.current_count},
                )
            gross_weight = round3(stock.gross_weight)
            item = LineStockItem(
                line_stock_id=episode.id,
                product_id=stock.id,
                product_name=stock.item_name,
                gross_weight=gross_weight,
                issued_qty=line.issued_qty,
                total_issued_value=round3(gross_weight * line.issued_qty),
                is_manual=True,
            )
            db.add(item)
            plan.append((item, stock, line.sold_qty, line))

        invoices = set()
        manual_issued = ZERO
        total_sold = ZERO
        total_returned = ZERO
        snapshot = []

        for item, stock, sold, line in plan:
            returned = item.issued_qty - sold
            item.sold_qty = sold
            item.returned_qty = returned
            item.total_sold_value = round3(item.gross_weight * sold)
            override = _override_value(line.value, "value") if line else None
            item.total_returned_value = override if override is not None else settlement_value(returned, item.gross_weight)

            if item.is_manual:
                # Only the sold pieces ever left the shelf
                if sold:
                    await adjust_stock_count(db, stock, -sold)
                manual_issued += item.total_issued_value
            elif returned:
                await adjust_stock_count(db, stock, returned)

            if sold > 0:
                db.add(LineStockSale(
                    invoice_number=invoice_number_for(now, invoices),
                    line_stock_id=episode.id,
                    product_id=stock.id,
                    product_name=item.product_name,
                    quantity=sold,
                    price=stock.selling_price or 0,
                ))

            total_sold += item.total_sold_value
            total_returned += item.total_returned_value
            snapshot.append({
                "item_name": item.product_name,
                "sold_qty": sold,
                "returned_qty": returned,
                "returned_value": str(item.total_returned_value),
            })

        episode.total_issued = round3(episode.total_issued + manual_issued)
        episode.total_sold = round3(total_sold)
        episode.total_returned = round3(total_returned)
        episode.status = LineStockStatus.SETTLED
        episode.settled_at = now
        await db.flush()

        delta = round3(manual_issued - total_returned)
        if delta != ZERO:
            accumulator = LedgerAccumulator(db)
            counterparty = await LineStockService._counterparty_for(accumulator, episode)
            await TransactionRecorder(db, accumulator).post(
                counterparty,
                TransactionType.LINE_STOCK_SETTLEMENT,
                delta,
                items=snapshot,
                timestamp=now,
                line_stock_id=episode.id,
                note=episode.line_number,
            )

        logger.info(
            "Line stock settled",
            extra={
                "line_stock_id": episode.id,
                "sold": str(episode.total_sold),
                "returned": str(episode.total_returned),
                "delta": str(delta),
            }
        )
        return episode

    @staticmethod
    async def correct(db: AsyncSession, line_stock_id: int, payload: LineStockCorrect) -> Tuple[LineStock, Decimal]:
        """
        Re-value the returned grams of a settled or closed episode.

        Quantities, stock counts and invoices keep their settled values. The
        change in the episode's returned total is posted as a Manual
        Adjustment, so earlier ledger rows stay untouched.

        Returns:
            (episode, delta posted on the line stocker's balance)

        Raises:
            ResourceNotFoundError: unknown episode
            LedgerInconsistencyError: episode not settled yet
            ValidationFailedError: product not on the episode
        """
        result = await db.execute(
            select(LineStock)
            .where(LineStock.id == line_stock_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        episode = result.scalar_one_or_none()
        if not episode:
            raise ResourceNotFoundError("Line Stock", line_stock_id)
        if episode.status not in TERMINAL_STATUSES:
            raise LedgerInconsistencyError(
                f"Line stock {episode.line_number} is not settled yet",
                details={"line_stock_id": episode.id, "status": episode.status.value},
            )

        items = {item.product_id: item for item in await LineStockService._items(db, episode.id)}
        requested = {}
        for line in payload.items:
            if line.product_id not in items:
                raise ValidationFailedError(
                    f"Product {line.product_id} is not on line stock {episode.line_number}",
                    details={"line_stock_id": episode.id, "product_id": line.product_id},
                )
            if line.product_id in requested:
                raise ValidationFailedError("Each product may appear only once per correction")
            requested[line.product_id] = line

        snapshot = []
        for product_id, line in requested.items():
            item = items[product_id]
            override = _override_value(line.value, "value")
            corrected = override if override is not None else settlement_value(item.returned_qty, item.gross_weight)
            snapshot.append({
                "item_name": item.product_name,
                "returned_qty": item.returned_qty,
                "previous_value": str(round3(item.total_returned_value)),
                "returned_value": str(corrected),
            })
            item.total_returned_value = corrected

        previous_total = round3(episode.total_returned)
        episode.total_returned = round3(sum((item.total_returned_value for item in items.values()), ZERO))
        await db.flush()

        # Returned grams come off the balance, so a lower total owes more
        delta = round3(previous_total - episode.total_returned)
        if delta != ZERO:
            accumulator = LedgerAccumulator(db)
            counterparty = await LineStockService._counterparty_for(accumulator, episode)
            await TransactionRecorder(db, accumulator).post(
                counterparty,
                TransactionType.MANUAL_ADJUSTMENT,
                delta,
                items=snapshot,
                line_stock_id=episode.id,
                note=payload.note.strip() or f"{episode.line_number} settlement corrected",
            )

        logger.info(
            "Line stock settlement corrected",
            extra={
                "line_stock_id": episode.id,
                "returned": str(episode.total_returned),
                "delta": str(delta),
            }
        )
        return episode, delta

    @staticmethod
    async def detail(db: AsyncSession, line_stock_id: int) -> Dict[str, Any]:
        """Episode with items, sales and the line stocker's current balance."""
        episode = await LineStockService._get_episode(db, line_stock_id)
        return await LineStockService.serialize(db, episode)

    @staticmethod
    async def serialize(db: AsyncSession, episode: LineStock,
                        balance: Optional[Decimal] = None, with_items: bool = True) -> Dict[str, Any]:
        # Load server-side timestamps before reading columns
        await db.refresh(episode)
        data = {column.name: getattr(episode, column.name) for column in LineStock.__table__.columns}
        data["items"] = []
        data["sales"] = []
        if with_items:
            data["items"] = [
                LineStockItemResponse.model_validate(item) for item in await LineStockService._items(db, episode.id)
            ]
            result = await db.execute(
                select(LineStockSale).where(LineStockSale.line_stock_id == episode.id).order_by(LineStockSale.id)
            )
            data["sales"] = [LineStockSaleResponse.model_validate(sale) for sale in result.scalars().all()]
        if balance is None and episode.counterparty_id is not None:
            balance = await LedgerAccumulator(db).current_balance(episode.counterparty_id)
        data["counterparty_balance"] = balance
        return data

    @staticmethod
    async def list_episodes(db: AsyncSession, page: int = 1, limit: int = 10, search: Optional[str] = None,
                            status: Optional[LineStockStatus] = None, start: Optional[datetime] = None,
                            end: Optional[datetime] = None) -> Dict[str, Any]:
        """Paginated episodes, newest first, after marking overdue ones."""
        await sync_overdue(db)

        filters = []
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(or_(
                LineStock.line_number.ilike(pattern),
                LineStock.person_name.ilike(pattern),
                LineStock.phone_number.ilike(pattern),
            ))
        if status:
            filters.append(LineStock.status == status)
        if start:
            filters.append(LineStock.issued_date >= as_utc(start))
        if end:
            filters.append(LineStock.issued_date <= as_utc(end))

        total = (await db.execute(select(func.count(LineStock.id)).where(*filters))).scalar()
        result = await db.execute(
            select(LineStock).where(*filters)
            .order_by(LineStock.created_at.desc(), LineStock.id.desc())
            .offset((page - 1) * limit).limit(limit)
        )
        episodes = result.scalars().all()

        ids = {e.counterparty_id for e in episodes if e.counterparty_id is not None}
        balances = {}
        if ids:
            rows = await db.execute(
                select(Counterparty.id, Counterparty.running_balance).where(Counterparty.id.in_(ids))
            )
            balances = {cid: round3(balance) for cid, balance in rows.all()}

        line_stocks = []
        for episode in episodes:
            line_stocks.append(await LineStockService.serialize(
                db, episode, balance=balances.get(episode.counterparty_id, round3(ZERO))
            ))

        return {
            "line_stocks": line_stocks,
            "total": total,
            "page": page,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    @staticmethod
    async def receivables(db: AsyncSession) -> List[Dict[str, Any]]:
        """Every line stocker with the worst status of their open episodes and current balance."""
        await sync_overdue(db)

        result = await db.execute(
            select(LineStock.counterparty_id, LineStock.status).where(
                LineStock.status.in_([LineStockStatus.ISSUED, LineStockStatus.OVERDUE])
            )
        )
        worst = {}
        counts = {}
        for counterparty_id, status in result.all():
            counts[counterparty_id] = counts.get(counterparty_id, 0) + 1
            if _STATUS_RANK[status] > _STATUS_RANK.get(worst.get(counterparty_id), 0):
                worst[counterparty_id] = status

        stockers = await db.execute(
            select(Counterparty)
            .where(Counterparty.counterparty_type == CounterpartyType.LINE_STOCKER)
            .order_by(Counterparty.name)
        )
        return [
            {
                "counterparty_id": counterparty.id,
                "person_name": counterparty.name,
                "phone_number": counterparty.phone_number,
                "status": worst[counterparty.id].value if counterparty.id in worst else "ACTIVE",
                "outstanding_balance": round3(counterparty.running_balance),
                "active_episodes": counts.get(counterparty.id, 0),
            }
            for counterparty in stockers.scalars().all()
        ]
