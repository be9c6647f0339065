"""
Sales Service (Domain Logic).

Counter sales to customers and the stock bookkeeping behind them.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ResourceNotFoundError, ValidationFailedError
from backend.app.domain.ledger.arithmetic import ZERO, round3
from backend.app.domain.ledger.recorder import format_date, format_time
from backend.app.models.sale import Sale, SaleItem
from backend.app.models.stock import Stock
from backend.app.schemas.sales import SaleCreate, SaleItemResponse, StockCreate

logger = logging.getLogger(__name__)


async def find_stock_by_serial(db: AsyncSession, serial_no: str) -> Optional[Stock]:
    """Case-insensitive serial number lookup."""
    result = await db.execute(
        select(Stock).where(func.lower(Stock.serial_no) == serial_no.strip().lower())
    )
    return result.scalar_one_or_none()


async def adjust_stock_count(db: AsyncSession, stock: Stock, change: int, purchased: int = 0) -> Stock:
    """
    Add change pieces to a stock row as one SQL update.

    Concurrent adjustments on the same row all land. A negative change only
    applies while enough pieces are on hand.

    Raises:
        ValidationFailedError: not enough pieces on hand
    """
    statement = update(Stock).where(Stock.id == stock.id)
    if change < 0:
        statement = statement.where(Stock.current_count >= -change)
    values = {"current_count": Stock.current_count + change}
    if purchased:
        values["purchase_count"] = Stock.purchase_count + purchased
    result = await db.execute(statement.values(**values).execution_options(synchronize_session=False))
    await db.refresh(stock, ["current_count", "purchase_count"])

    if result.rowcount == 0:
        raise ValidationFailedError(
            f"Insufficient stock for {stock.item_name}. Available: {stock.current_count}",
            details={"product_id": stock.id, "available": stock.current_count, "requested": -change},
        )
    return stock


class StockService:

    @staticmethod
    async def create_or_restock(db: AsyncSession, payload: StockCreate) -> Tuple[Stock, bool]:
        """
        Add a stock row, or add purchase_count pieces to the row with the same serial.

        Returns:
            (stock, created)
        """
        stock = await find_stock_by_serial(db, payload.serial_no)
        if stock:
            await adjust_stock_count(db, stock, payload.purchase_count, purchased=payload.purchase_count)
            logger.info("Stock restocked", extra={"stock_id": stock.id, "added": payload.purchase_count})
            return stock, False

        now = datetime.now(timezone.utc)
        data = payload.model_dump(exclude={"date", "time"})
        data["serial_no"] = payload.serial_no.strip()
        data["item_name"] = payload.item_name.strip()
        stock = Stock(
            **data,
            current_count=payload.purchase_count,
            date=payload.date or format_date(now),
            time=payload.time or format_time(now),
        )
        db.add(stock)
        await db.flush()
        logger.info("Stock created", extra={"stock_id": stock.id, "serial_no": stock.serial_no})
        return stock, True


class SalesService:

    @staticmethod
    async def create_sale(db: AsyncSession, payload: SaleCreate) -> Sale:
        """
        Record a customer sale and take the issued pieces out of stock.

        All items are checked before any count changes.

        Raises:
            ResourceNotFoundError: unknown serial number
            ValidationFailedError: not enough pieces on hand
        """
        resolved = []
        for item in payload.issued_items:
            stock = await find_stock_by_serial(db, item.serial_no)
            if not stock:
                raise ResourceNotFoundError("Stock item", item.serial_no)
            already = sum(qty for s, _, qty in resolved if s.id == stock.id)
            available = (stock.current_count or 0) - already
            if available < item.quantity:
                raise ValidationFailedError(
                    f"Insufficient stock for item: {item.serial_no}. "
                    f"Available: {available}, Requested: {item.quantity}",
                    details={"serial_no": item.serial_no, "available": available, "requested": item.quantity},
                )
            resolved.append((stock, item, item.quantity))

        now = datetime.now(timezone.utc)
        sale = Sale(
            sale_type=payload.sale_type,
            customer_name=payload.customer.name.strip(),
            customer_phone=payload.customer.phone.strip(),
            date=payload.date or format_date(now),
            time=payload.time or format_time(now),
            total_issued_value=round3(sum((item.sri_bill for item in payload.issued_items), ZERO)),
        )
        db.add(sale)
        await db.flush()

        for stock, item, quantity in resolved:
            await adjust_stock_count(db, stock, -quantity)
            db.add(SaleItem(
                sale_id=sale.id,
                stock_id=stock.id,
                bill_no=item.bill_no,
                serial_no=stock.serial_no,
                item_name=stock.item_name,
                quantity=quantity,
                weight=round3(item.weight if item.weight is not None else stock.net_weight),
                sri_cost=round3(item.sri_cost),
                sri_bill=round3(item.sri_bill),
                plus=round3(item.plus),
                payment_mode=item.payment_mode,
                paid_amount=item.paid_amount,
            ))
        await db.flush()

        logger.info("Sale recorded", extra={"sale_id": sale.id, "items": len(resolved)})
        return sale

    @staticmethod
    async def serialize(db: AsyncSession, sale: Sale) -> Dict[str, Any]:
        await db.refresh(sale)
        result = await db.execute(select(SaleItem).where(SaleItem.sale_id == sale.id).order_by(SaleItem.id))
        data = {column.name: getattr(sale, column.name) for column in Sale.__table__.columns}
        data["items"] = [SaleItemResponse.model_validate(item) for item in result.scalars().all()]
        return data

    @staticmethod
    async def list_sales(db: AsyncSession, date_from: Optional[str] = None, date_to: Optional[str] = None,
                         limit: int = 100) -> List[Dict[str, Any]]:
        query = select(Sale).order_by(Sale.date.desc(), Sale.time.desc(), Sale.id.desc())
        if date_from:
            query = query.where(Sale.date >= date_from)
        if date_to:
            query = query.where(Sale.date <= date_to)
        query = query.limit(limit)
        result = await db.execute(query)
        return [await SalesService.serialize(db, sale) for sale in result.scalars().all()]
