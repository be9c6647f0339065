"""
Dealer Service (Domain Logic).

Stock-in purchases, opening balances and manual adjustments for dealers.
Every balance change is posted through the TransactionRecorder; callers
commit the session.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import ResourceNotFoundError, ValidationFailedError
from backend.app.domain.ledger.accumulator import LedgerAccumulator
from backend.app.domain.ledger.arithmetic import (
    ZERO,
    gross_balance_delta,
    net_transaction_value,
    parse_decimal_or_zero,
    purchase_cost,
    round3,
)
from backend.app.domain.ledger.recorder import TransactionRecorder, format_date, format_time
from backend.app.domain.sales.service import adjust_stock_count, find_stock_by_serial
from backend.app.models.counterparty import Counterparty
from backend.app.models.ledger_enums import BalanceType, CounterpartyType, TransactionType
from backend.app.models.ledger_transaction import LedgerTransaction
from backend.app.models.stock import Stock
from backend.app.schemas.dealer import (
    ManualAdjustmentRequest,
    OpeningBalanceRequest,
    StockInAction,
    StockInItem,
    StockInRequest,
)

logger = logging.getLogger(__name__)


@dataclass
class StockInResult:
    counterparty: Counterparty
    transaction: Optional[LedgerTransaction]
    stock_saved: int


def _sanitize_items(items: List[StockInItem], strict: bool) -> List[dict]:
    """Keep items with a serial, a name, a positive quantity and positive weights."""
    valid = []
    for item in items:
        serial_no = (item.serial_no or "").strip()
        item_name = (item.item_name or "").strip()
        quantity = parse_decimal_or_zero(item.quantity, allow_negative=False, strict=strict, field="quantity")
        gross_weight = round3(parse_decimal_or_zero(
            item.gross_weight, allow_negative=False, strict=strict, field="gross_weight"
        ))
        net_weight = round3(parse_decimal_or_zero(
            item.net_weight, allow_negative=False, strict=strict, field="net_weight"
        ))

        if not serial_no or not item_name or quantity <= 0 or gross_weight <= 0 or net_weight <= 0:
            logger.debug("Skipping invalid stock-in item", extra={"serial_no": serial_no})
            continue

        valid.append({
            "serial_no": serial_no,
            "item_name": item_name,
            "jewel_name": (item.jewel_name or item_name).strip(),
            "jewellery_type": (item.jewellery_type or "").strip(),
            "category": (item.category or "").strip(),
            "purity": (item.purity or "").strip(),
            "quantity": int(quantity),
            "gross_weight": gross_weight,
            "net_weight": net_weight,
        })
    return valid


class DealerService:

    @staticmethod
    async def resolve_dealer(db: AsyncSession, dealer_id: Optional[int], dealer_name: Optional[str],
                             phone_number: Optional[str],
                             counterparty_type: CounterpartyType = CounterpartyType.DEALER) -> Counterparty:
        """Explicit id wins; otherwise look the dealer up by name, creating it if new."""
        accumulator = LedgerAccumulator(db)
        if dealer_id is not None:
            return await accumulator.get(dealer_id)
        if not (dealer_name or "").strip():
            raise ValidationFailedError("Dealer ID or Name is required")
        return await accumulator.resolve_counterparty(
            dealer_name,
            phone_number or settings.default_dealer_phone,
            counterparty_type,
        )

    @staticmethod
    async def _upsert_stock(db: AsyncSession, item: dict, supplier_name: str, date: str, time: str) -> Stock:
        stock = await find_stock_by_serial(db, item["serial_no"])

        if stock:
            stock.item_name = item["item_name"]
            stock.jewel_name = item["jewel_name"]
            stock.jewellery_type = item["jewellery_type"] or stock.jewellery_type
            stock.category = item["category"] or stock.category
            stock.purity = item["purity"] or stock.purity
            stock.gross_weight = item["gross_weight"]
            stock.net_weight = item["net_weight"]
            await adjust_stock_count(db, stock, item["quantity"], purchased=item["quantity"])
        else:
            stock = Stock(
                serial_no=item["serial_no"],
                item_name=item["item_name"],
                jewel_name=item["jewel_name"],
                jewellery_type=item["jewellery_type"],
                category=item["category"],
                purity=item["purity"],
                gross_weight=item["gross_weight"],
                net_weight=item["net_weight"],
                current_count=item["quantity"],
                purchase_count=item["quantity"],
                supplier_name=supplier_name,
                date=date,
                time=time,
            )
            db.add(stock)

        await db.flush()
        return stock

    @staticmethod
    async def stock_in(db: AsyncSession, payload: StockInRequest) -> StockInResult:
        """
        Record a dealer purchase.

        Flow:
        1. Resolve the dealer (id, or name with auto-create)
        2. Upsert stock rows by serial number (unless transactionOnly)
        3. Post a Stock In record moving the balance from current to
           grossBalanceDelta(current, userPurchaseCost, dealerPurchaseCost)
           (unless stockOnly)

        Returns:
            StockInResult with the refreshed counterparty
        """
        strict = settings.strict_numeric_input
        save_stock = payload.action_type in (StockInAction.BOTH, StockInAction.STOCK_ONLY)
        save_transaction = payload.action_type in (StockInAction.BOTH, StockInAction.TRANSACTION_ONLY)

        items = _sanitize_items(payload.items, strict) if save_stock else []
        if save_stock and not items:
            raise ValidationFailedError("No valid stock items provided")

        dealer = await DealerService.resolve_dealer(db, payload.dealer_id, payload.dealer_name, payload.phone_number)

        now = datetime.now(timezone.utc)
        date = payload.date or format_date(now)
        time = payload.time or format_time(now)

        for item in items:
            await DealerService._upsert_stock(db, item, dealer.name, date, time)

        transaction = None
        if save_transaction:
            accumulator = LedgerAccumulator(db)
            current = await accumulator.current_balance(dealer.id)

            if payload.current_balance is not None:
                advisory = round3(parse_decimal_or_zero(payload.current_balance))
                if advisory != current:
                    logger.warning(
                        "Client balance differs from stored balance",
                        extra={"counterparty_id": dealer.id, "client": str(advisory), "stored": str(current)}
                    )

            total_gram_purchase = round3(parse_decimal_or_zero(
                payload.total_gram_purchase, allow_negative=False, strict=strict, field="total_gram_purchase"
            ))
            sri_bill = round3(parse_decimal_or_zero(
                payload.sri_bill, allow_negative=False, strict=strict, field="sri_bill"
            ))
            dealer_purchase = round3(parse_decimal_or_zero(
                payload.dealer_purchase_cost, allow_negative=False, strict=strict, field="dealer_purchase_cost"
            ))
            user_purchase = purchase_cost(total_gram_purchase, sri_bill)
            gross = gross_balance_delta(current, user_purchase, dealer_purchase)

            recorder = TransactionRecorder(db, accumulator)
            transaction = await recorder.post(
                dealer,
                TransactionType.STOCK_IN,
                gross - current,
                items=[
                    {**item, "gross_weight": str(item["gross_weight"]), "net_weight": str(item["net_weight"])}
                    for item in items
                ],
                timestamp=now,
                date=date,
                time=time,
                total_gram_purchase=total_gram_purchase,
                sri_bill=sri_bill,
                user_purchase_grams=user_purchase,
                dealer_purchase_grams=dealer_purchase,
                net_value=net_transaction_value(user_purchase, dealer_purchase),
            )

        dealer = await LedgerAccumulator(db).get(dealer.id)
        logger.info(
            "Dealer stock-in processed",
            extra={
                "counterparty_id": dealer.id,
                "action_type": payload.action_type.value,
                "stock_saved": len(items),
                "balance": str(dealer.running_balance),
            }
        )
        return StockInResult(counterparty=dealer, transaction=transaction, stock_saved=len(items))

    @staticmethod
    async def set_opening_balance(db: AsyncSession, payload: OpeningBalanceRequest) -> LedgerTransaction:
        """
        Move a counterparty's balance to the given opening value.

        The recorded delta is target minus the balance stored at write time,
        so the chain stays intact even when the counterparty already has
        history.
        """
        target = round3(parse_decimal_or_zero(
            payload.net_balance, strict=settings.strict_numeric_input, field="net_balance"
        ))
        if payload.balance_type == BalanceType.WE_OWE_DEALER:
            target = -abs(target)
        elif payload.balance_type == BalanceType.DEALER_OWES_US:
            target = abs(target)

        counterparty = await DealerService.resolve_dealer(
            db, payload.dealer_id, payload.name, payload.phone_number, payload.dealer_type
        )
        return await TransactionRecorder(db).post_balance(
            counterparty,
            TransactionType.OPENING_BALANCE,
            target,
            date=payload.date,
            time=payload.time,
            note=f"Opening balance set to {target}",
        )

    @staticmethod
    async def manual_adjustment(db: AsyncSession, counterparty_id: int,
                                payload: ManualAdjustmentRequest) -> LedgerTransaction:
        delta = round3(payload.amount)
        if delta == ZERO:
            raise ValidationFailedError("Adjustment amount must not be zero")

        accumulator = LedgerAccumulator(db)
        counterparty = await accumulator.get(counterparty_id)
        return await TransactionRecorder(db, accumulator).post(
            counterparty,
            TransactionType.MANUAL_ADJUSTMENT,
            delta,
            date=payload.date,
            time=payload.time,
            note=payload.note.strip(),
        )

    @staticmethod
    async def list_dealers(db: AsyncSession, counterparty_type: Optional[CounterpartyType] = None) -> List[Counterparty]:
        """Dealers by default; pass LINE_STOCKER for sales-people."""
        query = select(Counterparty).order_by(Counterparty.name)
        query = query.where(Counterparty.counterparty_type == (counterparty_type or CounterpartyType.DEALER))
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_dealer(db: AsyncSession, counterparty_id: int) -> Counterparty:
        return await LedgerAccumulator(db).get(counterparty_id)

    @staticmethod
    async def item_by_serial(db: AsyncSession, serial_no: str) -> Stock:
        stock = await find_stock_by_serial(db, serial_no)
        if not stock:
            raise ResourceNotFoundError("Item", serial_no)
        return stock

    @staticmethod
    async def transaction_rows(db: AsyncSession, counterparty_type: Optional[CounterpartyType] = None,
                               date_from: Optional[str] = None, date_to: Optional[str] = None,
                               limit: Optional[int] = None) -> List[dict]:
        """Ledger table rows (newest first) joined with the counterparty's name and phone."""
        transactions = await TransactionRecorder(db).history(
            counterparty_type=counterparty_type, date_from=date_from, date_to=date_to, limit=limit
        )
        ids = {t.counterparty_id for t in transactions}
        names = {}
        if ids:
            result = await db.execute(select(Counterparty).where(Counterparty.id.in_(ids)))
            names = {c.id: c for c in result.scalars().all()}

        rows = []
        for transaction in transactions:
            counterparty = names.get(transaction.counterparty_id)
            rows.append({
                "transaction": transaction,
                "name": counterparty.name if counterparty else "",
                "phone_number": counterparty.phone_number if counterparty else "",
            })
        return rows
