"""
Billing Service (Domain Logic).

Read-only daily and monthly summaries: stock cards, customer sales, the
plus (margin) summary, dealer debts as of the period end, and expenses.
"""

import re
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.exceptions import ValidationFailedError
from backend.app.domain.ledger.arithmetic import ZERO, expense_total, round3
from backend.app.models.counterparty import Counterparty
from backend.app.models.expense import Expense
from backend.app.models.ledger_transaction import LedgerTransaction
from backend.app.models.sale import Sale, SaleItem
from backend.app.models.stock import Stock

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")


def parse_date_input(value: str) -> Tuple[date, date]:
    """YYYY-MM-DD -> [start, end) covering that day."""
    if not value or not _DATE_RE.match(value):
        raise ValidationFailedError("Invalid date format. Use YYYY-MM-DD")
    try:
        start = date.fromisoformat(value)
    except ValueError:
        raise ValidationFailedError("Invalid date value")
    return start, start + timedelta(days=1)


def parse_month_input(value: str) -> Tuple[date, date]:
    """YYYY-MM -> [start, end) covering that month."""
    if not value or not _MONTH_RE.match(value):
        raise ValidationFailedError("Invalid month format. Use YYYY-MM")
    year, month = int(value[:4]), int(value[5:])
    if not 1 <= month <= 12:
        raise ValidationFailedError("Invalid month value")
    try:
        start = date(year, month, 1)
        end = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    except ValueError:
        raise ValidationFailedError("Invalid month value")
    return start, end


class BillingService:

    @staticmethod
    async def stock_cards(db: AsyncSession, start: date, end: date) -> Dict[str, Any]:
        item_count = (await db.execute(select(func.count(Stock.id)))).scalar() or 0
        total_weight = (await db.execute(
            select(func.coalesce(func.sum(Stock.net_weight * Stock.current_count), 0))
        )).scalar()
        bills = (await db.execute(
            select(func.count(Sale.id)).where(Sale.date >= start.isoformat(), Sale.date < end.isoformat())
        )).scalar() or 0
        return {
            "total_stock_items": item_count,
            "total_stock_weight": round3(total_weight),
            "sales_bills": bills,
        }

    @staticmethod
    async def customer_sales(db: AsyncSession, start: date, end: date) -> List[Dict[str, Any]]:
        """One row per issued sale item in the period, newest first."""
        result = await db.execute(
            select(Sale, SaleItem)
            .join(SaleItem, SaleItem.sale_id == Sale.id)
            .where(Sale.date >= start.isoformat(), Sale.date < end.isoformat())
            .order_by(Sale.date.desc(), Sale.time.desc(), SaleItem.id)
        )
        return [
            {
                "customer_name": sale.customer_name or "-",
                "phone_number": sale.customer_phone or "-",
                "date": sale.date,
                "time": sale.time or "-",
                "bill_number": item.bill_no or f"BILL-{sale.id:06d}",
                "item_name": item.item_name or "-",
                "weight": round3(item.weight),
                "sri_cost": round3(item.sri_cost),
                "sri_bill": round3(item.sri_bill),
                "plus": round3(item.plus),
            }
            for sale, item in result.all()
        ]

    @staticmethod
    def plus_summary(rows: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], Dict[str, Decimal]]:
        """Group sold weight by plus percentage; profit = round3(plus * weight / 100)."""
        grouped: Dict[Decimal, Decimal] = {}
        for row in rows:
            grouped[row["plus"]] = grouped.get(row["plus"], ZERO) + row["weight"]

        summary = []
        for plus in sorted(grouped):
            total_weight = round3(grouped[plus])
            summary.append({
                "plus": plus,
                "total_weight": total_weight,
                "profit": round3(plus * total_weight / 100),
            })

        totals = {
            "total_weight": round3(sum((row["total_weight"] for row in summary), ZERO)),
            "total_profit": round3(sum((row["profit"] for row in summary), ZERO)),
        }
        return summary, totals

    @staticmethod
    async def debts(db: AsyncSession, end: date) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """
        Each counterparty's balance as of `end`: the sum of its ledger deltas
        dated before `end`.

        While row dates follow sequence order this equals the latest
        balance_after before `end`. A backdated row only counts the deltas
        dated inside the window.

        Negative balances are payable (shown as positive amounts), the rest
        receivable.
        """
        result = await db.execute(
            select(
                Counterparty.name,
                Counterparty.phone_number,
                func.sum(LedgerTransaction.amount).label("balance"),
            )
            .join(Counterparty, Counterparty.id == LedgerTransaction.counterparty_id)
            .where(LedgerTransaction.date < end.isoformat())
            .group_by(Counterparty.id, Counterparty.name, Counterparty.phone_number)
            .order_by(Counterparty.name)
        )

        payable, receivable = [], []
        for name, phone_number, balance in result.all():
            balance = round3(balance)
            row = {"name": name or "-", "phone_number": phone_number or "-", "amount": abs(balance)}
            if balance < 0:
                payable.append(row)
            else:
                receivable.append(row)
        return payable, receivable

    @staticmethod
    async def expenses_between(db: AsyncSession, start: date, end: date) -> Tuple[List[Expense], Decimal]:
        result = await db.execute(
            select(Expense)
            .where(Expense.expense_date >= start, Expense.expense_date < end)
            .order_by(Expense.created_at, Expense.id)
        )
        expenses = list(result.scalars().all())
        return expenses, expense_total(e.amount for e in expenses)

    @staticmethod
    async def _summary(db: AsyncSession, start: date, end: date) -> Dict[str, Any]:
        sales = await BillingService.customer_sales(db, start, end)
        plus_rows, plus_totals = BillingService.plus_summary(sales)
        payable, receivable = await BillingService.debts(db, end)
        expenses, expenses_total = await BillingService.expenses_between(db, start, end)
        return {
            "cards": await BillingService.stock_cards(db, start, end),
            "customer_sales": sales,
            "plus_summary": plus_rows,
            "plus_summary_totals": plus_totals,
            "debt_payable": payable,
            "debt_receivable": receivable,
            "expenses": expenses,
            "expenses_total": expenses_total,
        }

    @staticmethod
    async def billing_summary(db: AsyncSession, selected_date: str) -> Dict[str, Any]:
        start, end = parse_date_input(selected_date)
        summary = await BillingService._summary(db, start, end)
        summary["selected_date"] = selected_date
        return summary

    @staticmethod
    async def monthly_summary(db: AsyncSession, selected_month: str) -> Dict[str, Any]:
        start, end = parse_month_input(selected_month)
        summary = await BillingService._summary(db, start, end)
        summary["selected_month"] = selected_month
        return summary

    @staticmethod
    async def expenses_by_date(db: AsyncSession, selected_date: str) -> Dict[str, Any]:
        start, end = parse_date_input(selected_date)
        expenses, total = await BillingService.expenses_between(db, start, end)
        return {"selected_date": selected_date, "expenses": expenses, "total": total}
