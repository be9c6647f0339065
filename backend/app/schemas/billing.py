"""
Billing summary schemas.
"""

from pydantic import BaseModel
from decimal import Decimal
from typing import Optional, List
from backend.app.schemas.expense import ExpenseResponse


class StockCards(BaseModel):
    total_stock_items: int
    total_stock_weight: Decimal
    sales_bills: int


class CustomerSaleRow(BaseModel):
    customer_name: str
    phone_number: str
    date: str
    time: str
    bill_number: str
    item_name: str
    weight: Decimal
    sri_cost: Decimal
    sri_bill: Decimal
    plus: Decimal


class PlusSummaryRow(BaseModel):
    """Sold weight at one plus percentage and the profit it yields."""
    plus: Decimal
    total_weight: Decimal
    profit: Decimal


class PlusSummaryTotals(BaseModel):
    total_weight: Decimal
    total_profit: Decimal


class DebtRow(BaseModel):
    name: str
    phone_number: str
    amount: Decimal


class BillingSummaryResponse(BaseModel):
    """Daily (selected_date) or monthly (selected_month) billing summary."""
    selected_date: Optional[str] = None
    selected_month: Optional[str] = None
    cards: StockCards
    customer_sales: List[CustomerSaleRow]
    plus_summary: List[PlusSummaryRow]
    plus_summary_totals: PlusSummaryTotals
    debt_payable: List[DebtRow]
    debt_receivable: List[DebtRow]
    expenses: List[ExpenseResponse]
    expenses_total: Decimal


class ExpensesByDateResponse(BaseModel):
    selected_date: str
    expenses: List[ExpenseResponse]
    total: Decimal
