"""
Line stock Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from backend.app.models.ledger_enums import LineStockStatus
from backend.app.schemas.dealer import NumericInput


class LineStockItemCreate(BaseModel):
    product_id: int
    issued_qty: int = Field(..., gt=0)


class LineStockCreate(BaseModel):
    """
    Schema for POST /line-stock/create.

    total_value overrides the computed issued grams when supplied.
    """
    person_name: str = Field(..., min_length=1, max_length=200)
    phone_number: str = Field(..., min_length=1, max_length=20)
    issued_date: Optional[datetime] = None
    expected_return_date: datetime
    items: List[LineStockItemCreate] = Field(..., min_length=1)
    total_value: NumericInput = None


class LineStockManualCreate(BaseModel):
    """Schema for POST /line-stock/manual: a balance-only episode without items."""
    person_name: str = Field(..., min_length=1, max_length=200)
    phone_number: str = Field(..., min_length=1, max_length=20)
    issued_date: Optional[datetime] = None
    expected_return_date: Optional[datetime] = None
    status: LineStockStatus = LineStockStatus.ISSUED
    total_value: NumericInput = None


class SettleItem(BaseModel):
    """
    Settlement line.

    Products already on the episode only need sold_qty. A product that is not
    on the episode is appended as a manual item and must carry issued_qty.
    value, when given, replaces the computed returned grams for the line.
    """
    product_id: int
    sold_qty: int = Field(0, ge=0)
    issued_qty: Optional[int] = Field(None, gt=0)
    value: NumericInput = None


class LineStockSettle(BaseModel):
    """Schema for PUT /line-stock/settle/{id}."""
    items: List[SettleItem] = Field(..., min_length=1)


class CorrectionItem(BaseModel):
    """A returned-value fix for one product; without value the computed grams apply again."""
    product_id: int
    value: NumericInput = None


class LineStockCorrect(BaseModel):
    """Schema for PUT /line-stock/settle/{id}/correct."""
    items: List[CorrectionItem] = Field(..., min_length=1)
    note: str = Field("", max_length=500)


class LineStockItemResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    gross_weight: Decimal
    issued_qty: int
    sold_qty: int
    returned_qty: int
    total_issued_value: Decimal
    total_sold_value: Decimal
    total_returned_value: Decimal
    is_manual: bool

    class Config:
        from_attributes = True


class LineStockSaleResponse(BaseModel):
    id: int
    invoice_number: str
    product_id: int
    product_name: str
    quantity: int
    price: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class LineStockResponse(BaseModel):
    """Schema for a line stock episode with its items."""
    id: int
    line_number: str
    person_name: str
    phone_number: str
    counterparty_id: Optional[int]
    issued_date: Optional[datetime]
    expected_return_date: datetime
    status: LineStockStatus
    is_manual: bool
    total_issued: Decimal
    total_sold: Decimal
    total_returned: Decimal
    manual_value: Decimal
    settled_at: Optional[datetime] = None
    created_at: datetime
    items: List[LineStockItemResponse] = []
    sales: List[LineStockSaleResponse] = []
    counterparty_balance: Optional[Decimal] = None


class LineStockListResponse(BaseModel):
    line_stocks: List[LineStockResponse]
    total: int
    page: int
    total_pages: int


class ReceivableRow(BaseModel):
    """One line stocker with the worst status across their active episodes."""
    counterparty_id: int
    person_name: str
    phone_number: str
    status: str = Field(..., description="OVERDUE, ISSUED, or ACTIVE when nothing is out")
    outstanding_balance: Decimal
    active_episodes: int
