"""
Dealer ledger Pydantic schemas.

Numeric inputs on stock-in and opening balance are accepted loosely (number
or string) and parsed by the ledger arithmetic, so malformed values fall back
to 0 unless strict numeric input is configured.
"""

import enum
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
from backend.app.models.ledger_enums import BalanceType, CounterpartyType, TransactionType

NumericInput = Optional[Union[Decimal, int, float, str]]


class StockInAction(str, enum.Enum):
    BOTH = "both"
    STOCK_ONLY = "stockOnly"
    TRANSACTION_ONLY = "transactionOnly"


class StockInItem(BaseModel):
    """One purchased item line."""
    serial_no: Optional[str] = None
    item_name: Optional[str] = None
    jewel_name: Optional[str] = None
    jewellery_type: Optional[str] = None
    category: Optional[str] = None
    purity: Optional[str] = None
    quantity: NumericInput = 1
    gross_weight: NumericInput = None
    net_weight: NumericInput = None


class StockInRequest(BaseModel):
    """
    Schema for POST /dealers/stock-in.

    dealer_id takes precedence over dealer_name. current_balance is what the
    client displayed; the stored balance is always used for the calculation.
    """
    dealer_id: Optional[int] = None
    dealer_name: Optional[str] = Field(None, max_length=200)
    phone_number: Optional[str] = Field(None, max_length=20)
    items: List[StockInItem] = Field(default_factory=list)
    date: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: Optional[str] = Field(None, max_length=8)
    current_balance: NumericInput = None
    total_gram_purchase: NumericInput = None
    sri_bill: NumericInput = None
    dealer_purchase_cost: NumericInput = None
    action_type: StockInAction = StockInAction.BOTH


class OpeningBalanceRequest(BaseModel):
    """Schema for POST /dealers/opening-balance."""
    dealer_id: Optional[int] = None
    name: Optional[str] = Field(None, max_length=200)
    phone_number: Optional[str] = Field(None, max_length=20)
    dealer_type: CounterpartyType = CounterpartyType.DEALER
    net_balance: NumericInput = None
    balance_type: Optional[BalanceType] = None
    date: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: Optional[str] = Field(None, max_length=8)


class ManualAdjustmentRequest(BaseModel):
    """Schema for POST /dealers/{id}/adjustments. amount is a signed gram delta."""
    amount: Decimal = Field(..., description="Signed delta in grams")
    note: str = Field(..., min_length=1, max_length=500)
    date: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: Optional[str] = Field(None, max_length=8)


class CounterpartyResponse(BaseModel):
    """Schema for dealer / line stocker response."""
    id: int
    name: str
    phone_number: str
    counterparty_type: CounterpartyType
    running_balance: Decimal
    balance_type: BalanceType
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TransactionResponse(BaseModel):
    """Schema for a ledger transaction."""
    id: int
    counterparty_id: int
    counterparty_type: CounterpartyType
    transaction_type: TransactionType
    sequence: int
    amount: Decimal
    balance_after: Decimal
    total_gram_purchase: Decimal
    sri_bill: Decimal
    user_purchase_grams: Decimal
    dealer_purchase_grams: Decimal
    net_value: Decimal
    items: List[Dict[str, Any]] = []
    note: Optional[str] = None
    line_stock_id: Optional[int] = None
    date: str
    time: str
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionRow(TransactionResponse):
    """Ledger table row with the counterparty's name."""
    name: str
    phone_number: str


class TransactionListResponse(BaseModel):
    transactions: List[TransactionRow]
    total: int


class DealerDetailResponse(BaseModel):
    dealer: CounterpartyResponse
    transactions: List[TransactionResponse]


class DealerListResponse(BaseModel):
    dealers: List[CounterpartyResponse]
    total: int


class StockInResponse(BaseModel):
    message: str
    dealer: CounterpartyResponse
    transaction: Optional[TransactionResponse] = None
    stock_saved: int


class TransactionDeleteResponse(BaseModel):
    message: str
    transaction_id: int
    counterparty_id: int
    balance_after: Decimal


class LedgerVerificationResponse(BaseModel):
    """Result of replaying a counterparty's deltas from zero."""
    counterparty_id: int
    consistent: bool
    replayed_balance: Decimal
    stored_balance: Decimal
    transaction_count: int
    mismatches: List[Dict[str, Any]] = []

    class Config:
        from_attributes = True
