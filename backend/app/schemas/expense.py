"""
Expense Pydantic schemas.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import date as date_type, datetime
from decimal import Decimal
from typing import List, Optional
from backend.app.models.ledger_enums import ExpenseType


class ExpenseCreate(BaseModel):
    """Schema for POST /expenses. date defaults to today."""
    expense_name: str = Field(..., min_length=1, max_length=200)
    expense_type: ExpenseType
    amount: Decimal = Field(..., ge=0, description="Non-negative amount")
    notes: str = Field("", max_length=500)
    date: Optional[date_type] = None

    @field_validator("expense_name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Expense name is required")
        return value


class ExpenseUpdate(BaseModel):
    """Schema for PUT /expenses/{id}. Only supplied fields change."""
    expense_name: Optional[str] = Field(None, min_length=1, max_length=200)
    expense_type: Optional[ExpenseType] = None
    amount: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=500)
    date: Optional[date_type] = None

    @field_validator("expense_name")
    @classmethod
    def name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("Expense name is required")
        return value


class ExpenseResponse(BaseModel):
    id: int
    expense_name: str
    expense_type: ExpenseType
    amount: Decimal
    notes: str
    expense_date: date_type
    expense_time: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ExpenseListResponse(BaseModel):
    expenses: List[ExpenseResponse]
    total: Decimal
    today_total: Decimal
    month_total: Decimal
