"""
Stock and customer sale Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from backend.app.models.ledger_enums import PaymentMode, SaleType


class StockCreate(BaseModel):
    """Schema for POST /stock. An existing serial number is restocked instead."""
    serial_no: str = Field(..., min_length=1, max_length=100)
    item_name: str = Field(..., min_length=1, max_length=200)
    jewel_name: str = Field("", max_length=200)
    jewellery_type: str = Field("", max_length=100)
    category: str = Field("", max_length=100)
    design_name: str = Field("", max_length=200)
    hsn_code: str = Field("", max_length=50)
    supplier_name: str = Field("", max_length=200)
    purchase_invoice_no: str = Field("", max_length=100)
    purity: str = Field("", max_length=20)
    gross_weight: Decimal = Field(Decimal("0"), ge=0)
    stone_weight: Decimal = Field(Decimal("0"), ge=0)
    net_weight: Decimal = Field(Decimal("0"), ge=0)
    wastage: Decimal = Field(Decimal("0"), ge=0)
    purchase_count: int = Field(1, gt=0)
    cost_price: Decimal = Field(Decimal("0"), ge=0)
    selling_price: Decimal = Field(Decimal("0"), ge=0)
    date: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: Optional[str] = Field(None, max_length=8)


class StockUpdate(BaseModel):
    """Schema for PUT /stock/{id}. Only supplied fields change."""
    item_name: Optional[str] = Field(None, min_length=1, max_length=200)
    jewel_name: Optional[str] = Field(None, max_length=200)
    jewellery_type: Optional[str] = Field(None, max_length=100)
    category: Optional[str] = Field(None, max_length=100)
    design_name: Optional[str] = Field(None, max_length=200)
    hsn_code: Optional[str] = Field(None, max_length=50)
    supplier_name: Optional[str] = Field(None, max_length=200)
    purity: Optional[str] = Field(None, max_length=20)
    gross_weight: Optional[Decimal] = Field(None, ge=0)
    stone_weight: Optional[Decimal] = Field(None, ge=0)
    net_weight: Optional[Decimal] = Field(None, ge=0)
    wastage: Optional[Decimal] = Field(None, ge=0)
    current_count: Optional[int] = Field(None, ge=0)
    cost_price: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)


class StockResponse(BaseModel):
    id: int
    serial_no: str
    item_name: str
    jewel_name: str
    jewellery_type: str
    category: str
    design_name: str
    hsn_code: str
    supplier_name: str
    purchase_invoice_no: str
    purity: str
    gross_weight: Decimal
    stone_weight: Decimal
    net_weight: Decimal
    wastage: Decimal
    current_count: int
    purchase_count: int
    cost_price: Decimal
    selling_price: Decimal
    date: Optional[str]
    time: Optional[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StockListResponse(BaseModel):
    """Stock page with footer totals over the whole filtered set."""
    items: List[StockResponse]
    total: int
    page: int
    total_pages: int
    total_count: int
    total_net_weight: Decimal


class CustomerDetails(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    phone: str = Field(..., min_length=1, max_length=20)


class SaleItemCreate(BaseModel):
    """An item leaving stock on a customer sale."""
    serial_no: str = Field(..., min_length=1)
    bill_no: Optional[str] = Field(None, max_length=40)
    quantity: int = Field(1, gt=0)
    weight: Optional[Decimal] = Field(None, ge=0)
    sri_cost: Decimal = Field(Decimal("0"), ge=0)
    sri_bill: Decimal = Field(Decimal("0"), ge=0)
    plus: Decimal = Field(Decimal("0"))
    payment_mode: PaymentMode = PaymentMode.CASH
    paid_amount: Decimal = Field(Decimal("0"), ge=0)


class SaleCreate(BaseModel):
    """Schema for POST /sales."""
    sale_type: SaleType = SaleType.B2C
    customer: CustomerDetails
    date: Optional[str] = Field(None, pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: Optional[str] = Field(None, max_length=8)
    issued_items: List[SaleItemCreate] = Field(..., min_length=1)


class SaleItemResponse(BaseModel):
    id: int
    stock_id: int
    bill_no: Optional[str]
    serial_no: str
    item_name: str
    quantity: int
    weight: Decimal
    sri_cost: Decimal
    sri_bill: Decimal
    plus: Decimal
    payment_mode: PaymentMode
    paid_amount: Decimal

    class Config:
        from_attributes = True


class SaleResponse(BaseModel):
    id: int
    sale_type: SaleType
    customer_name: str
    customer_phone: str
    date: str
    time: str
    total_issued_value: Decimal
    created_at: datetime
    items: List[SaleItemResponse] = []


class SaleListResponse(BaseModel):
    sales: List[SaleResponse]
    total: int
