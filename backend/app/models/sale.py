"""
Customer sale database models.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, Numeric, ForeignKey
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.ledger_enums import SaleType, PaymentMode


class Sale(Base):
    """A counter sale to a customer; issued items leave stock."""
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    sale_type = Column(Enum(SaleType), nullable=False)
    customer_name = Column(String(200), nullable=False)
    customer_phone = Column(String(20), nullable=False)

    date = Column(String(10), nullable=False, index=True)
    time = Column(String(8), nullable=False)

    total_issued_value = Column(Numeric(14, 3), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)


class SaleItem(Base):
    """Issued item on a sale, carrying the SRI margin fields."""
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    stock_id = Column(Integer, ForeignKey("stock.id"), nullable=False)

    bill_no = Column(String(40), nullable=True)
    serial_no = Column(String(100), nullable=False)
    item_name = Column(String(200), nullable=False)

    quantity = Column(Integer, nullable=False, default=1)
    weight = Column(Numeric(14, 3), nullable=False, default=0)

    sri_cost = Column(Numeric(14, 3), nullable=False, default=0)
    sri_bill = Column(Numeric(14, 3), nullable=False, default=0)
    plus = Column(Numeric(14, 3), nullable=False, default=0)

    payment_mode = Column(Enum(PaymentMode), default=PaymentMode.CASH, nullable=False)
    paid_amount = Column(Numeric(14, 2), nullable=False, default=0)
