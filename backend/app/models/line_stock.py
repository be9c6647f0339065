"""
Line Stock database models.

A line stock episode is jewellery issued on consignment to a sales-person,
settled later by sold vs. returned quantity.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, Numeric, Boolean, ForeignKey
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.ledger_enums import LineStockStatus


class LineStock(Base):
    """
    Line stock episode.

    Lifecycle: ISSUED -> (OVERDUE) -> SETTLED. SETTLED and CLOSED are terminal.
    """
    __tablename__ = "line_stocks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    line_number = Column(String(20), unique=True, nullable=False, index=True)

    person_name = Column(String(200), nullable=False)
    phone_number = Column(String(20), nullable=False, default="")
    counterparty_id = Column(Integer, ForeignKey("counterparties.id"), nullable=True, index=True)

    issued_date = Column(DateTime(timezone=True), nullable=True, index=True)
    expected_return_date = Column(DateTime(timezone=True), nullable=False)

    status = Column(Enum(LineStockStatus), default=LineStockStatus.ISSUED, nullable=False, index=True)
    is_manual = Column(Boolean, default=False, nullable=False)

    # Totals (grams)
    total_issued = Column(Numeric(14, 3), nullable=False, default=0)
    total_sold = Column(Numeric(14, 3), nullable=False, default=0)
    total_returned = Column(Numeric(14, 3), nullable=False, default=0)
    manual_value = Column(Numeric(14, 3), nullable=False, default=0)

    settled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<LineStock(id={self.id}, line_number='{self.line_number}', status='{self.status.value}')>"


class LineStockItem(Base):
    """One product line inside an episode. sold_qty + returned_qty == issued_qty once settled."""
    __tablename__ = "line_stock_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    line_stock_id = Column(Integer, ForeignKey("line_stocks.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("stock.id"), nullable=False, index=True)
    product_name = Column(String(200), nullable=False)

    # Gross weight per piece at issue time
    gross_weight = Column(Numeric(14, 3), nullable=False, default=0)

    issued_qty = Column(Integer, nullable=False)
    sold_qty = Column(Integer, nullable=False, default=0)
    returned_qty = Column(Integer, nullable=False, default=0)

    total_issued_value = Column(Numeric(14, 3), nullable=False, default=0)
    total_sold_value = Column(Numeric(14, 3), nullable=False, default=0)
    total_returned_value = Column(Numeric(14, 3), nullable=False, default=0)

    # Appended during settlement instead of at issue time
    is_manual = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<LineStockItem(id={self.id}, product_id={self.product_id}, issued={self.issued_qty})>"


class LineStockSale(Base):
    """Invoice row for pieces a sales-person sold during a line stock episode."""
    __tablename__ = "line_stock_sales"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    invoice_number = Column(String(40), unique=True, nullable=False)
    line_stock_id = Column(Integer, ForeignKey("line_stocks.id"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("stock.id"), nullable=False)
    product_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(14, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
