"""
Stock database model.

One row per serial number; current_count tracks pieces on hand.
"""

from sqlalchemy import Column, Integer, String, DateTime, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base


class Stock(Base):
    __tablename__ = "stock"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    serial_no = Column(String(100), unique=True, index=True, nullable=False)

    item_name = Column(String(200), nullable=False)
    jewel_name = Column(String(200), nullable=False, default="")
    jewellery_type = Column(String(100), nullable=False, default="")
    category = Column(String(100), nullable=False, default="")
    design_name = Column(String(200), nullable=False, default="")
    hsn_code = Column(String(50), nullable=False, default="")
    supplier_name = Column(String(200), nullable=False, default="")
    purchase_invoice_no = Column(String(100), nullable=False, default="")
    purity = Column(String(20), nullable=False, default="")

    # Weights per piece (grams)
    gross_weight = Column(Numeric(14, 3), nullable=False, default=0)
    stone_weight = Column(Numeric(14, 3), nullable=False, default=0)
    net_weight = Column(Numeric(14, 3), nullable=False, default=0)
    wastage = Column(Numeric(14, 3), nullable=False, default=0)

    current_count = Column(Integer, nullable=False, default=1)
    purchase_count = Column(Integer, nullable=False, default=1)

    cost_price = Column(Numeric(14, 2), nullable=False, default=0)
    selling_price = Column(Numeric(14, 2), nullable=False, default=0)

    date = Column(String(10), nullable=True)
    time = Column(String(8), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Stock(id={self.id}, serial_no='{self.serial_no}', count={self.current_count})>"
