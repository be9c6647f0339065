"""
Expense database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, Date, Enum, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.ledger_enums import ExpenseType


class Expense(Base):
    """Shop expense. amount is never negative."""
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    expense_name = Column(String(200), nullable=False)
    expense_type = Column(Enum(ExpenseType), default=ExpenseType.DAILY, nullable=False, index=True)
    amount = Column(Numeric(14, 3), nullable=False)
    notes = Column(String(500), nullable=False, default="")

    expense_date = Column(Date, nullable=False, index=True)
    expense_time = Column(String(20), nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Expense(id={self.id}, name='{self.expense_name}', amount={self.amount})>"
