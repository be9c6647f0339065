"""
Counterparty database model.

A dealer or line-stock sales-person with a gram-denominated running balance.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, Numeric, Index
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.ledger_enums import BalanceType, CounterpartyType


class Counterparty(Base):
    """
    Counterparty model.

    running_balance is signed grams: positive means the counterparty owes the
    shop, negative means the shop owes the counterparty.
    Only LedgerAccumulator writes running_balance and version.
    Rows are never deleted.
    """
    __tablename__ = "counterparties"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    name = Column(String(200), nullable=False)
    # Trimmed, case-folded name used for lookups only, never as identity
    normalized_name = Column(String(200), nullable=False)
    phone_number = Column(String(20), nullable=False, default="")

    counterparty_type = Column(Enum(CounterpartyType), default=CounterpartyType.DEALER, nullable=False, index=True)

    running_balance = Column(Numeric(14, 3), nullable=False, default=0)

    # Optimistic concurrency token, bumped on every balance write
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_counterparties_lookup", "normalized_name", "counterparty_type", unique=True),
    )

    def __repr__(self):
        return f"<Counterparty(id={self.id}, name='{self.name}', balance={self.running_balance})>"

    @property
    def balance_type(self) -> BalanceType:
        """Display direction derived from the sign of the balance."""
        if (self.running_balance or 0) >= 0:
            return BalanceType.DEALER_OWES_US
        return BalanceType.WE_OWE_DEALER
