"""
Ledger Transaction database model.

Append-only history behind every counterparty balance.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, Numeric, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.ledger_enums import TransactionType, CounterpartyType


class LedgerTransaction(Base):
    """
    Ledger transaction model.

    Invariant, per counterparty ordered by sequence:
        balance_after[n] == balance_after[n-1] + amount[n]
    Rows are never updated. Only the latest row of a counterparty may be
    deleted (its amount is reversed on the balance at the same time).
    """
    __tablename__ = "ledger_transactions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    counterparty_id = Column(Integer, ForeignKey("counterparties.id"), nullable=False, index=True)
    counterparty_type = Column(Enum(CounterpartyType), nullable=False)
    transaction_type = Column(Enum(TransactionType), nullable=False, index=True)

    # Counterparty version after this transaction was applied
    sequence = Column(Integer, nullable=False)

    # Signed delta and post-transaction snapshot (grams)
    amount = Column(Numeric(14, 3), nullable=False)
    balance_after = Column(Numeric(14, 3), nullable=False)

    # Stock-in breakdown
    total_gram_purchase = Column(Numeric(14, 3), nullable=False, default=0)
    sri_bill = Column(Numeric(14, 3), nullable=False, default=0)
    user_purchase_grams = Column(Numeric(14, 3), nullable=False, default=0)
    dealer_purchase_grams = Column(Numeric(14, 3), nullable=False, default=0)
    net_value = Column(Numeric(14, 3), nullable=False, default=0)

    items = Column(JSON, nullable=False, default=list)
    note = Column(String(500), nullable=True)
    line_stock_id = Column(Integer, ForeignKey("line_stocks.id"), nullable=True, index=True)

    # Business date/time as entered at the counter
    date = Column(String(10), nullable=False, index=True)
    time = Column(String(8), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("counterparty_id", "sequence", name="uq_ledger_transactions_sequence"),
    )

    def __repr__(self):
        return (
            f"<LedgerTransaction(id={self.id}, type='{self.transaction_type.value}', "
            f"amount={self.amount}, balance_after={self.balance_after})>"
        )
