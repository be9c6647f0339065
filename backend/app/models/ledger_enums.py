"""
Ledger enumerations.
"""

import enum


class CounterpartyType(str, enum.Enum):
    """Who the running balance is kept against."""
    DEALER = "Dealer"
    LINE_STOCKER = "Line Stocker"


class BalanceType(str, enum.Enum):
    """Display direction of a running balance (derived from its sign)."""
    DEALER_OWES_US = "Dealer Owes Us"
    WE_OWE_DEALER = "We Owe Dealer"


class TransactionType(str, enum.Enum):
    """Ledger transaction type enumeration."""
    OPENING_BALANCE = "Opening Balance"
    STOCK_IN = "Stock In"
    LINE_STOCK_ISSUANCE = "Line Stock Issuance"
    LINE_STOCK_SETTLEMENT = "Line Stock Settlement"
    MANUAL_ADJUSTMENT = "Manual Adjustment"


class LineStockStatus(str, enum.Enum):
    """Line stock episode status."""
    ISSUED = "ISSUED"  # Items out with the sales-person
    OVERDUE = "OVERDUE"  # Expected return date passed, not settled
    SETTLED = "SETTLED"  # Sold/returned quantities finalized
    CLOSED = "CLOSED"  # Archived


class ExpenseType(str, enum.Enum):
    DAILY = "Daily"
    MONTHLY = "Monthly"


class SaleType(str, enum.Enum):
    B2B = "B2B"
    B2C = "B2C"


class PaymentMode(str, enum.Enum):
    CASH = "Cash"
    ONLINE = "Online"
