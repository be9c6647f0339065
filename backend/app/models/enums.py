"""
User roles enumeration.

Defines the role types for back-office accounts.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Shop owner, may delete ledger transactions
        STAFF: Counter staff, records stock, sales and ledger entries
        READ_ONLY: Accountant view, cannot mutate anything
    """
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    READ_ONLY = "READ_ONLY"
