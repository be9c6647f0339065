"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    auth, dealers, line_stock,
    stock, sales,
    expenses, billing
)

router = APIRouter()

# Authentication endpoints
router.include_router(auth.router)

# Dealer ledger endpoints
router.include_router(dealers.router)

# Line stock endpoints
router.include_router(line_stock.router)

# Inventory and customer sales
router.include_router(stock.router)
router.include_router(sales.router)

# Expenses and billing summaries
router.include_router(expenses.router)
router.include_router(billing.router)
