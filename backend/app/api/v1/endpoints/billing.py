"""
Billing API endpoints.

Read-only daily and monthly summaries.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.domain.billing.billing_service import BillingService
from backend.app.schemas.billing import BillingSummaryResponse, ExpensesByDateResponse
from backend.app.schemas.expense import ExpenseResponse

router = APIRouter(prefix="/billing", tags=["Billing"])


def _to_response(summary: dict) -> BillingSummaryResponse:
    summary["expenses"] = [ExpenseResponse.model_validate(e) for e in summary["expenses"]]
    return BillingSummaryResponse(**summary)


@router.get("/summary", response_model=BillingSummaryResponse)
async def billing_summary(
    date: str = Query(..., description="YYYY-MM-DD"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Stock cards, sales, plus summary, debts and expenses for one day."""
    return _to_response(await BillingService.billing_summary(db, date))


@router.get("/monthly-summary", response_model=BillingSummaryResponse)
async def monthly_billing_summary(
    month: str = Query(..., description="YYYY-MM"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return _to_response(await BillingService.monthly_summary(db, month))


@router.get("/expenses", response_model=ExpensesByDateResponse)
async def expenses_by_date(
    date: str = Query(..., description="YYYY-MM-DD"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Expenses of one day with their total rounded to 2 decimals."""
    data = await BillingService.expenses_by_date(db, date)
    return ExpensesByDateResponse(
        selected_date=data["selected_date"],
        expenses=[ExpenseResponse.model_validate(e) for e in data["expenses"]],
        total=data["total"],
    )
