"""
Expense API endpoints.

Plain CRUD over shop expenses with today / this-month totals on the list.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_writer
from backend.app.domain.billing.billing_service import BillingService, parse_month_input
from backend.app.domain.ledger.arithmetic import expense_total, round3
from backend.app.models.expense import Expense
from backend.app.models.ledger_enums import ExpenseType
from backend.app.schemas.expense import ExpenseCreate, ExpenseUpdate, ExpenseResponse, ExpenseListResponse
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/expenses", tags=["Expenses"])


def _client_ip(request: Request):
    return request.client.host if request.client else None


def _server_time(moment: datetime) -> str:
    return moment.strftime("%I:%M:%S %p")


async def _get_expense(db: AsyncSession, expense_id: int) -> Expense:
    expense = await db.get(Expense, expense_id)
    if not expense:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Expense not found"
        )
    return expense


@router.post("", response_model=ExpenseResponse, status_code=status.HTTP_201_CREATED)
async def create_expense(
    payload: ExpenseCreate,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """Create an expense. The time is stamped by the server."""
    now = datetime.now(timezone.utc)
    expense = Expense(
        expense_name=payload.expense_name,
        expense_type=payload.expense_type,
        amount=round3(payload.amount),
        notes=payload.notes.strip(),
        expense_date=payload.date or now.date(),
        expense_time=_server_time(now),
    )
    db.add(expense)
    await db.flush()

    await log_event(
        db=db,
        action=AuditAction.EXPENSE_CREATED,
        actor=current_user,
        entity_type="expense",
        entity_id=expense.id,
        ip_address=_client_ip(request),
        metadata={"expense_name": expense.expense_name, "amount": expense.amount}
    )
    await db.refresh(expense)
    return ExpenseResponse.model_validate(expense)


@router.get("", response_model=ExpenseListResponse)
async def list_expenses(
    search: Optional[str] = Query(None),
    expense_type: Optional[ExpenseType] = Query(None),
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    List expenses, newest first.

    Without a from/to range only today's expenses are returned.
    """
    today = datetime.now(timezone.utc).date()
    query = select(Expense)

    if date_from is None and date_to is None:
        query = query.where(Expense.expense_date == today)
    if date_from is not None:
        query = query.where(Expense.expense_date >= date_from)
    if date_to is not None:
        query = query.where(Expense.expense_date <= date_to)
    if expense_type:
        query = query.where(Expense.expense_type == expense_type)
    if search and search.strip():
        query = query.where(Expense.expense_name.ilike(f"%{search.strip()}%"))

    result = await db.execute(query.order_by(Expense.expense_date.desc(), Expense.created_at.desc(), Expense.id.desc()))
    expenses = result.scalars().all()

    _, today_total = await BillingService.expenses_between(db, today, today + timedelta(days=1))
    month_start, month_end = parse_month_input(today.strftime("%Y-%m"))
    _, month_total = await BillingService.expenses_between(db, month_start, month_end)

    return ExpenseListResponse(
        expenses=[ExpenseResponse.model_validate(e) for e in expenses],
        total=expense_total(e.amount for e in expenses),
        today_total=today_total,
        month_total=month_total,
    )


@router.put("/{expense_id}", response_model=ExpenseResponse)
async def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    expense = await _get_expense(db, expense_id)

    changes = payload.model_dump(exclude_unset=True)
    if "date" in changes:
        expense_date = changes.pop("date")
        if expense_date is not None:
            expense.expense_date = expense_date
    if changes.get("amount") is not None:
        changes["amount"] = round3(changes["amount"])
    if changes.get("notes") is not None:
        changes["notes"] = changes["notes"].strip()
    for field, value in changes.items():
        if value is not None:
            setattr(expense, field, value)
    await db.flush()

    await log_event(
        db=db,
        action=AuditAction.EXPENSE_UPDATED,
        actor=current_user,
        entity_type="expense",
        entity_id=expense.id,
        ip_address=_client_ip(request),
        metadata={"fields": sorted(payload.model_dump(exclude_unset=True).keys())}
    )
    await db.refresh(expense)
    return ExpenseResponse.model_validate(expense)


@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    expense_id: int,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    expense = await _get_expense(db, expense_id)
    metadata = {"expense_name": expense.expense_name, "amount": expense.amount}
    await db.delete(expense)

    await log_event(
        db=db,
        action=AuditAction.EXPENSE_DELETED,
        actor=current_user,
        entity_type="expense",
        entity_id=expense_id,
        ip_address=_client_ip(request),
        metadata=metadata
    )
