"""
Line Stock API endpoints.

Issue jewellery to sales-people, record balance-only episodes, settle, correct
settled values and list receivables.
"""

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_writer
from backend.app.domain.line_stock.service import LineStockService
from backend.app.models.ledger_enums import LineStockStatus
from backend.app.schemas.line_stock import (
    LineStockCorrect,
    LineStockCreate,
    LineStockListResponse,
    LineStockManualCreate,
    LineStockResponse,
    LineStockSettle,
    ReceivableRow,
)
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/line-stock", tags=["Line Stock"])


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.post("/create", response_model=LineStockResponse, status_code=status.HTTP_201_CREATED)
async def create_line_stock(
    payload: LineStockCreate,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """
    Issue items to a sales-person.

    Stock counts drop by the issued quantities and the issued grams are added
    to the person's running balance.
    """
    episode = await LineStockService.issue(db, payload)

    await log_event(
        db=db,
        action=AuditAction.LINE_STOCK_ISSUED,
        actor=current_user,
        entity_type="line_stock",
        entity_id=episode.id,
        ip_address=_client_ip(request),
        metadata={
            "line_number": episode.line_number,
            "counterparty_id": episode.counterparty_id,
            "total_issued": episode.total_issued,
        }
    )
    return LineStockResponse(**await LineStockService.serialize(db, episode))


@router.post("/manual", response_model=LineStockResponse, status_code=status.HTTP_201_CREATED)
async def create_manual_line_stock(
    payload: LineStockManualCreate,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """Record a balance-only episode (no items) for carried-over balances."""
    episode = await LineStockService.create_manual(db, payload)

    await log_event(
        db=db,
        action=AuditAction.LINE_STOCK_MANUAL_CREATED,
        actor=current_user,
        entity_type="line_stock",
        entity_id=episode.id,
        ip_address=_client_ip(request),
        metadata={
            "line_number": episode.line_number,
            "counterparty_id": episode.counterparty_id,
            "manual_value": episode.manual_value,
        }
    )
    return LineStockResponse(**await LineStockService.serialize(db, episode))


@router.get("", response_model=LineStockListResponse)
async def list_line_stocks(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Line number, person or phone"),
    status_filter: Optional[LineStockStatus] = Query(None, alias="status"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Paginated episodes, newest first. Past-due episodes are marked OVERDUE first."""
    data = await LineStockService.list_episodes(db, page, limit, search, status_filter, start_date, end_date)
    await db.commit()
    return LineStockListResponse(
        line_stocks=[LineStockResponse(**row) for row in data["line_stocks"]],
        total=data["total"],
        page=data["page"],
        total_pages=data["total_pages"],
    )


@router.get("/receivable", response_model=List[ReceivableRow])
async def list_receivables(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """One row per line stocker with outstanding balance and worst open status."""
    rows = await LineStockService.receivables(db)
    await db.commit()
    return [ReceivableRow(**row) for row in rows]


@router.get("/{line_stock_id}", response_model=LineStockResponse)
async def get_line_stock(
    line_stock_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return LineStockResponse(**await LineStockService.detail(db, line_stock_id))


@router.put("/settle/{line_stock_id}", response_model=LineStockResponse)
async def settle_line_stock(
    line_stock_id: int,
    payload: LineStockSettle,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """
    Settle an episode with sold quantities per product.

    Returned pieces go back to stock and their grams come off the balance.
    """
    episode = await LineStockService.settle(db, line_stock_id, payload)

    await log_event(
        db=db,
        action=AuditAction.LINE_STOCK_SETTLED,
        actor=current_user,
        entity_type="line_stock",
        entity_id=episode.id,
        ip_address=_client_ip(request),
        metadata={
            "line_number": episode.line_number,
            "counterparty_id": episode.counterparty_id,
            "total_sold": episode.total_sold,
            "total_returned": episode.total_returned,
        }
    )
    return LineStockResponse(**await LineStockService.serialize(db, episode))


@router.put("/settle/{line_stock_id}/correct", response_model=LineStockResponse)
async def correct_line_stock_settlement(
    line_stock_id: int,
    payload: LineStockCorrect,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """
    Fix the returned values of a settled episode.

    Stock and invoices are left as settled; the difference in returned grams
    is posted as a Manual Adjustment.
    """
    episode, delta = await LineStockService.correct(db, line_stock_id, payload)

    await log_event(
        db=db,
        action=AuditAction.LINE_STOCK_CORRECTED,
        actor=current_user,
        entity_type="line_stock",
        entity_id=episode.id,
        ip_address=_client_ip(request),
        metadata={
            "line_number": episode.line_number,
            "counterparty_id": episode.counterparty_id,
            "total_returned": episode.total_returned,
            "delta": delta,
        }
    )
    return LineStockResponse(**await LineStockService.serialize(db, episode))
