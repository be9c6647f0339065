"""
Stock API endpoints.
"""

import math
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, or_
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_writer
from backend.app.domain.ledger.arithmetic import round3
from backend.app.domain.sales.service import StockService, find_stock_by_serial
from backend.app.models.stock import Stock
from backend.app.schemas.sales import StockCreate, StockUpdate, StockResponse, StockListResponse
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/stock", tags=["Stock"])


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.post("", response_model=StockResponse, status_code=status.HTTP_201_CREATED)
async def create_stock(
    payload: StockCreate,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """Add a stock item. Posting an existing serial number restocks it."""
    stock, created = await StockService.create_or_restock(db, payload)

    await log_event(
        db=db,
        action=AuditAction.STOCK_CREATED if created else AuditAction.STOCK_UPDATED,
        actor=current_user,
        entity_type="stock",
        entity_id=stock.id,
        ip_address=_client_ip(request),
        metadata={"serial_no": stock.serial_no, "added": payload.purchase_count, "restock": not created}
    )
    await db.refresh(stock)
    return StockResponse.model_validate(stock)


@router.get("", response_model=StockListResponse)
async def list_stock(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=200, description="Items per page"),
    search: Optional[str] = Query(None, description="Serial number or item name"),
    in_stock_only: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Paginated stock with footer totals over every matching row."""
    filters = []
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        filters.append(or_(Stock.serial_no.ilike(pattern), Stock.item_name.ilike(pattern)))
    if in_stock_only:
        filters.append(Stock.current_count > 0)

    stats = await db.execute(
        select(
            func.count(Stock.id),
            func.coalesce(func.sum(Stock.current_count), 0),
            func.coalesce(func.sum(Stock.net_weight * Stock.current_count), 0),
        ).where(*filters)
    )
    total, total_count, total_net_weight = stats.one()

    result = await db.execute(
        select(Stock).where(*filters)
        .order_by(Stock.created_at.desc(), Stock.id.desc())
        .offset((page - 1) * limit).limit(limit)
    )
    items = result.scalars().all()

    return StockListResponse(
        items=[StockResponse.model_validate(s) for s in items],
        total=total,
        page=page,
        total_pages=math.ceil(total / limit) if total else 0,
        total_count=total_count,
        total_net_weight=round3(total_net_weight),
    )


@router.get("/serial/{serial_no}", response_model=StockResponse)
async def get_stock_by_serial(
    serial_no: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    stock = await find_stock_by_serial(db, serial_no)
    if not stock:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Stock item not found: {serial_no}"
        )
    return StockResponse.model_validate(stock)


@router.get("/{stock_id}", response_model=StockResponse)
async def get_stock(
    stock_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    stock = await db.get(Stock, stock_id)
    if not stock:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Stock item not found"
        )
    return StockResponse.model_validate(stock)


@router.put("/{stock_id}", response_model=StockResponse)
async def update_stock(
    stock_id: int,
    payload: StockUpdate,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    stock = await db.get(Stock, stock_id)
    if not stock:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Stock item not found"
        )

    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    for field, value in changes.items():
        setattr(stock, field, value)
    await db.flush()

    await log_event(
        db=db,
        action=AuditAction.STOCK_UPDATED,
        actor=current_user,
        entity_type="stock",
        entity_id=stock.id,
        ip_address=_client_ip(request),
        metadata={"fields": sorted(changes.keys())}
    )
    await db.refresh(stock)
    return StockResponse.model_validate(stock)
