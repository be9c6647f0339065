"""
Customer sales API endpoints.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.core.guards import require_writer
from backend.app.domain.sales.service import SalesService
from backend.app.schemas.sales import SaleCreate, SaleResponse, SaleListResponse
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/sales", tags=["Sales"])


@router.post("", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
async def create_sale(
    payload: SaleCreate,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a customer sale.

    Issued items leave stock by serial number; an unknown serial is a 404 and
    a short count a 400, with nothing saved in either case.
    """
    sale = await SalesService.create_sale(db, payload)

    await log_event(
        db=db,
        action=AuditAction.SALE_CREATED,
        actor=current_user,
        entity_type="sale",
        entity_id=sale.id,
        ip_address=request.client.host if request.client else None,
        metadata={
            "customer": sale.customer_name,
            "items": len(payload.issued_items),
            "total_issued_value": sale.total_issued_value,
        }
    )
    return SaleResponse(**await SalesService.serialize(db, sale))


@router.get("", response_model=SaleListResponse)
async def list_sales(
    date_from: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    date_to: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    limit: int = Query(100, ge=1, le=1000),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    rows = await SalesService.list_sales(db, date_from, date_to, limit)
    return SaleListResponse(sales=[SaleResponse(**row) for row in rows], total=len(rows))
