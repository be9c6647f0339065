"""
Dealer ledger API endpoints.

Stock-in purchases, opening balances, manual adjustments and the ledger
table. Every mutation is committed together with its audit row.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from backend.app.db.session import get_db
from backend.app.core.dependencies import get_current_user
from backend.app.core.exceptions import LedgerInconsistencyError
from backend.app.core.guards import require_admin, require_writer
from backend.app.domain.dealer.service import DealerService
from backend.app.domain.ledger.recorder import TransactionRecorder
from backend.app.models.ledger_enums import CounterpartyType
from backend.app.models.ledger_transaction import LedgerTransaction
from backend.app.schemas.dealer import (
    CounterpartyResponse,
    DealerDetailResponse,
    DealerListResponse,
    LedgerVerificationResponse,
    ManualAdjustmentRequest,
    OpeningBalanceRequest,
    StockInRequest,
    StockInResponse,
    TransactionDeleteResponse,
    TransactionListResponse,
    TransactionResponse,
    TransactionRow,
)
from backend.app.schemas.sales import StockResponse
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/dealers", tags=["Dealers"])


def _client_ip(request: Request):
    return request.client.host if request.client else None


@router.get("", response_model=DealerListResponse)
async def list_dealers(
    dealer_type: Optional[CounterpartyType] = Query(None, alias="type", description="Dealer (default) or Line Stocker"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    dealers = await DealerService.list_dealers(db, dealer_type)
    return DealerListResponse(
        dealers=[CounterpartyResponse.model_validate(d) for d in dealers],
        total=len(dealers)
    )


@router.get("/transactions", response_model=TransactionListResponse)
async def list_transactions(
    dealer_type: Optional[CounterpartyType] = Query(None, alias="type"),
    date_from: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    date_to: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}-\d{2}$"),
    limit: int = Query(500, ge=1, le=5000),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Ledger table, newest first."""
    rows = await DealerService.transaction_rows(db, dealer_type, date_from, date_to, limit)
    return TransactionListResponse(
        transactions=[
            TransactionRow(
                **TransactionResponse.model_validate(row["transaction"]).model_dump(),
                name=row["name"],
                phone_number=row["phone_number"],
            )
            for row in rows
        ],
        total=len(rows)
    )


@router.get("/item/{serial_no}", response_model=StockResponse)
async def get_item_by_serial(
    serial_no: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Look up a stock item by serial number (case-insensitive)."""
    stock = await DealerService.item_by_serial(db, serial_no)
    return StockResponse.model_validate(stock)


@router.post("/stock-in", response_model=StockInResponse, status_code=status.HTTP_201_CREATED)
async def stock_in(
    payload: StockInRequest,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a dealer purchase.

    action_type selects whether stock, the ledger, or both are updated.
    """
    result = await DealerService.stock_in(db, payload)

    await log_event(
        db=db,
        action=AuditAction.DEALER_STOCK_IN,
        actor=current_user,
        entity_type="counterparty",
        entity_id=result.counterparty.id,
        ip_address=_client_ip(request),
        metadata={
            "action_type": payload.action_type.value,
            "stock_saved": result.stock_saved,
            "transaction_id": result.transaction.id if result.transaction else None,
            "delta": result.transaction.amount if result.transaction else None,
            "balance_after": result.counterparty.running_balance,
        }
    )

    return StockInResponse(
        message="Stock in recorded",
        dealer=CounterpartyResponse.model_validate(result.counterparty),
        transaction=TransactionResponse.model_validate(result.transaction) if result.transaction else None,
        stock_saved=result.stock_saved,
    )


@router.post("/opening-balance", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def set_opening_balance(
    payload: OpeningBalanceRequest,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    transaction = await DealerService.set_opening_balance(db, payload)

    await log_event(
        db=db,
        action=AuditAction.OPENING_BALANCE_SET,
        actor=current_user,
        entity_type="counterparty",
        entity_id=transaction.counterparty_id,
        ip_address=_client_ip(request),
        metadata={"transaction_id": transaction.id, "balance_after": transaction.balance_after}
    )
    return TransactionResponse.model_validate(transaction)


@router.get("/{dealer_id}", response_model=DealerDetailResponse)
async def get_dealer(
    dealer_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Dealer with its full history, newest first."""
    dealer = await DealerService.get_dealer(db, dealer_id)
    transactions = await TransactionRecorder(db).history(counterparty_id=dealer_id)
    return DealerDetailResponse(
        dealer=CounterpartyResponse.model_validate(dealer),
        transactions=[TransactionResponse.model_validate(t) for t in transactions]
    )


@router.post("/{dealer_id}/adjustments", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def manual_adjustment(
    dealer_id: int,
    payload: ManualAdjustmentRequest,
    request: Request,
    current_user: dict = Depends(require_writer),
    db: AsyncSession = Depends(get_db)
):
    """Post a signed correction to a balance as its own ledger record."""
    transaction = await DealerService.manual_adjustment(db, dealer_id, payload)

    await log_event(
        db=db,
        action=AuditAction.MANUAL_ADJUSTMENT,
        actor=current_user,
        entity_type="counterparty",
        entity_id=dealer_id,
        ip_address=_client_ip(request),
        metadata={
            "transaction_id": transaction.id,
            "delta": transaction.amount,
            "balance_after": transaction.balance_after,
            "note": transaction.note,
        }
    )
    return TransactionResponse.model_validate(transaction)


@router.get("/{dealer_id}/ledger/verify", response_model=LedgerVerificationResponse)
async def verify_ledger(
    dealer_id: int,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Replay every delta from zero and compare with the stored snapshots."""
    replay = await TransactionRecorder(db).replay(dealer_id)
    return LedgerVerificationResponse.model_validate(replay)


@router.delete("/transactions/{transaction_id}", response_model=TransactionDeleteResponse)
async def delete_transaction(
    transaction_id: int,
    request: Request,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete the latest transaction of a counterparty (Admin only).

    Its amount is reversed on the running balance. Earlier transactions
    cannot be deleted; the attempt is audited and rejected with 409.
    """
    transaction = await db.get(LedgerTransaction, transaction_id)
    counterparty_id = transaction.counterparty_id if transaction else None

    try:
        balance = await TransactionRecorder(db).delete(transaction_id)
    except LedgerInconsistencyError as exc:
        await db.rollback()
        await log_event(
            db=db,
            action=AuditAction.TRANSACTION_DELETE_BLOCKED,
            actor=current_user,
            entity_type="ledger_transaction",
            entity_id=transaction_id,
            ip_address=_client_ip(request),
            metadata={"counterparty_id": counterparty_id, **exc.details}
        )
        raise

    await log_event(
        db=db,
        action=AuditAction.TRANSACTION_DELETED,
        actor=current_user,
        entity_type="ledger_transaction",
        entity_id=transaction_id,
        ip_address=_client_ip(request),
        metadata={"counterparty_id": counterparty_id, "balance_after": balance}
    )
    return TransactionDeleteResponse(
        message="Transaction deleted",
        transaction_id=transaction_id,
        counterparty_id=counterparty_id,
        balance_after=balance,
    )
