"""
Audit logging service for ledger mutations and admin actions.

Provides centralized audit records next to the business data.
"""

from typing import Optional, Dict, Any
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    TOKEN_REVOKED = "TOKEN_REVOKED"

    # Dealer ledger
    DEALER_STOCK_IN = "DEALER_STOCK_IN"
    OPENING_BALANCE_SET = "OPENING_BALANCE_SET"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    TRANSACTION_DELETED = "TRANSACTION_DELETED"
    TRANSACTION_DELETE_BLOCKED = "TRANSACTION_DELETE_BLOCKED"

    # Line stock
    LINE_STOCK_ISSUED = "LINE_STOCK_ISSUED"
    LINE_STOCK_MANUAL_CREATED = "LINE_STOCK_MANUAL_CREATED"
    LINE_STOCK_SETTLED = "LINE_STOCK_SETTLED"
    LINE_STOCK_CORRECTED = "LINE_STOCK_CORRECTED"

    # Expenses
    EXPENSE_CREATED = "EXPENSE_CREATED"
    EXPENSE_UPDATED = "EXPENSE_UPDATED"
    EXPENSE_DELETED = "EXPENSE_DELETED"

    # Stock and sales
    STOCK_CREATED = "STOCK_CREATED"
    STOCK_UPDATED = "STOCK_UPDATED"
    SALE_CREATED = "SALE_CREATED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor: Optional[dict] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    commit: bool = True
) -> AuditLog:
    """
    Log an event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor: Decoded JWT payload of the caller (None for system actions)
        entity_type: Kind of record acted upon ("counterparty", "line_stock", ...)
        entity_id: ID of that record
        metadata: Additional context as JSON
        ip_address: IP address of the request
        commit: Commit the session afterwards. Pass False to keep the audit row
            inside the caller's transaction.

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor.get("user_id") if actor else None,
        actor_username=actor.get("sub") if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=jsonable_encoder(metadata) if metadata else None,
        ip_address=ip_address
    )

    db.add(audit_log)
    if commit:
        await db.commit()
        await db.refresh(audit_log)
    else:
        await db.flush()

    return audit_log


async def log_auth_event(
    db: AsyncSession,
    action: str,
    user_id: Optional[int],
    username: Optional[str],
    ip_address: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Log an authentication event (login success/failure, logout).
    """
    return await log_event(
        db=db,
        action=action,
        actor={"user_id": user_id, "sub": username},
        entity_type="user",
        entity_id=user_id,
        ip_address=ip_address,
        metadata=metadata
    )


async def get_audit_trail(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)

    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return result.scalars().all()
