"""
Integration tests for the Authentication Flow.

Verifies Login -> Me -> Logout and role checks on ledger routes.
"""

import pytest

from backend.app.services.audit import get_audit_trail, AuditAction
from backend.app.models.enums import UserRole
from backend.app.models.user import User
from backend.app.core.security import get_password_hash, verify_password


@pytest.mark.asyncio
async def test_login_with_username_and_email(client, staff_user):
    response = await client.post("/v1/auth/login", json={"username": "cashier", "password": "password123"})
    assert response.status_code == 200
    data = response.json()
    assert data["role"] == "STAFF"
    assert data["token_type"] == "bearer"

    response = await client.post("/v1/auth/login", json={"username": "cashier@shop.test", "password": "password123"})
    assert response.status_code == 200
    assert response.json()["user_id"] == staff_user.id


@pytest.mark.asyncio
async def test_login_wrong_password_is_audited(client, db_session, staff_user):
    response = await client.post("/v1/auth/login", json={"username": "cashier", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"

    trail = await get_audit_trail(db_session, action=AuditAction.LOGIN_FAILED)
    assert len(trail) == 1
    assert trail[0].meta_data["reason"] == "Invalid password"


@pytest.mark.asyncio
async def test_me_returns_current_user(client, staff_user):
    login = await client.post("/v1/auth/login", json={"username": "cashier", "password": "password123"})
    token = login.json()["access_token"]

    response = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    me = response.json()
    assert me["username"] == "cashier"
    assert me["is_active"] is True


@pytest.mark.asyncio
async def test_logout_revokes_token(client, staff_user):
    login = await client.post("/v1/auth/login", json={"username": "cashier", "password": "password123"})
    headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    response = await client.post("/v1/auth/logout", headers=headers)
    assert response.status_code == 200

    response = await client.get("/v1/auth/me", headers=headers)
    assert response.status_code == 401
    assert response.json()["message"] == "Token has been revoked"
    assert response.json()["error_code"] == "ERR_AUTH_001"
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_missing_token_rejected(client):
    response = await client.get("/v1/dealers")
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_read_only_user_cannot_write(client, readonly_headers):
    response = await client.get("/v1/dealers", headers=readonly_headers)
    assert response.status_code == 200

    response = await client.post(
        "/v1/expenses",
        json={"expense_name": "Tea", "expense_type": "Daily", "amount": "20"},
        headers=readonly_headers,
    )
    assert response.status_code == 403
    assert response.json()["error_code"] == "ERR_PERM_001"
    assert response.json()["details"]["role"] == "READ_ONLY"


@pytest.mark.asyncio
async def test_only_admin_deletes_transactions(client, staff_headers):
    response = await client.delete("/v1/dealers/transactions/1", headers=staff_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["redis"] == "ok"
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_demoted_user_loses_write_access(client, db_session, staff_user, staff_headers):
    user = await db_session.get(User, staff_user.id)
    user.role = UserRole.READ_ONLY
    await db_session.commit()

    response = await client.post(
        "/v1/expenses",
        json={"expense_name": "Tea", "expense_type": "Daily", "amount": "20"},
        headers=staff_headers,
    )
    assert response.status_code == 403


def test_password_hash_is_bcrypt():
    hashed = get_password_hash("password123")

    assert hashed.startswith("$2b$")
    assert verify_password("password123", hashed) is True
    assert verify_password("password124", hashed) is False
    assert verify_password("password123", "not-a-bcrypt-hash") is False
    assert verify_password("password123", "") is False
