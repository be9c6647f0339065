"""
Line stock lifecycle tests: issuance, settlement, manual episodes and
receivables.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from backend.app.core.exceptions import LedgerInconsistencyError
from backend.app.domain.line_stock.lifecycle import as_utc, derive_status
from backend.app.domain.line_stock.service import LineStockService
from backend.app.models.ledger_enums import LineStockStatus
from backend.app.models.line_stock import LineStock
from backend.app.schemas.line_stock import LineStockSettle, SettleItem
from backend.app.services.audit import get_audit_trail, AuditAction


def _future(days=7):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


async def _create_product(client, headers, serial="CHAIN-01", gross="10", count=3):
    response = await client.post(
        "/v1/stock",
        json={"serial_no": serial, "item_name": f"Item {serial}", "gross_weight": gross, "net_weight": gross,
              "purchase_count": count, "selling_price": "5000"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


async def _issue(client, headers, product_id, qty=2, **overrides):
    payload = {
        "person_name": "Priya",
        "phone_number": "9000000002",
        "expected_return_date": _future(),
        "items": [{"product_id": product_id, "issued_qty": qty}],
    }
    payload.update(overrides)
    return await client.post("/v1/line-stock/create", json=payload, headers=headers)


@pytest.mark.asyncio
async def test_issue_adds_grams_to_balance(client, staff_headers):
    product = await _create_product(client, staff_headers)

    response = await _issue(client, staff_headers, product["id"])
    assert response.status_code == 201
    episode = response.json()

    assert episode["status"] == "ISSUED"
    assert episode["line_number"] == f"LS-{episode['id']:04d}"
    assert Decimal(episode["total_issued"]) == Decimal("20")
    assert Decimal(episode["counterparty_balance"]) == Decimal("20")
    assert episode["items"][0]["issued_qty"] == 2

    stock = await client.get(f"/v1/stock/{product['id']}", headers=staff_headers)
    assert stock.json()["current_count"] == 1


@pytest.mark.asyncio
async def test_settle_returns_grams_and_stock(client, staff_headers):
    product = await _create_product(client, staff_headers)
    episode = (await _issue(client, staff_headers, product["id"])).json()

    response = await client.put(
        f"/v1/line-stock/settle/{episode['id']}",
        json={"items": [{"product_id": product["id"], "sold_qty": 1}]},
        headers=staff_headers,
    )
    assert response.status_code == 200
    settled = response.json()

    assert settled["status"] == "SETTLED"
    assert settled["settled_at"] is not None
    assert Decimal(settled["total_returned"]) == Decimal("10")
    assert Decimal(settled["counterparty_balance"]) == Decimal("10")
    item = settled["items"][0]
    assert item["sold_qty"] + item["returned_qty"] == item["issued_qty"]
    assert len(settled["sales"]) == 1
    assert settled["sales"][0]["invoice_number"].startswith("INV-LS-")

    stock = await client.get(f"/v1/stock/{product['id']}", headers=staff_headers)
    assert stock.json()["current_count"] == 2


@pytest.mark.asyncio
async def test_settle_twice_is_conflict(client, staff_headers):
    product = await _create_product(client, staff_headers)
    episode = (await _issue(client, staff_headers, product["id"])).json()
    body = {"items": [{"product_id": product["id"], "sold_qty": 2}]}

    first = await client.put(f"/v1/line-stock/settle/{episode['id']}", json=body, headers=staff_headers)
    assert first.status_code == 200
    assert Decimal(first.json()["counterparty_balance"]) == Decimal("20")

    second = await client.put(f"/v1/line-stock/settle/{episode['id']}", json=body, headers=staff_headers)
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_sold_more_than_issued_rejected(client, staff_headers):
    product = await _create_product(client, staff_headers)
    episode = (await _issue(client, staff_headers, product["id"])).json()

    response = await client.put(
        f"/v1/line-stock/settle/{episode['id']}",
        json={"items": [{"product_id": product["id"], "sold_qty": 3}]},
        headers=staff_headers,
    )
    assert response.status_code == 400

    detail = await client.get(f"/v1/line-stock/{episode['id']}", headers=staff_headers)
    assert detail.json()["status"] == "ISSUED"
    assert Decimal(detail.json()["counterparty_balance"]) == Decimal("20")


@pytest.mark.asyncio
async def test_issue_insufficient_stock(client, staff_headers):
    product = await _create_product(client, staff_headers, count=1)
    response = await _issue(client, staff_headers, product["id"], qty=2)
    assert response.status_code == 400
    assert "Insufficient stock" in response.json()["message"]


@pytest.mark.asyncio
async def test_unknown_product_and_episode(client, staff_headers):
    response = await _issue(client, staff_headers, 404)
    assert response.status_code == 404

    response = await client.get("/v1/line-stock/999", headers=staff_headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_manual_total_value_overrides_computed(client, staff_headers):
    product = await _create_product(client, staff_headers)
    response = await _issue(client, staff_headers, product["id"], total_value="18.5")
    assert Decimal(response.json()["total_issued"]) == Decimal("18.5")
    assert Decimal(response.json()["counterparty_balance"]) == Decimal("18.5")


@pytest.mark.asyncio
async def test_past_return_date_is_overdue(client, staff_headers):
    product = await _create_product(client, staff_headers)
    response = await _issue(client, staff_headers, product["id"], expected_return_date=_future(-1))
    assert response.json()["status"] == "OVERDUE"

    listing = await client.get("/v1/line-stock", params={"status": "OVERDUE"}, headers=staff_headers)
    assert listing.json()["total"] == 1

    receivables = await client.get("/v1/line-stock/receivable", headers=staff_headers)
    assert receivables.status_code == 200
    row = receivables.json()[0]
    assert row["status"] == "OVERDUE"
    assert Decimal(row["outstanding_balance"]) == Decimal("20")
    assert row["active_episodes"] == 1


@pytest.mark.asyncio
async def test_manual_episode_moves_balance(client, staff_headers):
    response = await client.post(
        "/v1/line-stock/manual",
        json={"person_name": "Priya", "phone_number": "9000000002", "total_value": "12.345"},
        headers=staff_headers,
    )
    assert response.status_code == 201
    episode = response.json()
    assert episode["is_manual"] is True
    assert episode["items"] == []
    assert Decimal(episode["counterparty_balance"]) == Decimal("12.345")


@pytest.mark.asyncio
async def test_settlement_with_added_item(client, staff_headers):
    first = await _create_product(client, staff_headers, serial="CHAIN-01")
    extra = await _create_product(client, staff_headers, serial="BANGLE-01", gross="4", count=5)
    episode = (await _issue(client, staff_headers, first["id"])).json()

    response = await client.put(
        f"/v1/line-stock/settle/{episode['id']}",
        json={"items": [
            {"product_id": first["id"], "sold_qty": 2},
            {"product_id": extra["id"], "sold_qty": 1, "issued_qty": 2},
        ]},
        headers=staff_headers,
    )
    assert response.status_code == 200
    settled = response.json()

    # 20 issued, +8 for the added item, -4 for its returned piece
    assert Decimal(settled["counterparty_balance"]) == Decimal("24")
    assert any(item["is_manual"] for item in settled["items"])

    stock = await client.get(f"/v1/stock/{extra['id']}", headers=staff_headers)
    assert stock.json()["current_count"] == 4


def test_derive_status():
    now = datetime(2024, 5, 10, tzinfo=timezone.utc)
    assert derive_status(now, now + timedelta(days=1), False) == LineStockStatus.ISSUED
    assert derive_status(now, now - timedelta(days=1), False) == LineStockStatus.OVERDUE
    assert derive_status(now, now - timedelta(days=1), True) == LineStockStatus.SETTLED
    assert derive_status(now, now - timedelta(days=1), False, LineStockStatus.CLOSED) == LineStockStatus.CLOSED


def test_as_utc_treats_naive_as_utc():
    naive = datetime(2024, 5, 10, 12, 0)
    assert as_utc(naive).tzinfo == timezone.utc
    assert as_utc(None) is None


@pytest.mark.asyncio
async def test_settle_from_a_stale_read_is_conflict(client, db_session, staff_headers):
    product = await _create_product(client, staff_headers)
    episode = (await _issue(client, staff_headers, product["id"])).json()

    # Loaded while still ISSUED, then settled by another request
    stale = await db_session.get(LineStock, episode["id"])
    assert stale.status == LineStockStatus.ISSUED
    first = await client.put(
        f"/v1/line-stock/settle/{episode['id']}",
        json={"items": [{"product_id": product["id"], "sold_qty": 1}]},
        headers=staff_headers,
    )
    assert first.status_code == 200

    with pytest.raises(LedgerInconsistencyError):
        await LineStockService.settle(
            db_session, episode["id"], LineStockSettle(items=[SettleItem(product_id=product["id"], sold_qty=0)])
        )
    await db_session.rollback()

    detail = (await client.get(f"/v1/line-stock/{episode['id']}", headers=staff_headers)).json()
    assert Decimal(detail["counterparty_balance"]) == Decimal("10")
    assert len(detail["sales"]) == 1
    stock = await client.get(f"/v1/stock/{product['id']}", headers=staff_headers)
    assert stock.json()["current_count"] == 2


@pytest.mark.asyncio
async def test_correct_settled_returned_value(client, staff_headers):
    product = await _create_product(client, staff_headers)
    episode = (await _issue(client, staff_headers, product["id"])).json()
    await client.put(
        f"/v1/line-stock/settle/{episode['id']}",
        json={"items": [{"product_id": product["id"], "sold_qty": 1}]},
        headers=staff_headers,
    )

    response = await client.put(
        f"/v1/line-stock/settle/{episode['id']}/correct",
        json={"items": [{"product_id": product["id"], "value": "4"}], "note": "Returned piece was damaged"},
        headers=staff_headers,
    )
    assert response.status_code == 200
    corrected = response.json()

    # Returned grams drop from 10 to 4, so 6 more stays owed
    assert corrected["status"] == "SETTLED"
    assert Decimal(corrected["total_returned"]) == Decimal("4")
    assert Decimal(corrected["items"][0]["total_returned_value"]) == Decimal("4")
    assert corrected["items"][0]["returned_qty"] == 1
    assert Decimal(corrected["counterparty_balance"]) == Decimal("16")
    assert len(corrected["sales"]) == 1

    stock = await client.get(f"/v1/stock/{product['id']}", headers=staff_headers)
    assert stock.json()["current_count"] == 2

    ledger = await client.get(
        f"/v1/dealers/{corrected['counterparty_id']}", headers=staff_headers
    )
    types = [t["transaction_type"] for t in ledger.json()["transactions"]]
    assert types[0] == "Manual Adjustment"

    # Without a value the computed grams apply again
    reverted = await client.put(
        f"/v1/line-stock/settle/{episode['id']}/correct",
        json={"items": [{"product_id": product["id"]}]},
        headers=staff_headers,
    )
    assert Decimal(reverted.json()["counterparty_balance"]) == Decimal("10")


@pytest.mark.asyncio
async def test_correct_requires_settled_episode_and_known_product(client, staff_headers):
    product = await _create_product(client, staff_headers)
    episode = (await _issue(client, staff_headers, product["id"])).json()
    url = f"/v1/line-stock/settle/{episode['id']}/correct"

    open_episode = await client.put(url, json={"items": [{"product_id": product["id"], "value": "1"}]},
                                    headers=staff_headers)
    assert open_episode.status_code == 409

    await client.put(
        f"/v1/line-stock/settle/{episode['id']}",
        json={"items": [{"product_id": product["id"], "sold_qty": 2}]},
        headers=staff_headers,
    )
    unknown = await client.put(url, json={"items": [{"product_id": 999, "value": "1"}]}, headers=staff_headers)
    assert unknown.status_code == 400

    missing = await client.put("/v1/line-stock/settle/999/correct",
                               json={"items": [{"product_id": product["id"]}]}, headers=staff_headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_correct_is_audited_and_blocked_for_read_only(client, db_session, staff_headers, readonly_headers):
    product = await _create_product(client, staff_headers)
    episode = (await _issue(client, staff_headers, product["id"])).json()
    await client.put(
        f"/v1/line-stock/settle/{episode['id']}",
        json={"items": [{"product_id": product["id"], "sold_qty": 0}]},
        headers=staff_headers,
    )
    url = f"/v1/line-stock/settle/{episode['id']}/correct"
    body = {"items": [{"product_id": product["id"], "value": "18"}]}

    assert (await client.put(url, json=body, headers=readonly_headers)).status_code == 403
    assert (await client.put(url, json=body, headers=staff_headers)).status_code == 200

    trail = await get_audit_trail(db_session, entity_type="line_stock", entity_id=episode["id"])
    assert AuditAction.LINE_STOCK_CORRECTED in [entry.action for entry in trail]
