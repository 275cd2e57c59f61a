"""
Advance API tests.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal


@pytest.mark.asyncio
async def test_issue_requires_finance(client, auth_headers, employee, manager_user):
    response = await client.post(
        "/v1/advances/issue",
        json={"employee_id": employee.id, "amount": "100", "purpose": "TRAVEL"},
        headers=auth_headers(manager_user)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_issue_and_read_advance(client, auth_headers, employee, other_employee, finance_user):
    response = await client.post(
        "/v1/advances/issue",
        json={
            "employee_id": employee.id,
            "amount": "15000",
            "purpose": "PROJECT",
            "purpose_description": "Site survey",
            "validity_days": 45,
        },
        headers=auth_headers(finance_user)
    )
    assert response.status_code == 201, response.text
    advance = response.json()
    assert advance["status"] == "OPEN"
    assert advance["issued_by"] == finance_user.id
    assert advance["ledger_entry_id"] is not None
    assert Decimal(advance["remaining_balance"]) == Decimal("15000")
    assert Decimal(advance["utilization_percentage"]) == Decimal("0")

    response = await client.get(f"/v1/advances/{advance['id']}", headers=auth_headers(employee))
    assert response.status_code == 200

    response = await client.get(f"/v1/advances/{advance['id']}", headers=auth_headers(other_employee))
    assert response.status_code == 403

    response = await client.get("/v1/advances/4444", headers=auth_headers(finance_user))
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_LEDGER_ADVANCE_NOT_FOUND"


@pytest.mark.asyncio
async def test_issue_with_past_expiry(client, auth_headers, employee, finance_user):
    past = (datetime.utcnow() - timedelta(days=2)).isoformat()
    response = await client.post(
        "/v1/advances/issue",
        json={"employee_id": employee.id, "amount": "100", "purpose": "TRAVEL", "expires_at": past},
        headers=auth_headers(finance_user)
    )
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_LEDGER_INVALID_STATE"


@pytest.mark.asyncio
async def test_return_and_close(client, auth_headers, employee, finance_user):
    finance = auth_headers(finance_user)
    first = (await client.post(
        "/v1/advances/issue",
        json={"employee_id": employee.id, "amount": "1000", "purpose": "TRAVEL"},
        headers=finance
    )).json()
    second = (await client.post(
        "/v1/advances/issue",
        json={"employee_id": employee.id, "amount": "200", "purpose": "EMERGENCY"},
        headers=finance
    )).json()

    await client.post(
        "/v1/ledger/expense",
        json={"employee_id": employee.id, "amount": "400", "related_advance_id": first["id"]},
        headers=finance
    )

    response = await client.post(f"/v1/advances/{first['id']}/return", json={"notes": "Back early"}, headers=finance)
    assert response.status_code == 200
    assert response.json()["status"] == "CLOSED"

    response = await client.post(f"/v1/advances/{second['id']}/close", headers=finance)
    assert response.status_code == 200
    assert response.json()["status"] == "CLOSED"

    # 1000 + 200 - 400 - 600 returned
    response = await client.get(f"/v1/ledger/balance/{employee.id}", headers=finance)
    assert Decimal(response.json()["current_balance"]) == Decimal("200")

    response = await client.post(f"/v1/advances/{second['id']}/close", headers=finance)
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_LEDGER_ADVANCE_CLOSED"

    response = await client.post(
        "/v1/ledger/expense",
        json={"employee_id": employee.id, "amount": "1", "related_advance_id": second["id"]},
        headers=finance
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_list_advances_scoped(client, auth_headers, employee, other_employee, finance_user):
    finance = auth_headers(finance_user)
    for target in (employee, other_employee, employee):
        await client.post(
            "/v1/advances/issue",
            json={"employee_id": target.id, "amount": "50", "purpose": "PETTY_CASH"},
            headers=finance
        )

    response = await client.get("/v1/advances", headers=finance)
    assert response.json()["total"] == 3

    response = await client.get("/v1/advances?status=OPEN", headers=auth_headers(employee))
    body = response.json()
    assert body["total"] == 2
    assert {item["employee_id"] for item in body["items"]} == {employee.id}

    response = await client.get(f"/v1/advances/employee/{other_employee.id}", headers=auth_headers(employee))
    assert response.status_code == 403

    response = await client.get(f"/v1/advances/employee/{other_employee.id}", headers=finance)
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_expire_overdue_endpoint(client, auth_headers, employee, finance_user):
    response = await client.post("/v1/advances/expire-overdue", headers=auth_headers(finance_user))
    assert response.status_code == 200
    assert response.json() == {"expired_count": 0, "advance_ids": []}

    response = await client.post("/v1/advances/expire-overdue", headers=auth_headers(employee))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_partial_return(client, auth_headers, employee, finance_user):
    finance = auth_headers(finance_user)
    advance = (await client.post(
        "/v1/advances/issue",
        json={"employee_id": employee.id, "amount": "1000", "purpose": "TRAVEL"},
        headers=finance
    )).json()

    response = await client.post(
        f"/v1/advances/{advance['id']}/return",
        json={"return_type": "partial", "return_amount": "250", "notes": "Hotel refund"},
        headers=finance
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "PARTIALLY_UTILIZED"
    assert Decimal(body["returned_amount"]) == Decimal("250")
    assert Decimal(body["remaining_balance"]) == Decimal("750")
    assert body["closed_at"] is None

    response = await client.post(
        f"/v1/advances/{advance['id']}/return",
        json={"return_type": "partial", "return_amount": "800"},
        headers=finance
    )
    assert response.status_code == 422
    assert response.json()["error_code"] == "ERR_LEDGER_OVER_UTILIZATION"
    assert response.json()["details"]["excess"] == "50.00"

    # The rest comes back with a full return
    response = await client.post(f"/v1/advances/{advance['id']}/return", headers=finance)
    assert response.status_code == 200
    assert response.json()["status"] == "CLOSED"
    assert Decimal(response.json()["returned_amount"]) == Decimal("1000")

    response = await client.get(f"/v1/ledger/balance/{employee.id}", headers=finance)
    assert Decimal(response.json()["current_balance"]) == Decimal("0")
