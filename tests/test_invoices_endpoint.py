from decimal import Decimal

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from esgreport_api.api.v1.endpoints import invoices as invoices_endpoint
from esgreport_api.auth.roles import PlatformRoleContext
from esgreport_api.core.supabase_jwt import VerifiedSupabaseAuth, verify_supabase_auth
from esgreport_api.main import app

ORG_ID = "11111111-1111-1111-1111-111111111111"
ADMIN_ID = "99999999-9999-9999-9999-999999999999"
CHARGE_ID = "22222222-2222-2222-2222-222222222222"


@pytest.fixture
def client():
    app.dependency_overrides[verify_supabase_auth] = lambda: VerifiedSupabaseAuth(
        access_token="token-123", claims={"sub": ADMIN_ID}
    )
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_create_invoice_requires_token() -> None:
    client = TestClient(app)
    response = client.post("/api/v1/admin/invoices", json={"organizationId": ORG_ID, "amount": 10})
    assert response.status_code == 401


def test_create_invoice_requires_admin(client: TestClient, monkeypatch) -> None:
    async def fake_enforce(auth, min_role):
        assert min_role == "admin"
        raise HTTPException(status_code=403, detail="Admin access required")

    monkeypatch.setattr(invoices_endpoint, "enforce_platform_role", fake_enforce)
    response = client.post("/api/v1/admin/invoices", json={"organizationId": ORG_ID, "amount": 10})
    assert response.status_code == 403
    assert response.json()["detail"] == "Admin access required"


def test_create_invoice_for_amount(client: TestClient, monkeypatch) -> None:
    async def fake_enforce(auth, min_role):
        return PlatformRoleContext(user_id=ADMIN_ID, role="admin")

    async def fake_generate_custom_invoice(**kwargs):
        assert kwargs["organization_id"] == ORG_ID
        assert kwargs["created_by"] == ADMIN_ID
        assert kwargs["custom_charge_ids"] == []
        assert kwargs["amount"] == Decimal("450.00")
        assert kwargs["description"] == "Scope 3 review"
        return {"id": "inv-1", "invoice_number": "INV-0001", "organization_name": "Acme Sustainability"}

    monkeypatch.setattr(invoices_endpoint, "enforce_platform_role", fake_enforce)
    monkeypatch.setattr(invoices_endpoint, "generate_custom_invoice", fake_generate_custom_invoice)

    response = client.post(
        "/api/v1/admin/invoices",
        json={"organizationId": ORG_ID, "amount": "450.00", "description": "Scope 3 review"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "invoice": {"id": "inv-1", "invoice_number": "INV-0001", "organization_name": "Acme Sustainability"},
    }


def test_create_invoice_for_charges(client: TestClient, monkeypatch) -> None:
    async def fake_enforce(auth, min_role):
        return PlatformRoleContext(user_id=ADMIN_ID, role="super_admin")

    async def fake_generate_custom_invoice(**kwargs):
        assert kwargs["custom_charge_ids"] == [CHARGE_ID]
        assert kwargs["amount"] is None
        return {"id": "inv-2"}

    monkeypatch.setattr(invoices_endpoint, "enforce_platform_role", fake_enforce)
    monkeypatch.setattr(invoices_endpoint, "generate_custom_invoice", fake_generate_custom_invoice)

    response = client.post("/api/v1/admin/invoices", json={"organizationId": ORG_ID, "customChargeIds": [CHARGE_ID]})
    assert response.status_code == 200


def test_create_invoice_needs_charges_or_amount(client: TestClient, monkeypatch) -> None:
    async def fake_enforce(auth, min_role):
        return PlatformRoleContext(user_id=ADMIN_ID, role="admin")

    monkeypatch.setattr(invoices_endpoint, "enforce_platform_role", fake_enforce)
    response = client.post("/api/v1/admin/invoices", json={"organizationId": ORG_ID})
    assert response.status_code == 422


def test_create_invoice_rejects_non_positive_amount(client: TestClient, monkeypatch) -> None:
    async def fake_enforce(auth, min_role):
        return PlatformRoleContext(user_id=ADMIN_ID, role="admin")

    monkeypatch.setattr(invoices_endpoint, "enforce_platform_role", fake_enforce)
    response = client.post("/api/v1/admin/invoices", json={"organizationId": ORG_ID, "amount": 0})
    assert response.status_code == 422
