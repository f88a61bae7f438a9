import asyncio
from datetime import UTC, datetime

import pytest
from fastapi import HTTPException

from esgreport_api.billing import subscriptions
from esgreport_api.billing.accounts import UserBillingContext
from esgreport_api.billing.models import BillingAccount, ChangeType, SubscriptionStatus, SubscriptionTier

ORG_ID = "11111111-1111-1111-1111-111111111111"
USER_ID = "11111111-1111-1111-1111-111111111112"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _context(**overrides) -> UserBillingContext:
    account_fields: dict[str, object] = {
        "id": ORG_ID,
        "name": "Acme Sustainability",
        "subscription_tier": SubscriptionTier.PROFESSIONAL,
        "subscription_status": SubscriptionStatus.ACTIVE,
        "stripe_customer_id": "cus_1",
        "stripe_subscription_id": "sub_1",
    }
    account_fields.update(overrides)
    return UserBillingContext(
        user_id=USER_ID,
        email="owner@example.com",
        role="user",
        account=BillingAccount(**account_fields),  # type: ignore[arg-type]
    )


@pytest.fixture
def recorder(monkeypatch) -> dict[str, list]:
    recorded: dict[str, list] = {"updates": [], "history": [], "stripe": []}

    async def fake_update_billing_account(org_id: str, changes: dict) -> None:
        recorded["updates"].append((org_id, changes))

    async def fake_insert_subscription_history(row: dict) -> dict:
        recorded["history"].append(row)
        return row

    monkeypatch.setattr(subscriptions, "update_billing_account", fake_update_billing_account)
    monkeypatch.setattr(subscriptions, "insert_subscription_history", fake_insert_subscription_history)
    return recorded


def test_checkout_creates_customer_once(monkeypatch, recorder) -> None:
    async def fake_create_customer(*, name, email, organization_id):
        assert (name, email, organization_id) == ("Acme Sustainability", "owner@example.com", ORG_ID)
        return {"id": "cus_new"}

    async def fake_create_checkout_session(**kwargs):
        recorder["stripe"].append(kwargs)
        return {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}

    monkeypatch.setattr(subscriptions, "create_customer", fake_create_customer)
    monkeypatch.setattr(subscriptions, "create_checkout_session", fake_create_checkout_session)

    result = asyncio.run(
        subscriptions.start_checkout(
            _context(stripe_customer_id=None),
            price_id="price_pro",
            tier=SubscriptionTier.PROFESSIONAL,
            success_url="https://a",
            cancel_url="https://b",
        )
    )

    assert result == {"session_id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}
    assert recorder["updates"] == [(ORG_ID, {"stripe_customer_id": "cus_new"})]
    assert recorder["stripe"][0]["customer_id"] == "cus_new"
    assert recorder["stripe"][0]["tier"] == "professional"
    assert recorder["stripe"][0]["organization_id"] == ORG_ID


def test_checkout_reuses_existing_customer(monkeypatch, recorder) -> None:
    async def fail_create_customer(**kwargs):
        raise AssertionError("customer should not be created")

    async def fake_create_checkout_session(**kwargs):
        assert kwargs["customer_id"] == "cus_1"
        return {"id": "cs_2", "url": None}

    monkeypatch.setattr(subscriptions, "create_customer", fail_create_customer)
    monkeypatch.setattr(subscriptions, "create_checkout_session", fake_create_checkout_session)

    asyncio.run(
        subscriptions.start_checkout(
            _context(),
            price_id="price_pro",
            tier=SubscriptionTier.PROFESSIONAL,
            success_url="https://a",
            cancel_url="https://b",
        )
    )
    assert recorder["updates"] == []


def test_get_subscription_without_id_skips_stripe(monkeypatch) -> None:
    async def fail_retrieve(subscription_id: str):
        raise AssertionError("should not call Stripe")

    monkeypatch.setattr(subscriptions, "retrieve_subscription", fail_retrieve)
    assert asyncio.run(subscriptions.get_subscription(_context(stripe_subscription_id=None))) is None


def test_portal_return_url(monkeypatch) -> None:
    async def fake_create_portal_session(*, customer_id: str, return_url: str):
        assert customer_id == "cus_1"
        assert return_url == "https://app.example.com/dashboard/billing"
        return {"url": "https://billing.stripe.com/p/1"}

    monkeypatch.setattr(subscriptions, "create_portal_session", fake_create_portal_session)
    url = asyncio.run(subscriptions.open_billing_portal(_context(), return_base_url="https://app.example.com/"))
    assert url == "https://billing.stripe.com/p/1"


def test_portal_requires_customer() -> None:
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(subscriptions.open_billing_portal(_context(stripe_customer_id=None), return_base_url="https://a"))
    assert excinfo.value.status_code == 400


def test_cancel_records_history_with_actor(monkeypatch, recorder) -> None:
    async def fake_cancel_subscription(subscription_id: str):
        recorder["stripe"].append(subscription_id)
        return {"id": subscription_id, "status": "canceled"}

    monkeypatch.setattr(subscriptions, "cancel_subscription", fake_cancel_subscription)
    asyncio.run(subscriptions.cancel(_context(), now=NOW))

    assert recorder["stripe"] == ["sub_1"]
    assert recorder["updates"] == [(ORG_ID, {"subscription_status": "cancelled"})]
    assert recorder["history"] == [
        {
            "organization_id": ORG_ID,
            "from_tier": "professional",
            "to_tier": "professional",
            "from_status": "active",
            "to_status": "cancelled",
            "change_type": "cancel",
            "changed_by": USER_ID,
            "effective_date": "2026-03-01T12:00:00Z",
        }
    ]


def test_cancel_is_noop_when_already_cancelled(monkeypatch, recorder) -> None:
    async def fail_cancel(subscription_id: str):
        raise AssertionError("should not call Stripe")

    monkeypatch.setattr(subscriptions, "cancel_subscription", fail_cancel)
    asyncio.run(subscriptions.cancel(_context(subscription_status=SubscriptionStatus.CANCELLED)))
    assert recorder["updates"] == []
    assert recorder["history"] == []


def test_change_plan_downgrade(monkeypatch, recorder) -> None:
    async def fake_retrieve(subscription_id: str):
        return {"id": subscription_id, "items": {"data": [{"id": "si_1"}]}}

    async def fake_update(subscription_id: str, data: dict):
        recorder["stripe"].append((subscription_id, data))
        return {"id": subscription_id}

    monkeypatch.setattr(subscriptions, "retrieve_subscription", fake_retrieve)
    monkeypatch.setattr(subscriptions, "update_subscription", fake_update)

    change_type = asyncio.run(
        subscriptions.change_plan(_context(), new_price_id="price_starter", new_tier=SubscriptionTier.STARTER, now=NOW)
    )

    assert change_type is ChangeType.DOWNGRADE
    assert recorder["stripe"] == [
        (
            "sub_1",
            {
                "items[0][id]": "si_1",
                "items[0][price]": "price_starter",
                "proration_behavior": "create_prorations",
            },
        )
    ]
    assert recorder["updates"] == [(ORG_ID, {"subscription_tier": "starter"})]
    assert recorder["history"][0]["change_type"] == "downgrade"
    assert recorder["history"][0]["from_tier"] == "professional"
    assert recorder["history"][0]["to_tier"] == "starter"


def test_change_plan_upgrade_uses_tier_rank(monkeypatch, recorder) -> None:
    async def fake_retrieve(subscription_id: str):
        return {"items": {"data": [{"id": "si_1"}]}}

    async def fake_update(subscription_id: str, data: dict):
        return {}

    monkeypatch.setattr(subscriptions, "retrieve_subscription", fake_retrieve)
    monkeypatch.setattr(subscriptions, "update_subscription", fake_update)

    change_type = asyncio.run(
        subscriptions.change_plan(
            _context(subscription_tier=SubscriptionTier.STARTER),
            new_price_id="price_pro",
            new_tier=SubscriptionTier.PROFESSIONAL,
        )
    )
    assert change_type is ChangeType.UPGRADE


def test_change_plan_requires_subscription_item(monkeypatch, recorder) -> None:
    async def fake_retrieve(subscription_id: str):
        return {"items": {"data": []}}

    monkeypatch.setattr(subscriptions, "retrieve_subscription", fake_retrieve)

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(
            subscriptions.change_plan(_context(), new_price_id="price_x", new_tier=SubscriptionTier.ENTERPRISE)
        )
    assert excinfo.value.status_code == 502
    assert recorder["updates"] == []


def test_reactivate_clears_cancel_at_period_end(monkeypatch) -> None:
    calls: list[tuple] = []

    async def fake_update(subscription_id: str, data: dict):
        calls.append((subscription_id, data))
        return {}

    monkeypatch.setattr(subscriptions, "update_subscription", fake_update)
    asyncio.run(subscriptions.reactivate(_context()))
    assert calls == [("sub_1", {"cancel_at_period_end": "false"})]


def test_reactivate_cancelled_subscription_conflicts() -> None:
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(subscriptions.reactivate(_context(subscription_status=SubscriptionStatus.CANCELLED)))
    assert excinfo.value.status_code == 409
