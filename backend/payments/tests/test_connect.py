from types import SimpleNamespace

import pytest
from rest_framework.test import APIClient

from payments import stripe_api
from payments.api import ONBOARDING_ERROR_MESSAGE

pytestmark = pytest.mark.django_db


def auth(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


def mock_stripe(monkeypatch, name, **methods):
    monkeypatch.setattr(
        stripe_api.stripe,
        name,
        type(f"Mock{name}", (), {key: staticmethod(fn) for key, fn in methods.items()}),
    )


def test_connect_account_creates_express_account_and_link(monkeypatch, renter_user):
    created = {}

    def fake_create(**kwargs):
        created.update(kwargs)
        return SimpleNamespace(
            id="acct_new",
            charges_enabled=False,
            payouts_enabled=False,
            details_submitted=False,
        )

    mock_stripe(monkeypatch, "Account", create=fake_create)
    mock_stripe(
        monkeypatch,
        "AccountLink",
        create=lambda **kw: SimpleNamespace(url="https://connect.stripe.com/setup/e/acct_new"),
    )

    resp = auth(renter_user).post("/api/payments/connect/account/")

    assert resp.status_code == 200, resp.data
    assert resp.data["onboarding_url"] == "https://connect.stripe.com/setup/e/acct_new"
    assert resp.data["stripe_account_id"] == "acct_new"
    assert created["type"] == "express"
    assert created["metadata"] == {"user_id": str(renter_user.id)}
    renter_user.refresh_from_db()
    assert renter_user.stripe_account_id == "acct_new"
    assert renter_user.stripe_onboarding_complete is False


def test_connect_account_reports_outage(monkeypatch, renter_user):
    def down(**kwargs):
        raise stripe_api.StripeTransientError("Temporary Stripe error, please retry.")

    monkeypatch.setattr("payments.api.create_connect_onboarding_link", lambda user: down())

    resp = auth(renter_user).post("/api/payments/connect/account/")

    assert resp.status_code == 503
    assert resp.data == {"detail": ONBOARDING_ERROR_MESSAGE}


def test_connect_status_syncs_completed_onboarding(monkeypatch, owner_user):
    owner_user.stripe_onboarding_complete = False
    owner_user.save(update_fields=["stripe_onboarding_complete"])
    mock_stripe(
        monkeypatch,
        "Account",
        retrieve=lambda account_id: {
            "id": account_id,
            "charges_enabled": True,
            "payouts_enabled": True,
            "details_submitted": True,
        },
    )

    resp = auth(owner_user).get("/api/payments/connect/status/")

    assert resp.status_code == 200
    assert resp.data == {
        "stripe_account_id": "acct_test_owner",
        "onboarding_complete": True,
        "charges_enabled": True,
        "payouts_enabled": True,
    }


def test_connect_status_requires_login():
    assert APIClient().get("/api/payments/connect/status/").status_code == 401
