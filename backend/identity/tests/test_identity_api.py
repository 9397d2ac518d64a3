from types import SimpleNamespace

import pytest
import stripe
from rest_framework.test import APIClient

from identity.models import IdentityVerification, apply_verification_session_event, is_user_identity_verified

pytestmark = pytest.mark.django_db

SESSION_URL = "/api/identity/verification-session/"
STATUS_URL = "/api/identity/status/"


def auth(user):
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def fake_session_create(monkeypatch):
    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        return SimpleNamespace(
            id="vs_test_1",
            client_secret="vs_test_1_secret",
            url="https://verify.stripe.com/start/vs_test_1",
            status="requires_input",
        )

    monkeypatch.setattr(stripe.identity.VerificationSession, "create", _create)
    return calls


def test_start_session_records_pending_verification(unverified_renter_user, fake_session_create):
    resp = auth(unverified_renter_user).post(SESSION_URL)

    assert resp.status_code == 201, resp.data
    assert resp.data["session_id"] == "vs_test_1"
    assert resp.data["client_secret"] == "vs_test_1_secret"
    assert resp.data["already_verified"] is False
    assert fake_session_create[0]["metadata"] == {"user_id": str(unverified_renter_user.id)}
    verification = IdentityVerification.objects.get(session_id="vs_test_1")
    assert verification.user == unverified_renter_user
    assert verification.status == IdentityVerification.Status.PENDING


def test_verified_user_skips_new_session(renter_user, fake_session_create):
    resp = auth(renter_user).post(SESSION_URL)

    assert resp.status_code == 200
    assert resp.data == {"already_verified": True, "status": "verified"}
    assert fake_session_create == []


def test_stripe_failure_returns_bad_gateway(unverified_renter_user, monkeypatch):
    def _fail(**kwargs):
        raise stripe.error.APIConnectionError("network down")

    monkeypatch.setattr(stripe.identity.VerificationSession, "create", _fail)

    resp = auth(unverified_renter_user).post(SESSION_URL)

    assert resp.status_code == 502


def test_missing_stripe_key_returns_unavailable(unverified_renter_user, settings):
    settings.STRIPE_SECRET_KEY = ""

    resp = auth(unverified_renter_user).post(SESSION_URL)

    assert resp.status_code == 503


def test_status_reflects_latest_session(unverified_renter_user):
    IdentityVerification.objects.create(
        user=unverified_renter_user,
        session_id="vs_old",
        status=IdentityVerification.Status.REQUIRES_INPUT,
        last_error_reason="Document was blurry",
    )

    resp = auth(unverified_renter_user).get(STATUS_URL)

    assert resp.status_code == 200
    assert resp.data["verified"] is False
    assert resp.data["latest"]["status"] == "requires_input"
    assert resp.data["latest"]["last_error_reason"] == "Document was blurry"


def test_requires_input_event_keeps_user_unverified(unverified_renter_user):
    IdentityVerification.objects.create(user=unverified_renter_user, session_id="vs_2")

    verification = apply_verification_session_event(
        "identity.verification_session.requires_input",
        {"id": "vs_2", "last_error": {"code": "document_unverified_other", "reason": "Expired"}},
    )

    assert verification.status == IdentityVerification.Status.REQUIRES_INPUT
    assert verification.last_error_code == "document_unverified_other"
    assert not is_user_identity_verified(unverified_renter_user)


def test_unknown_session_without_user_is_ignored():
    assert (
        apply_verification_session_event("identity.verification_session.verified", {"id": "vs_x"})
        is None
    )
