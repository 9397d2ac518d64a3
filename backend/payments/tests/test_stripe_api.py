from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from bookings.models import Booking
from payments import stripe_api
from payments.ledger import record_booking_payment
from payments.models import Payment

pytestmark = pytest.mark.django_db


def mock_payment_intents(monkeypatch, **methods):
    monkeypatch.setattr(
        stripe_api.stripe,
        "PaymentIntent",
        type("MockPI", (), {name: staticmethod(fn) for name, fn in methods.items()}),
    )


def test_authorize_holds_rental_total_plus_deposit(monkeypatch, booking_factory):
    booking = booking_factory(
        stripe_payment_intent_id="",
        payment_state=Booking.PaymentState.REQUIRES_PAYMENT,
        deposit_amount=Decimal("50.00"),
    )
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_new", client_secret="pi_new_secret")

    mock_payment_intents(monkeypatch, create=fake_create)

    intent = stripe_api.authorize_payment(booking, customer_id="cus_123")

    assert intent.id == "pi_new"
    assert captured["amount"] == 11900
    assert captured["capture_method"] == "manual"
    assert captured["customer"] == "cus_123"
    assert captured["metadata"]["booking_id"] == str(booking.id)
    assert captured["idempotency_key"] == f"booking:{booking.id}:v1:authorize:11900"
    assert "transfer_data" not in captured
    booking.refresh_from_db()
    assert booking.stripe_payment_intent_id == "pi_new"


def test_authorize_in_destination_mode_routes_funds_to_owner(
    monkeypatch, settings, booking_factory
):
    settings.STRIPE_BOOKINGS_DESTINATION_CHARGES = True
    booking = booking_factory(stripe_payment_intent_id="")
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_dest", client_secret="secret")

    mock_payment_intents(monkeypatch, create=fake_create)

    stripe_api.authorize_payment(booking)

    # 9.00 service fee + 12.00 commission
    assert captured["application_fee_amount"] == 2100
    assert captured["transfer_data"] == {"destination": "acct_test_owner"}
    assert captured["on_behalf_of"] == "acct_test_owner"


def test_authorize_refuses_owner_without_payouts(booking_factory, owner_user):
    owner_user.stripe_onboarding_complete = False
    owner_user.save(update_fields=["stripe_onboarding_complete"])
    booking = booking_factory()

    with pytest.raises(stripe_api.StripePaymentError) as excinfo:
        stripe_api.authorize_payment(booking)

    assert str(excinfo.value) == stripe_api.OWNER_SETUP_INCOMPLETE


def test_card_decline_maps_to_payment_error(monkeypatch, booking_factory):
    booking = booking_factory(stripe_payment_intent_id="")

    def fake_create(**kwargs):
        raise stripe.error.CardError("Your card was declined.", None, "card_declined")

    mock_payment_intents(monkeypatch, create=fake_create)

    with pytest.raises(stripe_api.StripePaymentError, match="declined"):
        stripe_api.authorize_payment(booking)


def test_network_error_maps_to_transient_error(monkeypatch, booking_factory):
    booking = booking_factory(stripe_payment_intent_id="")

    def fake_create(**kwargs):
        raise stripe.error.APIConnectionError("connection reset")

    mock_payment_intents(monkeypatch, create=fake_create)

    with pytest.raises(stripe_api.StripeTransientError):
        stripe_api.authorize_payment(booking)


def test_missing_secret_key_is_configuration_error(settings, booking_factory):
    settings.STRIPE_SECRET_KEY = ""
    booking = booking_factory(stripe_payment_intent_id="")

    with pytest.raises(stripe_api.StripeConfigurationError):
        stripe_api.authorize_payment(booking)


def test_capture_updates_booking_and_payment_row(monkeypatch, booking_factory):
    booking = booking_factory()
    record_booking_payment(booking, payment_intent_id="pi_test_123")
    calls = []
    mock_payment_intents(
        monkeypatch,
        retrieve=lambda intent_id, **kw: SimpleNamespace(id=intent_id, status="requires_capture"),
        capture=lambda intent_id, **kw: calls.append((intent_id, kw["idempotency_key"])),
    )

    state = stripe_api.capture_authorized_payment(booking)

    assert state == Booking.PaymentState.CAPTURED
    assert calls == [("pi_test_123", f"booking:{booking.id}:v1:capture")]
    assert Payment.objects.get(booking=booking).status == Payment.Status.CAPTURED


def test_capture_accepts_already_succeeded_intent(monkeypatch, booking_factory):
    booking = booking_factory()

    def fail_capture(*args, **kwargs):
        raise AssertionError("capture should not be called")

    mock_payment_intents(
        monkeypatch,
        retrieve=lambda intent_id, **kw: SimpleNamespace(id=intent_id, status="succeeded"),
        capture=fail_capture,
    )

    assert stripe_api.capture_authorized_payment(booking) == Booking.PaymentState.CAPTURED


def test_capture_rejects_cancelled_intent(monkeypatch, booking_factory):
    booking = booking_factory()
    mock_payment_intents(
        monkeypatch,
        retrieve=lambda intent_id, **kw: SimpleNamespace(id=intent_id, status="canceled"),
    )

    with pytest.raises(stripe_api.StripePaymentError):
        stripe_api.capture_authorized_payment(booking)

    booking.refresh_from_db()
    assert booking.payment_state == Booking.PaymentState.AUTHORIZED


def test_void_cancels_hold_with_reason(monkeypatch, booking_factory):
    booking = booking_factory()
    calls = []
    mock_payment_intents(
        monkeypatch,
        retrieve=lambda intent_id, **kw: SimpleNamespace(id=intent_id, status="requires_capture"),
        cancel=lambda intent_id, **kw: calls.append(kw["cancellation_reason"]),
    )

    assert stripe_api.void_authorized_payment(booking, reason="abandoned") == "voided"
    assert calls == ["abandoned"]


def test_void_refuses_captured_payment(booking_factory):
    booking = booking_factory(payment_state=Booking.PaymentState.CAPTURED)

    with pytest.raises(stripe_api.StripePaymentError):
        stripe_api.void_authorized_payment(booking)


def test_refund_deposit_refunds_only_the_deposit(monkeypatch, booking_factory):
    booking = booking_factory(
        payment_state=Booking.PaymentState.CAPTURED,
        deposit_amount=Decimal("75.00"),
    )
    record_booking_payment(booking, payment_intent_id="pi_test_123")
    captured = {}

    def fake_refund(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="re_123")

    monkeypatch.setattr(stripe_api.stripe, "Refund", type("MockRefund", (), {"create": staticmethod(fake_refund)}))

    assert stripe_api.refund_deposit(booking) == "re_123"
    assert captured["amount"] == 7500
    assert captured["payment_intent"] == "pi_test_123"
    booking.refresh_from_db()
    assert booking.deposit_status == Booking.DepositStatus.REFUNDED
    assert Payment.objects.get(booking=booking).deposit_refund_id == "re_123"


def test_refund_deposit_skips_zero_deposit(booking_factory):
    booking = booking_factory(payment_state=Booking.PaymentState.CAPTURED)

    assert stripe_api.refund_deposit(booking) is None


def test_ensure_customer_recreates_missing_customer(monkeypatch, renter_user):
    def fake_retrieve(customer_id):
        raise stripe.error.InvalidRequestError("No such customer", "id", code="resource_missing")

    monkeypatch.setattr(
        stripe_api.stripe,
        "Customer",
        type(
            "MockCustomer",
            (),
            {
                "retrieve": staticmethod(fake_retrieve),
                "create": staticmethod(lambda **kw: SimpleNamespace(id="cus_fresh")),
            },
        ),
    )

    assert stripe_api.ensure_stripe_customer(renter_user) == "cus_fresh"
    renter_user.refresh_from_db()
    assert renter_user.stripe_customer_id == "cus_fresh"


def test_owner_transfer_flags_insufficient_balance(monkeypatch, booking_factory):
    booking = booking_factory(status=Booking.Status.COMPLETED)

    def fake_transfer(**kwargs):
        raise stripe.error.InvalidRequestError(
            "Insufficient funds in Stripe account.", None, code="balance_insufficient"
        )

    monkeypatch.setattr(
        stripe_api.stripe, "Transfer", type("MockTransfer", (), {"create": staticmethod(fake_transfer)})
    )

    with pytest.raises(stripe_api.StripeInsufficientBalanceError):
        stripe_api.create_owner_transfer(booking)


def test_authorize_charges_extras_less_points_credit(monkeypatch, settings, booking_factory):
    settings.STRIPE_BOOKINGS_DESTINATION_CHARGES = True
    booking = booking_factory(
        stripe_payment_intent_id="",
        payment_state=Booking.PaymentState.REQUIRES_PAYMENT,
        delivery_fee=Decimal("20.00"),
        insurance_fee=Decimal("14.00"),
        points_redeemed=100,
        points_credit=Decimal("10.00"),
    )
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="pi_extras", client_secret="secret")

    mock_payment_intents(monkeypatch, create=fake_create)

    stripe_api.authorize_payment(booking)

    assert captured["amount"] == 9300
    # owner still nets 48.00; the platform keeps the rest
    assert captured["application_fee_amount"] == 4500


def test_retained_deposit_is_transferred_to_owner(monkeypatch, booking_factory):
    booking = booking_factory(
        status=Booking.Status.COMPLETED,
        deposit_amount=Decimal("50.00"),
        deposit_status=Booking.DepositStatus.HELD,
    )
    captured = {}

    def fake_transfer(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="tr_deposit")

    monkeypatch.setattr(
        stripe_api.stripe, "Transfer", type("MockTransfer", (), {"create": staticmethod(fake_transfer)})
    )

    assert stripe_api.transfer_retained_deposit(booking) == "tr_deposit"
    assert captured["amount"] == 5000
    assert captured["destination"] == "acct_test_owner"
    assert captured["metadata"]["kind"] == "deposit_retained"
    assert captured["idempotency_key"] == f"booking:{booking.id}:deposit_retain"


def test_retained_deposit_moves_nothing_with_destination_charges(settings, booking_factory):
    settings.STRIPE_BOOKINGS_DESTINATION_CHARGES = True
    booking = booking_factory(deposit_amount=Decimal("50.00"))

    assert stripe_api.transfer_retained_deposit(booking) == ""
