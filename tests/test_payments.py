"""Tests for payment intents, callback verification and callback handling."""

import json
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import DatabaseError
from django.utils import timezone
from freezegun import freeze_time

from django_checkout import fulfillment, ledger
from django_checkout.exceptions import GatewayUnavailableError, OrderStateError
from django_checkout.models import Entitlement, GatewayCallback, Order
from django_checkout.money import Money
from django_checkout.payments import (
    CallbackOutcome,
    VerificationFailure,
    VerifiedPaymentEvent,
    compute_signature,
    create_intent,
    handle_callback,
    verify_callback,
)
from tests.gateways import RecordingGateway


@pytest.mark.django_db
class TestCreateIntent:
    """Test suite for create_intent."""

    def test_opens_intent_for_order_total(self, draft):
        intent_ref = create_intent(draft)

        assert intent_ref == f"pi_{draft.pk}"
        order = ledger.get_order(draft.pk)
        assert order.status == Order.Status.AWAITING_PAYMENT
        assert order.gateway_intent_ref == intent_ref

        call, = RecordingGateway.calls
        assert call["reference"] == str(draft.pk)
        assert call["amount"] == Money("49.00", "USD")
        assert call["timeout"] == 10

    def test_client_retry_returns_stored_intent(self, draft):
        first = create_intent(draft)
        second = create_intent(draft)

        assert second == first
        assert len(RecordingGateway.calls) == 1

    def test_gateway_failure_leaves_order_draft(self, draft, settings):
        settings.CHECKOUT_GATEWAY_CLASS = "tests.gateways.FailingGateway"

        with pytest.raises(GatewayUnavailableError) as exc_info:
            create_intent(draft)

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.original_error, TimeoutError)
        order = ledger.get_order(draft.pk)
        assert order.status == Order.Status.DRAFT
        assert order.gateway_intent_ref is None

    def test_retry_after_gateway_failure(self, draft, settings):
        settings.CHECKOUT_GATEWAY_CLASS = "tests.gateways.FailingGateway"
        with pytest.raises(GatewayUnavailableError):
            create_intent(draft)

        settings.CHECKOUT_GATEWAY_CLASS = "tests.gateways.RecordingGateway"
        assert create_intent(draft) == f"pi_{draft.pk}"

    def test_console_gateway(self, draft, settings):
        settings.CHECKOUT_GATEWAY_CLASS = "django_checkout.gateways.console.ConsoleGateway"

        intent_ref = create_intent(draft)

        assert intent_ref.startswith("console_")
        assert ledger.get_order(draft.pk).status == Order.Status.AWAITING_PAYMENT

    def test_paid_order_rejected(self, paid_order):
        with pytest.raises(OrderStateError):
            create_intent(paid_order)


@pytest.mark.django_db
class TestVerifyCallback:
    """Test suite for verify_callback."""

    def test_valid_callback(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order)

        event = verify_callback(raw, signature)

        assert isinstance(event, VerifiedPaymentEvent)
        assert event.intent_ref == awaiting_order.gateway_intent_ref
        assert event.event_id == "evt1"
        assert event.amount == Decimal("49.00")
        assert event.currency == "USD"
        assert event.is_success

    def test_numeric_amount(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order, amount=49)
        assert verify_callback(raw, signature).amount == Decimal("49")

    def test_prefixed_signature(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order)
        assert isinstance(verify_callback(raw, f"sha256={signature}"), VerifiedPaymentEvent)

    def test_missing_signature(self, awaiting_order, make_callback):
        raw, _ = make_callback(awaiting_order)
        result = verify_callback(raw, None)
        assert isinstance(result, VerificationFailure)
        assert result.reason == "Missing signature"

    def test_wrong_signature(self, awaiting_order, make_callback):
        raw, _ = make_callback(awaiting_order)
        result = verify_callback(raw, compute_signature(raw, "not-the-secret"))
        assert result.reason == "Invalid signature"

    def test_tampered_body(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order)
        tampered = raw.replace(b"49.00", b"4.90")
        assert isinstance(verify_callback(tampered, signature), VerificationFailure)

    def test_secret_not_configured(self, awaiting_order, make_callback, settings):
        raw, signature = make_callback(awaiting_order)
        settings.CHECKOUT_GATEWAY_SECRET = ""
        assert isinstance(verify_callback(raw, signature), VerificationFailure)

    def test_malformed_json(self, settings):
        raw = b"{not json"
        signature = compute_signature(raw, settings.CHECKOUT_GATEWAY_SECRET)
        assert verify_callback(raw, signature).reason == "Malformed JSON body"

    def test_non_object_json(self, settings):
        raw = b"[1, 2]"
        signature = compute_signature(raw, settings.CHECKOUT_GATEWAY_SECRET)
        assert isinstance(verify_callback(raw, signature), VerificationFailure)

    @pytest.mark.parametrize("field", ["gatewayIntentRef", "eventId", "amount", "currency", "status"])
    def test_missing_field(self, settings, field):
        payload = {
            "gatewayIntentRef": "pi_1",
            "eventId": "evt1",
            "amount": "49.00",
            "currency": "USD",
            "status": "captured",
        }
        del payload[field]
        raw = json.dumps(payload).encode()

        result = verify_callback(raw, compute_signature(raw, settings.CHECKOUT_GATEWAY_SECRET))

        assert isinstance(result, VerificationFailure)
        assert field in result.reason

    @pytest.mark.parametrize("overrides", [
        {"amount": "forty-nine"},
        {"amount": True},
        {"currency": "US"},
        {"eventId": 12},
        {"created": "yesterday"},
    ])
    def test_malformed_field(self, awaiting_order, make_callback, overrides):
        raw, signature = make_callback(awaiting_order, **overrides)
        assert isinstance(verify_callback(raw, signature), VerificationFailure)

    @freeze_time("2026-03-01 12:00:00")
    def test_delivery_timestamp_inside_tolerance(self, awaiting_order, make_callback):
        delivered = str(int(timezone.now().timestamp()) - 60)
        raw, signature = make_callback(awaiting_order, timestamp=delivered)
        assert isinstance(verify_callback(raw, signature, delivered), VerifiedPaymentEvent)

    @freeze_time("2026-03-01 12:00:00")
    def test_stale_delivery_timestamp_rejected(self, awaiting_order, make_callback):
        delivered = str(int(timezone.now().timestamp()) - 600)
        raw, signature = make_callback(awaiting_order, timestamp=delivered)

        result = verify_callback(raw, signature, delivered)

        assert isinstance(result, VerificationFailure)
        assert "tolerance" in result.reason

    @freeze_time("2026-03-01 12:00:00")
    def test_tolerance_can_be_disabled(self, awaiting_order, make_callback, settings):
        settings.CHECKOUT_CALLBACK_TOLERANCE = None
        delivered = str(int(timezone.now().timestamp()) - 86400)
        raw, signature = make_callback(awaiting_order, timestamp=delivered)
        assert isinstance(verify_callback(raw, signature, delivered), VerifiedPaymentEvent)

    @freeze_time("2026-03-01 12:00:00")
    def test_old_event_creation_time_is_not_drift(self, awaiting_order, make_callback):
        """A gateway retry keeps the event's created time; only the delivery time is checked."""
        created = int(timezone.now().timestamp()) - 3600
        delivered = str(int(timezone.now().timestamp()))
        raw, signature = make_callback(awaiting_order, created=created)
        timed_raw, timed_signature = make_callback(awaiting_order, created=created, timestamp=delivered)

        untimed = verify_callback(raw, signature)
        timed = verify_callback(timed_raw, timed_signature, delivered)

        assert isinstance(untimed, VerifiedPaymentEvent)
        assert isinstance(timed, VerifiedPaymentEvent)
        assert int(timed.created.timestamp()) == created

    def test_delivery_timestamp_is_signed(self, awaiting_order, make_callback):
        now = int(timezone.now().timestamp())
        raw, signature = make_callback(awaiting_order, timestamp=str(now - 600))

        result = verify_callback(raw, signature, str(now))

        assert isinstance(result, VerificationFailure)
        assert result.reason == "Invalid signature"

    def test_unsigned_timestamp_header_rejected(self, awaiting_order, make_callback):
        """A signature over the bare body does not cover an added timestamp."""
        raw, signature = make_callback(awaiting_order)
        result = verify_callback(raw, signature, str(int(timezone.now().timestamp())))
        assert isinstance(result, VerificationFailure)

    def test_malformed_delivery_timestamp(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order, timestamp="soon")

        result = verify_callback(raw, signature, "soon")

        assert isinstance(result, VerificationFailure)
        assert "delivery timestamp" in result.reason

    def test_event_id_replayed_with_different_body(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order)
        handle_callback(raw, signature)

        replay, replay_signature = make_callback(awaiting_order, amount="1.00")
        result = verify_callback(replay, replay_signature)

        assert isinstance(result, VerificationFailure)
        assert "different body" in result.reason

    def test_redelivery_with_same_body_verifies(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order)
        handle_callback(raw, signature)

        assert isinstance(verify_callback(raw, signature), VerifiedPaymentEvent)


@pytest.mark.django_db
class TestHandleCallback:
    """End-to-end callback handling."""

    def test_happy_path(self, awaiting_order, make_callback):
        """Callback amount 49, event evt1: paid, one download grant, fulfilled."""
        raw, signature = make_callback(awaiting_order, amount=49, event_id="evt1")

        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.ACCEPTED
        assert outcome.acknowledged
        assert outcome.order_id == str(awaiting_order.pk)
        order = ledger.get_order(awaiting_order.pk)
        assert order.status == Order.Status.FULFILLED
        assert order.gateway_event_id == "evt1"
        grant = Entitlement.objects.get(order=order)
        assert (grant.kind, grant.target) == ("download", "P1")

        log = GatewayCallback.objects.get()
        assert log.status == GatewayCallback.Status.ACCEPTED
        assert log.event_id == "evt1"
        assert log.intent_ref == awaiting_order.gateway_intent_ref
        assert log.provider == "recording"
        assert log.processed_at is not None

    def test_redelivery_is_idempotent(self, awaiting_order, make_callback):
        """Delivering evt1 twice gives one paid transition and one set of grants."""
        raw, signature = make_callback(awaiting_order, event_id="evt1")
        handle_callback(raw, signature)
        before = ledger.get_order(awaiting_order.pk)
        grants_before = list(Entitlement.objects.values_list("pk", "license_key"))

        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.DUPLICATE
        after = ledger.get_order(awaiting_order.pk)
        assert after.status == Order.Status.FULFILLED
        assert after.paid_at == before.paid_at
        assert after.fulfilled_at == before.fulfilled_at
        assert list(Entitlement.objects.values_list("pk", "license_key")) == grants_before
        assert GatewayCallback.objects.count() == 2

    def test_gateway_retry_after_tolerance_is_accepted(self, awaiting_order, make_callback):
        """A capture re-delivered long after the event was created still settles the order."""
        created = int(timezone.now().timestamp())
        with freeze_time(timezone.now() + timedelta(minutes=20)):
            delivered = str(int(timezone.now().timestamp()))
            raw, signature = make_callback(awaiting_order, created=created, timestamp=delivered)

            outcome = handle_callback(raw, signature, timestamp_header=delivered)

        assert outcome.result == CallbackOutcome.ACCEPTED
        assert ledger.get_order(awaiting_order.pk).status == Order.Status.FULFILLED

    def test_provider_name_does_not_build_a_gateway(self, awaiting_order, make_callback, monkeypatch):
        def no_gateway():
            raise AssertionError("callbacks must not instantiate the gateway")

        monkeypatch.setattr("django_checkout.payments.get_gateway", no_gateway)
        raw, signature = make_callback(awaiting_order)

        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.ACCEPTED
        assert GatewayCallback.objects.get().provider == "recording"

    def test_amount_mismatch(self, awaiting_order, make_callback):
        """Callback amount 45 on a 49 order: payment_failed, nothing granted."""
        raw, signature = make_callback(awaiting_order, amount=45)

        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.CONFLICT
        order = ledger.get_order(awaiting_order.pk)
        assert order.status == Order.Status.PAYMENT_FAILED
        assert order.needs_review
        assert Entitlement.objects.count() == 0
        assert GatewayCallback.objects.get().status == GatewayCallback.Status.CONFLICT

    def test_late_callback_for_expired_order(self, awaiting_order, make_callback):
        ledger.expire_stale(now=timezone.now() + timedelta(minutes=31))
        raw, signature = make_callback(awaiting_order)

        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.CONFLICT
        assert not outcome.acknowledged
        assert ledger.get_order(awaiting_order.pk).status == Order.Status.EXPIRED
        assert Entitlement.objects.count() == 0

    def test_bad_signature_rejected(self, awaiting_order, make_callback):
        raw, _ = make_callback(awaiting_order)

        outcome = handle_callback(raw, "0" * 64)

        assert outcome.result == CallbackOutcome.REJECTED
        assert ledger.get_order(awaiting_order.pk).status == Order.Status.AWAITING_PAYMENT
        log = GatewayCallback.objects.get()
        assert log.status == GatewayCallback.Status.REJECTED
        assert log.error_message == "Invalid signature"

    def test_unknown_intent_rejected(self, settings):
        raw = json.dumps({
            "gatewayIntentRef": "pi_unknown",
            "eventId": "evt1",
            "amount": "49.00",
            "currency": "USD",
            "status": "captured",
        }).encode()

        outcome = handle_callback(raw, compute_signature(raw, settings.CHECKOUT_GATEWAY_SECRET))

        assert outcome.result == CallbackOutcome.REJECTED
        assert "pi_unknown" in outcome.detail

    def test_non_success_status_ignored(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order, status="failed")

        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.IGNORED
        assert outcome.acknowledged
        assert ledger.get_order(awaiting_order.pk).status == Order.Status.AWAITING_PAYMENT

    def test_second_event_for_settled_order_ignored(self, awaiting_order, make_callback):
        raw, signature = make_callback(awaiting_order, event_id="evt1")
        handle_callback(raw, signature)

        raw, signature = make_callback(awaiting_order, event_id="evt2")
        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.IGNORED
        assert ledger.get_order(awaiting_order.pk).gateway_event_id == "evt1"
        assert Entitlement.objects.count() == 1

    def test_grant_failure_still_acknowledged(self, awaiting_order, make_callback, monkeypatch):
        def broken_grant(order, line):
            raise DatabaseError("entitlement store unavailable")

        monkeypatch.setattr(fulfillment, "grant_for_line", broken_grant)
        raw, signature = make_callback(awaiting_order)

        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.ACCEPTED
        order = ledger.get_order(awaiting_order.pk)
        assert order.status == Order.Status.PAID
        assert order.fulfillment_attempts == 1

    def test_duplicate_redrives_unfinished_fulfillment(self, awaiting_order, make_callback, monkeypatch):
        real_grant = fulfillment.grant_for_line

        def broken_grant(order, line):
            raise DatabaseError("entitlement store unavailable")

        monkeypatch.setattr(fulfillment, "grant_for_line", broken_grant)
        raw, signature = make_callback(awaiting_order)
        handle_callback(raw, signature)

        monkeypatch.setattr(fulfillment, "grant_for_line", real_grant)
        outcome = handle_callback(raw, signature)

        assert outcome.result == CallbackOutcome.DUPLICATE
        assert ledger.get_order(awaiting_order.pk).status == Order.Status.FULFILLED
        assert Entitlement.objects.count() == 1
