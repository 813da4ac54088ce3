"""Payment intents and gateway callback verification.

Callbacks are the only way an order becomes paid. A callback is trusted
only after:
- its HMAC-SHA256 signature over the raw body matches the shared secret
- every required field parses into a VerifiedPaymentEvent
- its delivery timestamp (when sent) falls inside the tolerance window
- its event id has not been seen before with a different body

Everything else is a VerificationFailure and leaves the order untouched.
"""
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from typing import Optional, Union

from django.utils import timezone

from django_checkout import ledger
from django_checkout.conf import callback_tolerance, get_setting
from django_checkout.exceptions import (
    AmountMismatchError,
    FulfillmentError,
    GatewayUnavailableError,
    OrderStateError,
)
from django_checkout.fulfillment import fulfill
from django_checkout.gateways import get_gateway, get_gateway_class
from django_checkout.models import GatewayCallback, Order
from django_checkout.money import Money, parse_amount

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = 'X-Gateway-Signature'
TIMESTAMP_HEADER = 'X-Gateway-Timestamp'

# Gateway statuses that mean the money was captured
SUCCESS_STATUSES = frozenset({'captured', 'succeeded', 'paid'})

REQUIRED_FIELDS = ('gatewayIntentRef', 'eventId', 'amount', 'currency', 'status')


# =============================================================================
# Payment intents
# =============================================================================

def create_intent(order: Order) -> str:
    """Create a gateway payment intent for a draft order.

    The intent is sized to the order's own total, never a client value.
    On success the order moves draft -> awaiting_payment. Calling this again
    for an order already awaiting payment returns the stored intent ref.

    Returns:
        The gateway intent reference

    Raises:
        GatewayUnavailableError: Gateway failed or timed out; order stays draft
        OrderStateError: Order is past awaiting_payment
    """
    order = ledger.get_order(order.pk)

    if order.status == Order.Status.AWAITING_PAYMENT and order.gateway_intent_ref:
        return order.gateway_intent_ref
    if order.status != Order.Status.DRAFT:
        raise OrderStateError(
            f"Order {order.pk} is {order.status}, cannot create a payment intent",
            current_status=order.status,
        )

    gateway = get_gateway()
    amount = Money(order.total_amount, order.currency).quantized()
    try:
        result = gateway.create_intent(
            reference=order.fulfillment_idempotency_key,
            amount=amount,
            timeout=get_setting('GATEWAY_TIMEOUT'),
        )
    except GatewayUnavailableError:
        logger.warning(f"Order {order.pk}: gateway {gateway.provider_name} unavailable")
        raise
    except Exception as e:
        logger.warning(f"Order {order.pk}: intent creation failed at {gateway.provider_name}: {e}")
        raise GatewayUnavailableError(
            "Payment gateway is unavailable, please retry",
            provider=gateway.provider_name,
            original_error=e,
        ) from e

    if not result.intent_ref:
        raise GatewayUnavailableError(
            "Payment gateway returned no intent reference",
            provider=gateway.provider_name,
        )

    order = ledger.attach_intent(order, result.intent_ref)
    logger.info(f"Order {order.pk}: intent {result.intent_ref} created for {amount}")
    return order.gateway_intent_ref


# =============================================================================
# Callback verification
# =============================================================================

@dataclass(frozen=True)
class VerifiedPaymentEvent:
    """A gateway callback whose signature and fields checked out."""

    intent_ref: str
    event_id: str
    amount: Decimal
    currency: str
    status: str
    body_hash: str
    created: Optional[datetime] = None

    @property
    def is_success(self) -> bool:
        return self.status.lower() in SUCCESS_STATUSES


@dataclass(frozen=True)
class VerificationFailure:
    """A gateway callback that must not change any order."""

    reason: str
    body_hash: str = ''
    event_id: str = ''


def body_hash(raw_payload: bytes) -> str:
    return hashlib.sha256(raw_payload).hexdigest()


def compute_signature(raw_payload: bytes, secret: str, timestamp: Optional[str] = None) -> str:
    """Hex HMAC-SHA256 as sent in X-Gateway-Signature.

    Signs the raw body, or "<timestamp>.<body>" when the gateway also sends
    an X-Gateway-Timestamp delivery header.
    """
    message = raw_payload if timestamp is None else f"{timestamp}.".encode() + raw_payload
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _signature_matches(
    raw_payload: bytes,
    signature_header: str,
    secret: str,
    timestamp: Optional[str] = None,
) -> bool:
    signature = signature_header.strip()
    if signature.startswith('sha256='):
        signature = signature[len('sha256='):]
    expected = compute_signature(raw_payload, secret, timestamp)
    return hmac.compare_digest(expected, signature.lower())


def _parse_event(payload: dict, digest: str) -> Union[VerifiedPaymentEvent, VerificationFailure]:
    missing = [name for name in REQUIRED_FIELDS if payload.get(name) in (None, '')]
    if missing:
        return VerificationFailure(f"Missing fields: {', '.join(missing)}", body_hash=digest)

    for name in ('gatewayIntentRef', 'eventId', 'currency', 'status'):
        if not isinstance(payload[name], str):
            return VerificationFailure(f"Field {name} must be a string", body_hash=digest)

    try:
        amount = parse_amount(payload['amount'])
    except ValueError:
        return VerificationFailure(f"Invalid amount: {payload['amount']!r}", body_hash=digest)

    currency = payload['currency'].strip().upper()
    if len(currency) != 3 or not currency.isalpha():
        return VerificationFailure(f"Invalid currency: {payload['currency']!r}", body_hash=digest)

    created = None
    if payload.get('created') is not None:
        raw_created = payload['created']
        if isinstance(raw_created, bool) or not isinstance(raw_created, (int, float)):
            return VerificationFailure(f"Invalid timestamp: {raw_created!r}", body_hash=digest)
        try:
            created = datetime.fromtimestamp(raw_created, tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError):
            return VerificationFailure(f"Invalid timestamp: {raw_created!r}", body_hash=digest)

    return VerifiedPaymentEvent(
        intent_ref=payload['gatewayIntentRef'],
        event_id=payload['eventId'],
        amount=amount,
        currency=currency,
        status=payload['status'],
        body_hash=digest,
        created=created,
    )


def verify_callback(
    raw_payload: bytes,
    signature_header: Optional[str],
    timestamp_header: Optional[str] = None,
) -> Union[VerifiedPaymentEvent, VerificationFailure]:
    """Validate a raw gateway callback into a VerifiedPaymentEvent.

    Never raises for bad input; every problem comes back as a
    VerificationFailure with a reason for the callback log.

    Clock drift is measured on the signed delivery timestamp only. The
    event's own "created" time stays fixed across gateway retries, so it is
    recorded but never compared with the clock.

    Args:
        raw_payload: Request body exactly as received
        signature_header: Value of the X-Gateway-Signature header
        timestamp_header: Value of the X-Gateway-Timestamp header, if sent
    """
    if isinstance(raw_payload, str):
        raw_payload = raw_payload.encode()
    digest = body_hash(raw_payload)

    secret = get_setting('GATEWAY_SECRET')
    if not secret:
        logger.error("CHECKOUT_GATEWAY_SECRET is not configured; rejecting callback")
        return VerificationFailure("Callback secret is not configured", body_hash=digest)
    if not signature_header:
        return VerificationFailure("Missing signature", body_hash=digest)

    timestamp = delivered_at = None
    if timestamp_header:
        timestamp = timestamp_header.strip()
        try:
            delivered_at = datetime.fromtimestamp(int(timestamp), tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError):
            return VerificationFailure(f"Invalid delivery timestamp: {timestamp_header!r}", body_hash=digest)

    if not _signature_matches(raw_payload, signature_header, secret, timestamp):
        return VerificationFailure("Invalid signature", body_hash=digest)

    try:
        payload = json.loads(raw_payload.decode())
    except (UnicodeDecodeError, ValueError):
        return VerificationFailure("Malformed JSON body", body_hash=digest)
    if not isinstance(payload, dict):
        return VerificationFailure("Callback body must be a JSON object", body_hash=digest)

    event = _parse_event(payload, digest)
    if isinstance(event, VerificationFailure):
        return event

    tolerance = callback_tolerance()
    if delivered_at is not None and tolerance is not None:
        drift = abs(timezone.now() - delivered_at)
        if drift > tolerance:
            return VerificationFailure(
                f"Timestamp outside tolerance ({int(drift.total_seconds())}s)",
                body_hash=digest,
                event_id=event.event_id,
            )

    # Same event id with another body is a replay, not a re-delivery
    replayed = GatewayCallback.objects.filter(
        event_id=event.event_id,
        status__in=[
            GatewayCallback.Status.ACCEPTED,
            GatewayCallback.Status.IGNORED,
            GatewayCallback.Status.CONFLICT,
        ],
    ).exclude(body_hash=digest)
    if replayed.exists():
        return VerificationFailure(
            f"Event {event.event_id} was already received with a different body",
            body_hash=digest,
            event_id=event.event_id,
        )

    return event


# =============================================================================
# Callback handling
# =============================================================================

@dataclass(frozen=True)
class CallbackOutcome:
    """Result of handle_callback; result maps onto the HTTP response."""

    ACCEPTED = 'accepted'
    DUPLICATE = 'duplicate'
    IGNORED = 'ignored'
    REJECTED = 'rejected'
    CONFLICT = 'conflict'

    result: str
    detail: str = ''
    order_id: Optional[str] = None

    @property
    def acknowledged(self) -> bool:
        """Whether the gateway should treat the delivery as done."""
        return self.result in (self.ACCEPTED, self.DUPLICATE, self.IGNORED)


def _close(callback: GatewayCallback, status: str, error_message: str = '') -> None:
    callback.status = status
    callback.error_message = error_message
    callback.processed_at = timezone.now()
    callback.save(update_fields=[
        'status', 'error_message', 'processed_at', 'event_id', 'intent_ref', 'updated_at',
    ])


def handle_callback(
    raw_payload: bytes,
    signature_header: Optional[str],
    provider: str = None,
    timestamp_header: Optional[str] = None,
) -> CallbackOutcome:
    """Process one inbound gateway callback end to end.

    Flow:
    1. Log the callback (GatewayCallback, status=received)
    2. Verify signature and fields
    3. Resolve the order by intent ref
    4. Ignore non-success gateway statuses
    5. ledger.mark_paid (amount cross-checked against the order)
    6. fulfill; grant failures are left for the sweeper

    Returns:
        CallbackOutcome; never raises for bad callbacks
    """
    if isinstance(raw_payload, str):
        raw_payload = raw_payload.encode()
    provider = provider or get_gateway_class().provider_name

    callback = GatewayCallback.objects.create(
        provider=provider,
        body_hash=body_hash(raw_payload),
        status=GatewayCallback.Status.RECEIVED,
    )

    event = verify_callback(raw_payload, signature_header, timestamp_header)
    if isinstance(event, VerificationFailure):
        callback.event_id = event.event_id
        logger.warning(f"Rejected {provider} callback {callback.pk}: {event.reason}")
        _close(callback, GatewayCallback.Status.REJECTED, event.reason)
        return CallbackOutcome(CallbackOutcome.REJECTED, event.reason)

    callback.event_id = event.event_id
    callback.intent_ref = event.intent_ref

    order = Order.objects.filter(gateway_intent_ref=event.intent_ref).first()
    if order is None:
        reason = f"No order for intent {event.intent_ref}"
        logger.warning(f"Rejected {provider} callback {callback.pk}: {reason}")
        _close(callback, GatewayCallback.Status.REJECTED, reason)
        return CallbackOutcome(CallbackOutcome.REJECTED, reason)

    order_id = str(order.pk)

    if not event.is_success:
        detail = f"Gateway status {event.status!r} does not settle an order"
        logger.info(f"Order {order_id}: ignoring event {event.event_id}, {detail}")
        _close(callback, GatewayCallback.Status.IGNORED, detail)
        return CallbackOutcome(CallbackOutcome.IGNORED, detail, order_id)

    settled = order.status in (Order.Status.PAID, Order.Status.FULFILLED)
    if settled and order.gateway_event_id != event.event_id:
        detail = f"Order already settled by event {order.gateway_event_id}"
        logger.warning(f"Order {order_id}: ignoring event {event.event_id}, {detail}")
        _close(callback, GatewayCallback.Status.IGNORED, detail)
        return CallbackOutcome(CallbackOutcome.IGNORED, detail, order_id)

    try:
        order = ledger.mark_paid(order.pk, event.event_id, event.amount, event.currency)
    except AmountMismatchError as e:
        _close(callback, GatewayCallback.Status.CONFLICT, str(e))
        return CallbackOutcome(CallbackOutcome.CONFLICT, "Payment amount does not match the order", order_id)
    except OrderStateError as e:
        logger.warning(f"Order {order_id}: event {event.event_id} conflicts with order state: {e}")
        _close(callback, GatewayCallback.Status.CONFLICT, str(e))
        return CallbackOutcome(CallbackOutcome.CONFLICT, f"Order is {e.current_status}", order_id)

    if order.status == Order.Status.PAID:
        try:
            fulfill(order)
        except (FulfillmentError, OrderStateError) as e:
            # Payment is recorded; the sweeper re-drives fulfillment
            logger.error(f"Order {order_id}: fulfillment after payment failed: {e}")

    _close(callback, GatewayCallback.Status.ACCEPTED)
    if settled:
        return CallbackOutcome(CallbackOutcome.DUPLICATE, "Event already applied", order_id)
    return CallbackOutcome(CallbackOutcome.ACCEPTED, "Payment recorded", order_id)
