"""Order ledger: the only code that writes Order.status.

- Every transition is a single conditional UPDATE
  (UPDATE ... WHERE id = ? AND status = ?), never read-then-write
- The loser of a concurrent transition observes the winner's result and
  does not re-apply side effects
- Transitions only follow Order.ALLOWED_TRANSITIONS; nothing regresses
- Ambiguous input leaves the order where it is
"""
import logging
from decimal import Decimal
from typing import Optional

from django.core.exceptions import ValidationError
from django.db.models import F
from django.utils import timezone

from django_checkout.conf import payment_timeout
from django_checkout.exceptions import (
    AmountMismatchError,
    OrderNotFoundError,
    OrderStateError,
)
from django_checkout.models import Order
from django_checkout.money import parse_amount

logger = logging.getLogger(__name__)

Status = Order.Status


def get_order(order_id) -> Order:
    """Load an order by id.

    Raises:
        OrderNotFoundError: If no such order exists
    """
    try:
        return Order.objects.get(pk=order_id)
    except (Order.DoesNotExist, ValidationError, ValueError):
        raise OrderNotFoundError(f"Order {order_id} not found")


def transition(order_id, from_status: str, to_status: str, **fields) -> bool:
    """Compare-and-swap an order's status.

    Applies the update only if the stored status still equals from_status.

    Args:
        order_id: Order primary key
        from_status: Expected current status
        to_status: New status, must be allowed from from_status
        **fields: Other columns written in the same UPDATE

    Returns:
        True if this call performed the transition, False if the order was
        no longer in from_status (another worker got there first)

    Raises:
        OrderStateError: If the transition is not in ALLOWED_TRANSITIONS
    """
    if to_status not in Order.ALLOWED_TRANSITIONS[from_status]:
        raise OrderStateError(
            f"Transition {from_status} -> {to_status} is not allowed",
            current_status=from_status,
        )

    updated = Order.objects.filter(pk=order_id, status=from_status).update(
        status=to_status,
        updated_at=timezone.now(),
        **fields,
    )
    if updated:
        logger.info(f"Order {order_id}: {from_status} -> {to_status}")
    return bool(updated)


def attach_intent(order: Order, intent_ref: str) -> Order:
    """Record the gateway intent and move draft -> awaiting_payment.

    Raises:
        OrderStateError: If the order already left draft with another intent
    """
    now = timezone.now()
    if transition(
        order.pk,
        Status.DRAFT,
        Status.AWAITING_PAYMENT,
        gateway_intent_ref=intent_ref,
        awaiting_payment_at=now,
    ):
        return get_order(order.pk)

    current = get_order(order.pk)
    if current.status == Status.AWAITING_PAYMENT and current.gateway_intent_ref == intent_ref:
        return current
    raise OrderStateError(
        f"Order {order.pk} is {current.status}, cannot attach intent",
        current_status=current.status,
    )


def mark_paid(
    order_id,
    gateway_event_id: str,
    reported_amount: Decimal,
    reported_currency: Optional[str] = None,
) -> Order:
    """Move an order from awaiting_payment to paid for a verified gateway event.

    The reported amount (and currency, when given) is cross-checked against
    the order's own total. A mismatch is a trust violation: the order moves
    to payment_failed, is flagged for review, and is never fulfilled.

    Idempotent: a second delivery of the same event short-circuits before the
    compare-and-swap, and the loser of a concurrent race returns the order
    the winner already marked paid.

    Args:
        order_id: Order primary key
        gateway_event_id: Gateway event id used for dedup
        reported_amount: Amount the gateway says it captured
        reported_currency: Currency the gateway says it captured

    Returns:
        The order, now paid (or already paid/fulfilled)

    Raises:
        OrderNotFoundError: If the order does not exist
        AmountMismatchError: If amount or currency differ from the order
        OrderStateError: If the order is not awaiting payment (draft,
            expired, payment_failed, fulfillment_failed)
    """
    order = get_order(order_id)

    if order.status in (Status.PAID, Status.FULFILLED):
        if order.gateway_event_id == gateway_event_id:
            logger.info(f"Order {order.pk}: event {gateway_event_id} already applied")
        else:
            logger.warning(
                f"Order {order.pk}: already settled by event {order.gateway_event_id}, "
                f"ignoring event {gateway_event_id}"
            )
        return order

    if order.status != Status.AWAITING_PAYMENT:
        raise OrderStateError(
            f"Order {order.pk} is {order.status}, cannot mark paid",
            current_status=order.status,
        )

    amount_matches = parse_amount(reported_amount) == order.total_amount
    currency_matches = reported_currency is None or reported_currency.upper() == order.currency
    if not (amount_matches and currency_matches):
        expected = f"{order.total_amount} {order.currency}"
        reported = f"{reported_amount} {reported_currency or order.currency}"
        now = timezone.now()
        if transition(
            order.pk,
            Status.AWAITING_PAYMENT,
            Status.PAYMENT_FAILED,
            gateway_event_id=gateway_event_id,
            failed_at=now,
            needs_review=True,
            failure_reason="Payment amount did not match the order total",
        ):
            logger.error(
                f"Order {order.pk}: amount mismatch on event {gateway_event_id}, "
                f"expected {expected}, gateway reported {reported}; flagged for review"
            )
        raise AmountMismatchError(order.pk, expected, reported)

    if transition(
        order.pk,
        Status.AWAITING_PAYMENT,
        Status.PAID,
        gateway_event_id=gateway_event_id,
        paid_at=timezone.now(),
    ):
        return get_order(order.pk)

    # Lost the race: someone else moved the order first
    current = get_order(order.pk)
    if current.status in (Status.PAID, Status.FULFILLED):
        return current
    raise OrderStateError(
        f"Order {order.pk} is {current.status}, cannot mark paid",
        current_status=current.status,
    )


def expire_stale(now=None) -> list[Order]:
    """Expire orders that waited for payment longer than CHECKOUT_PAYMENT_TIMEOUT.

    Called by the reconciliation sweeper, never by the payment path.

    Args:
        now: Reference time (defaults to timezone.now())

    Returns:
        Orders this call moved to expired
    """
    now = now or timezone.now()
    cutoff = now - payment_timeout()

    candidates = list(
        Order.objects.awaiting_payment_since_before(cutoff).values_list('pk', flat=True)
    )
    expired = []
    for order_id in candidates:
        if transition(
            order_id,
            Status.AWAITING_PAYMENT,
            Status.EXPIRED,
            expired_at=now,
            failure_reason="Payment was not received in time",
        ):
            expired.append(order_id)

    return list(Order.objects.filter(pk__in=expired))


def mark_fulfilled(order: Order) -> Order:
    """Move paid -> fulfilled once every entitlement is granted.

    Raises:
        OrderStateError: If the order is neither paid nor already fulfilled
    """
    if transition(order.pk, Status.PAID, Status.FULFILLED, fulfilled_at=timezone.now()):
        return get_order(order.pk)

    current = get_order(order.pk)
    if current.status == Status.FULFILLED:
        return current
    raise OrderStateError(
        f"Order {order.pk} is {current.status}, cannot mark fulfilled",
        current_status=current.status,
    )


def record_fulfillment_failure(order: Order, error: str, max_attempts: int) -> Order:
    """Count a failed fulfillment attempt; give up after max_attempts.

    The attempt counter is incremented in the same conditional UPDATE that
    checks the order is still paid. Once the counter reaches max_attempts the
    order moves to fulfillment_failed and is flagged for review.

    Returns:
        The refreshed order (paid, or fulfillment_failed once exhausted)
    """
    Order.objects.filter(pk=order.pk, status=Status.PAID).update(
        fulfillment_attempts=F('fulfillment_attempts') + 1,
        last_fulfillment_error=error[:2000],
        updated_at=timezone.now(),
    )
    current = get_order(order.pk)

    if current.status == Status.PAID and current.fulfillment_attempts >= max_attempts:
        if transition(
            current.pk,
            Status.PAID,
            Status.FULFILLMENT_FAILED,
            failed_at=timezone.now(),
            needs_review=True,
            failure_reason="Your purchase could not be delivered; support has been notified",
        ):
            logger.critical(
                f"Order {current.pk}: fulfillment failed after {current.fulfillment_attempts} "
                f"attempts, payment captured but goods not delivered: {error}"
            )
        current = get_order(current.pk)

    return current


def acknowledge_review(order_id) -> Order:
    """Clear the review flag once an operator has handled a failed order.

    Status is left untouched; failed orders stay failed.
    """
    order = get_order(order_id)
    if order.status not in Order.FAILURE_STATUSES:
        raise OrderStateError(
            f"Order {order.pk} is {order.status}, nothing to acknowledge",
            current_status=order.status,
        )
    Order.objects.filter(pk=order.pk).update(needs_review=False, updated_at=timezone.now())
    logger.info(f"Order {order.pk}: review acknowledged")
    return get_order(order.pk)
