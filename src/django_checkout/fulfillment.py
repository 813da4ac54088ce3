"""Entitlement fulfillment for paid orders.

- Grants are upserts keyed by (order, kind, target), enforced by a DB unique
  constraint, so re-running fulfill() never writes a second row
- Each grant runs in its own savepoint; a failure leaves earlier grants
  standing and the order paid
- Only a complete set of grants moves the order to fulfilled
- Exhausted retries move the order to fulfillment_failed and alert operators
"""
import logging
import secrets
from dataclasses import dataclass, field

from dateutil.relativedelta import relativedelta
from django.db import DatabaseError, transaction
from django.utils import timezone

from django_checkout import ledger
from django_checkout.conf import download_expiry, get_setting
from django_checkout.exceptions import (
    EntitlementGrantError,
    FulfillmentFailedError,
    OrderStateError,
)
from django_checkout.models import Entitlement, Order, OrderLineItem, Product

logger = logging.getLogger(__name__)

KIND_FOR_PRODUCT = {
    Product.Kind.DOWNLOAD: Entitlement.Kind.DOWNLOAD,
    Product.Kind.PLAN: Entitlement.Kind.SUBSCRIPTION,
    Product.Kind.API_TOOL: Entitlement.Kind.API_TIER,
}

BILLING_PERIODS = {
    Product.BillingCycle.MONTHLY: relativedelta(months=1),
    Product.BillingCycle.YEARLY: relativedelta(years=1),
}


@dataclass(frozen=True)
class FulfillmentResult:
    """Outcome of fulfill(): the order's final status and its entitlements."""

    order_id: str
    status: str
    entitlements: tuple = field(default_factory=tuple)
    created_count: int = 0

    @property
    def grant_keys(self) -> set:
        return {e.grant_key for e in self.entitlements}

    @property
    def replayed(self) -> bool:
        """True when this call wrote nothing new."""
        return self.created_count == 0


def generate_license_key() -> str:
    """Four dash-separated groups of hex, e.g. 'A1B2-C3D4-E5F6-0718'."""
    return '-'.join(secrets.token_hex(2).upper() for _ in range(4))


def entitlement_target(line: OrderLineItem) -> tuple[str, str]:
    """Determine (kind, target) for a line item.

    Routing rules:
    - download -> download grant on the product ref
    - plan -> subscription grant on the plan name
    - api_tool -> API tier grant on the tool ref
    """
    kind = KIND_FOR_PRODUCT.get(line.kind)
    if kind is None:
        raise EntitlementGrantError(f"Line {line.position} has unknown kind {line.kind!r}")

    if kind == Entitlement.Kind.SUBSCRIPTION:
        target = line.plan_name
    elif kind == Entitlement.Kind.API_TIER:
        target = line.tool_ref
    else:
        target = line.product_ref

    if not target:
        raise EntitlementGrantError(
            f"Line {line.position} ({line.product_ref}) has no {kind} target"
        )
    return kind, target


def subscription_window(buyer_ref: str, plan_name: str, billing_cycle: str, now):
    """Start and end of a subscription grant.

    A purchase while the buyer still holds an active grant for the same plan
    is a renewal: the new period starts when the current one ends.
    """
    period = BILLING_PERIODS.get(billing_cycle)
    if period is None:
        raise EntitlementGrantError(f"Unknown billing cycle {billing_cycle!r} for plan {plan_name}")

    current_end = (
        Entitlement.objects.for_buyer(buyer_ref)
        .filter(kind=Entitlement.Kind.SUBSCRIPTION, target=plan_name, ends_at__gt=now)
        .order_by('-ends_at')
        .values_list('ends_at', flat=True)
        .first()
    )
    starts_at = max(now, current_end) if current_end else now
    return starts_at, starts_at + period


def _grant_defaults(order: Order, line: OrderLineItem, kind: str, now) -> dict:
    defaults = {
        'buyer_ref': order.buyer_ref,
        'license_type': line.license_type,
        'starts_at': now,
    }
    if kind == Entitlement.Kind.DOWNLOAD:
        expiry = download_expiry()
        defaults['license_key'] = generate_license_key()
        defaults['ends_at'] = now + expiry if expiry else None
    elif kind == Entitlement.Kind.SUBSCRIPTION:
        starts_at, ends_at = subscription_window(
            order.buyer_ref, line.plan_name, line.billing_cycle, now
        )
        defaults.update(
            plan_name=line.plan_name,
            billing_cycle=line.billing_cycle,
            starts_at=starts_at,
            ends_at=ends_at,
        )
    elif kind == Entitlement.Kind.API_TIER:
        defaults['tier'] = line.tier
    return defaults


def grant_for_line(order: Order, line: OrderLineItem) -> tuple[Entitlement, bool]:
    """Issue the entitlement for one line item.

    Idempotency: get_or_create on (order, kind, target), backed by the DB
    unique constraint. Defaults are only computed into the row on first
    insert, so a replay returns the original grant unchanged.

    Returns:
        (entitlement, created)
    """
    kind, target = entitlement_target(line)
    now = timezone.now()
    with transaction.atomic():
        return Entitlement.objects.get_or_create(
            order=order,
            kind=kind,
            target=target,
            defaults=_grant_defaults(order, line, kind, now),
        )


def _result(order: Order, created_count: int) -> FulfillmentResult:
    return FulfillmentResult(
        order_id=str(order.pk),
        status=order.status,
        entitlements=tuple(Entitlement.objects.filter(order=order).order_by('kind', 'target')),
        created_count=created_count,
    )


def fulfill(order: Order) -> FulfillmentResult:
    """Grant every entitlement of a paid order and mark it fulfilled.

    Safe to call any number of times, from the callback path and the
    sweeper alike:
    - fulfilled order: returns its existing entitlements, zero writes
    - paid order: grants missing entitlements, then paid -> fulfilled

    On a grant failure the order stays paid with its attempt counter bumped.
    After CHECKOUT_MAX_FULFILLMENT_ATTEMPTS failures it moves to
    fulfillment_failed and needs an operator.

    Returns:
        FulfillmentResult

    Raises:
        OrderStateError: If the order is not paid or fulfilled
        EntitlementGrantError: Grant failed, order stays paid (retryable)
        FulfillmentFailedError: Grant failed and retries are exhausted
    """
    order = ledger.get_order(order.pk)

    if order.status == Order.Status.FULFILLED:
        return _result(order, created_count=0)

    if order.status != Order.Status.PAID:
        raise OrderStateError(
            f"Order {order.pk} is {order.status}, only paid orders can be fulfilled",
            current_status=order.status,
        )

    created_count = 0
    granted = {}
    try:
        for line in order.line_items.all():
            key = entitlement_target(line)
            if key in granted:
                # Sharing one grant would leave a paid line undelivered
                raise EntitlementGrantError(
                    f"Line {line.position} ({line.product_ref}) needs the same "
                    f"{key[0]} grant as line {granted[key]}"
                )
            granted[key] = line.position
            _, created = grant_for_line(order, line)
            created_count += int(created)
    except (DatabaseError, EntitlementGrantError) as e:
        max_attempts = get_setting('MAX_FULFILLMENT_ATTEMPTS')
        order = ledger.record_fulfillment_failure(
            order, f"{type(e).__name__}: {e}", max_attempts
        )
        if order.status == Order.Status.FULFILLMENT_FAILED:
            raise FulfillmentFailedError(
                f"Order {order.pk}: giving up after {order.fulfillment_attempts} attempts"
            ) from e
        logger.warning(
            f"Order {order.pk}: fulfillment attempt {order.fulfillment_attempts}/{max_attempts} "
            f"failed, will retry: {e}"
        )
        raise EntitlementGrantError(f"Order {order.pk}: {e}") from e

    order = ledger.mark_fulfilled(order)
    logger.info(f"Order {order.pk}: fulfilled with {created_count} new entitlements")
    return _result(order, created_count=created_count)
