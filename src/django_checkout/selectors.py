"""Read-only queries for the order API and entitlement consumers.

Download serving, subscription gating and API-key tiers ask
has_entitlement(); they never look at order status.
"""

from typing import Optional

from django.core.exceptions import ValidationError
from django.db.models import Prefetch
from django.utils import timezone

from .exceptions import OrderNotFoundError
from .models import Entitlement, Order, OrderLineItem


def _orders_with_lines():
    return Order.objects.prefetch_related(
        Prefetch('line_items', queryset=OrderLineItem.objects.order_by('position'))
    )


def get_order_for_buyer(order_id, buyer_ref: str) -> Order:
    """Fetch an order owned by buyer_ref, with its line items.

    Raises:
        OrderNotFoundError: If the order does not exist or belongs to
            someone else (the two cases are indistinguishable to the caller)
    """
    try:
        return _orders_with_lines().get(pk=order_id, buyer_ref=buyer_ref)
    except (Order.DoesNotExist, ValidationError, ValueError):
        raise OrderNotFoundError(f"Order {order_id} not found")


def list_orders_for_buyer(buyer_ref: str, status: Optional[str] = None):
    """The buyer's orders, newest first."""
    orders = _orders_with_lines().for_buyer(buyer_ref)
    if status:
        orders = orders.filter(status=status)
    return orders.order_by('-created_at')


def entitlements_for_buyer(buyer_ref: str, kind: Optional[str] = None, active_only: bool = False):
    """The buyer's entitlements, optionally restricted to one kind or to active grants."""
    entitlements = Entitlement.objects.for_buyer(buyer_ref)
    if kind:
        entitlements = entitlements.filter(kind=kind)
    if active_only:
        entitlements = entitlements.active()
    return entitlements.order_by('created_at')


def has_entitlement(buyer_ref: str, kind: str, target: str, at=None) -> bool:
    """Whether buyer_ref currently holds an active grant of kind on target."""
    return (
        Entitlement.objects.for_buyer(buyer_ref)
        .filter(kind=kind, target=target)
        .active_at(at or timezone.now())
        .exists()
    )


def _iso(value):
    return value.isoformat() if value else None


def order_payload(order: Order) -> dict:
    """Buyer-facing representation of an order.

    Exposes failure_reason but never gateway or fulfillment error detail.
    """
    return {
        'id': str(order.pk),
        'status': order.status,
        'currency': order.currency,
        'total_amount': str(order.total_amount),
        'gateway_intent_ref': order.gateway_intent_ref,
        'failure_reason': order.failure_reason or None,
        'created_at': _iso(order.created_at),
        'paid_at': _iso(order.paid_at),
        'fulfilled_at': _iso(order.fulfilled_at),
        'line_items': [
            {
                'product_ref': line.product_ref,
                'kind': line.kind,
                'title': line.title_snapshot,
                'unit_price': str(line.price_snapshot),
                'quantity': line.quantity,
                'line_total': str(line.line_total),
            }
            for line in order.line_items.all()
        ],
    }


def entitlement_payload(entitlement: Entitlement) -> dict:
    return {
        'id': str(entitlement.pk),
        'order_id': str(entitlement.order_id),
        'kind': entitlement.kind,
        'target': entitlement.target,
        'license_type': entitlement.license_type or None,
        'license_key': entitlement.license_key or None,
        'plan_name': entitlement.plan_name or None,
        'billing_cycle': entitlement.billing_cycle or None,
        'tier': entitlement.tier or None,
        'starts_at': _iso(entitlement.starts_at),
        'ends_at': _iso(entitlement.ends_at),
        'active': entitlement.is_active(),
    }
