"""Cart aggregation: turning client-held cart lines into a priced draft order.

- The catalog is read exactly once, here; afterwards the order carries snapshots
- Draft creation is all-or-nothing: every line is validated before any write
- No external calls
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import transaction

from django_checkout.exceptions import (
    EmptyCartError,
    InvalidCartLineError,
    PriceChangedError,
    ProductUnavailableError,
)
from django_checkout.models import Order, OrderLineItem, Product
from django_checkout.money import Money, parse_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CartLine:
    """A line in the buyer's cart. Never persisted.

    unit_price_snapshot is the price the client displayed, if it sent one;
    it is checked against the catalog but never trusted as the order price.
    """

    product_ref: str
    quantity: int = 1
    unit_price_snapshot: Optional[Decimal] = None

    @classmethod
    def from_payload(cls, data) -> 'CartLine':
        """Build a CartLine from a client JSON object.

        Accepts {"product": "P1", "quantity": 2, "price": "49.00"}.

        Raises:
            InvalidCartLineError: If the object is malformed
        """
        if not isinstance(data, dict):
            raise InvalidCartLineError(f"Cart line must be an object, got {type(data).__name__}")

        product_ref = data.get('product') or data.get('product_ref')
        if not product_ref or not isinstance(product_ref, str):
            raise InvalidCartLineError("Cart line is missing a product reference")

        quantity = data.get('quantity', 1)
        price = data.get('price', data.get('unit_price_snapshot'))
        unit_price = None
        if price is not None:
            try:
                unit_price = parse_amount(price)
            except ValueError:
                raise InvalidCartLineError(f"Invalid price for '{product_ref}': {price!r}")

        return cls(product_ref=product_ref, quantity=quantity, unit_price_snapshot=unit_price)


def _validate_quantity(line: CartLine) -> int:
    quantity = line.quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidCartLineError(
            f"Quantity for '{line.product_ref}' must be a positive integer, got {quantity!r}"
        )
    # Every line is fulfilled by exactly one entitlement
    if quantity != 1:
        raise InvalidCartLineError(
            f"'{line.product_ref}' is sold one per order, got quantity {quantity}"
        )
    return quantity


def price_cart(cart_lines) -> tuple[list[tuple[CartLine, Product]], Money]:
    """Resolve every cart line against the catalog and compute the total.

    Returns:
        (pairs of (line, product) in cart order, quantized total)

    Raises:
        EmptyCartError: If there are no lines
        InvalidCartLineError: If a quantity is not 1, or two lines grant the
            same entitlement
        ProductUnavailableError: If a product is unknown, deleted or inactive
        PriceChangedError: If a client-held price differs from the catalog
        MixedCurrencyError: If lines are priced in different currencies
    """
    cart_lines = list(cart_lines or [])
    if not cart_lines:
        raise EmptyCartError()

    refs = {line.product_ref for line in cart_lines}
    # Default manager hides soft-deleted products
    products = {p.ref: p for p in Product.objects.filter(ref__in=refs)}

    priced = []
    grants = {}
    total = None
    for line in cart_lines:
        quantity = _validate_quantity(line)

        product = products.get(line.product_ref)
        if product is None or not product.is_purchasable:
            raise ProductUnavailableError(line.product_ref)

        if (
            line.unit_price_snapshot is not None
            and Decimal(line.unit_price_snapshot) != product.price
        ):
            raise PriceChangedError(line.product_ref, line.unit_price_snapshot, product.price)

        grant = (product.kind, product.entitlement_target)
        if grant in grants:
            raise InvalidCartLineError(
                f"'{line.product_ref}' grants the same {product.kind} access as "
                f"'{grants[grant]}'; each entitlement can be bought once per order"
            )
        grants[grant] = line.product_ref

        line_total = Money(product.price, product.currency) * quantity
        total = line_total if total is None else total + line_total
        priced.append((line, product))

    return priced, total.quantized()


def draft_order(buyer_ref: str, cart_lines) -> Order:
    """Convert a cart into a persisted draft order.

    This is the only point where prices are read from the mutable catalog.
    Every line's title, price, license and entitlement data are snapshotted
    onto the order.

    Args:
        buyer_ref: Owning identity, passed explicitly by the caller
        cart_lines: Iterable of CartLine

    Returns:
        Order in draft status with its line items

    Raises:
        InvalidCartLineError: If buyer_ref is empty or a line is malformed
        EmptyCartError, ProductUnavailableError, PriceChangedError,
        MixedCurrencyError: See price_cart
    """
    if not buyer_ref:
        raise InvalidCartLineError("An order needs a buyer")

    priced, total = price_cart(cart_lines)

    with transaction.atomic():
        order = Order.objects.create(
            buyer_ref=str(buyer_ref),
            status=Order.Status.DRAFT,
            currency=total.currency,
            total_amount=total.amount,
        )
        OrderLineItem.objects.bulk_create([
            OrderLineItem(
                order=order,
                position=position,
                product_ref=product.ref,
                kind=product.kind,
                title_snapshot=product.title,
                price_snapshot=product.price,
                quantity=line.quantity,
                license_type=product.license_type,
                plan_name=product.plan_name,
                billing_cycle=product.billing_cycle,
                tool_ref=product.tool_ref,
                tier=product.tier,
            )
            for position, (line, product) in enumerate(priced)
        ])

    logger.info(f"Drafted order {order.pk} for buyer {order.buyer_ref}: {total}")
    return order
