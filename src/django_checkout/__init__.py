"""Django Checkout - Order checkout, payment callbacks and entitlement fulfillment.

Provides:
- Product: Catalog read-model that carts are priced against
- Order / OrderLineItem: Snapshotted orders driven through a status state machine
- Entitlement: Access rights granted from paid orders (downloads, subscriptions, API tiers)
- GatewayCallback: Log of inbound payment gateway callbacks

Usage:
    INSTALLED_APPS = [
        ...
        'django_checkout',
    ]

    # urls.py
    path('checkout/', include('django_checkout.urls')),

See conf.py for all configuration options.
"""

__version__ = "0.1.0"

__all__ = [
    # Models
    "Product",
    "Order",
    "OrderLineItem",
    "Entitlement",
    "GatewayCallback",
    # Services
    "CartLine",
    "draft_order",
    "create_intent",
    "verify_callback",
    "handle_callback",
    "mark_paid",
    "expire_stale",
    "fulfill",
    "ReconciliationSweeper",
    # Values
    "Money",
]


def __getattr__(name):
    """Lazy import to avoid AppRegistryNotReady errors."""
    if name in ("Product", "Order", "OrderLineItem", "Entitlement", "GatewayCallback"):
        from django_checkout import models
        return getattr(models, name)
    if name in ("CartLine", "draft_order"):
        from django_checkout import cart
        return getattr(cart, name)
    if name in ("create_intent", "verify_callback", "handle_callback"):
        from django_checkout import payments
        return getattr(payments, name)
    if name in ("mark_paid", "expire_stale"):
        from django_checkout import ledger
        return getattr(ledger, name)
    if name == "fulfill":
        from django_checkout import fulfillment
        return getattr(fulfillment, name)
    if name == "ReconciliationSweeper":
        from django_checkout import sweeper
        return getattr(sweeper, name)
    if name == "Money":
        from django_checkout import money
        return getattr(money, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
