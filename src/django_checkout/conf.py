"""Django Checkout configuration.

All settings can be overridden in your Django settings.py using the
CHECKOUT_ prefix. Values are read at call time so tests can use
override_settings.

Example:
    # settings.py
    CHECKOUT_GATEWAY_CLASS = 'myshop.gateways.RazorpayGateway'
    CHECKOUT_GATEWAY_SECRET = env('GATEWAY_WEBHOOK_SECRET')
    CHECKOUT_PAYMENT_TIMEOUT = 30
"""

from datetime import timedelta

from django.conf import settings


DEFAULTS = {
    # Dotted path to a BaseGateway subclass
    'GATEWAY_CLASS': 'django_checkout.gateways.console.ConsoleGateway',
    # Shared secret used to sign gateway callbacks (required for callbacks)
    'GATEWAY_SECRET': '',
    # Seconds to wait for the gateway when creating an intent
    'GATEWAY_TIMEOUT': 10,
    # Seconds the signed X-Gateway-Timestamp may drift; None disables the check
    'CALLBACK_TOLERANCE': 300,
    # Minutes an order may sit in awaiting_payment before it expires
    'PAYMENT_TIMEOUT': 30,
    # Seconds a paid order may wait before the sweeper re-drives fulfillment
    'FULFILLMENT_GRACE': 120,
    # Failed fulfillment attempts before an order is marked fulfillment_failed
    'MAX_FULFILLMENT_ATTEMPTS': 5,
    # Days a download grant stays valid; None grants lifetime access
    'DOWNLOAD_EXPIRY_DAYS': 7,
    # Seconds between sweeper passes when sweep_orders runs with --loop
    'SWEEP_INTERVAL': 60,
}


def get_setting(name: str, default=None):
    """Get a setting with CHECKOUT_ prefix, falling back to DEFAULTS."""
    if default is None:
        default = DEFAULTS.get(name)
    return getattr(settings, f"CHECKOUT_{name}", default)


def payment_timeout() -> timedelta:
    """How long an order may wait for a payment callback."""
    return timedelta(minutes=get_setting('PAYMENT_TIMEOUT'))


def fulfillment_grace() -> timedelta:
    """How long a paid order may wait before the sweeper re-drives it."""
    return timedelta(seconds=get_setting('FULFILLMENT_GRACE'))


def download_expiry():
    """Validity window for download grants, or None for lifetime access."""
    days = get_setting('DOWNLOAD_EXPIRY_DAYS')
    if days is None:
        return None
    return timedelta(days=days)


def callback_tolerance():
    """Allowed clock drift for signed callback timestamps, or None."""
    seconds = get_setting('CALLBACK_TOLERANCE')
    if seconds is None:
        return None
    return timedelta(seconds=seconds)
