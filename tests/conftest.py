"""Pytest configuration for django-checkout tests."""

import json
from decimal import Decimal

import pytest


@pytest.fixture(autouse=True)
def reset_recording_gateway():
    from tests.gateways import RecordingGateway

    RecordingGateway.calls.clear()
    yield
    RecordingGateway.calls.clear()


@pytest.fixture
def buyer_ref():
    return "buyer-1"


@pytest.fixture
def download_product(db):
    """A one-time download priced at 49.00 USD."""
    from django_checkout.models import Product

    return Product.objects.create(
        ref="P1",
        title="Icon Pack",
        kind=Product.Kind.DOWNLOAD,
        price=Decimal("49.00"),
        currency="USD",
        license_type=Product.LicenseType.COMMERCIAL,
    )


@pytest.fixture
def plan_product(db):
    """Monthly subscription to the 'pro' plan."""
    from django_checkout.models import Product

    return Product.objects.create(
        ref="pro-monthly",
        title="Pro (monthly)",
        kind=Product.Kind.PLAN,
        price=Decimal("19.00"),
        plan_name="pro",
        billing_cycle=Product.BillingCycle.MONTHLY,
    )


@pytest.fixture
def api_product(db):
    """Pro tier of the scraper API tool."""
    from django_checkout.models import Product

    return Product.objects.create(
        ref="scraper-pro",
        title="Scraper API Pro",
        kind=Product.Kind.API_TOOL,
        price=Decimal("29.00"),
        tool_ref="scraper",
        tier="pro",
    )


@pytest.fixture
def draft(db, buyer_ref, download_product):
    """Draft order for one P1."""
    from django_checkout.cart import CartLine, draft_order

    return draft_order(buyer_ref, [CartLine("P1")])


@pytest.fixture
def awaiting_order(draft):
    """Order for one P1 with a payment intent."""
    from django_checkout.ledger import get_order
    from django_checkout.payments import create_intent

    create_intent(draft)
    return get_order(draft.pk)


@pytest.fixture
def paid_order(awaiting_order):
    """Order for one P1 marked paid by event 'evt-paid', not yet fulfilled."""
    from django_checkout.ledger import mark_paid

    return mark_paid(awaiting_order.pk, "evt-paid", Decimal("49.00"), "USD")


@pytest.fixture
def make_callback(settings):
    """Build a signed gateway callback for an order.

    Returns (raw_body, signature). Pass timestamp to sign a delivery
    timestamp header along with the body.
    """
    from django_checkout.payments import compute_signature

    def _make(order, amount="49.00", event_id="evt1", status="captured", currency="USD",
              timestamp=None, **extra):
        payload = {
            "gatewayIntentRef": order.gateway_intent_ref,
            "eventId": event_id,
            "amount": amount,
            "currency": currency,
            "status": status,
        }
        payload.update(extra)
        raw = json.dumps(payload).encode()
        return raw, compute_signature(raw, settings.CHECKOUT_GATEWAY_SECRET, timestamp)

    return _make


@pytest.fixture
def user(db):
    from django.contrib.auth import get_user_model

    return get_user_model().objects.create_user(username="buyer", password="secret")


@pytest.fixture
def other_user(db):
    from django.contrib.auth import get_user_model

    return get_user_model().objects.create_user(username="someone-else", password="secret")


@pytest.fixture
def client_logged_in(client, user):
    client.force_login(user)
    return client
