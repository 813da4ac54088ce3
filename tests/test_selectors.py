"""Tests for read-side selectors used by entitlement consumers."""

from datetime import timedelta

import pytest
from django.utils import timezone

from django_checkout import selectors
from django_checkout.exceptions import OrderNotFoundError
from django_checkout.fulfillment import fulfill
from django_checkout.models import Entitlement


@pytest.mark.django_db
class TestEntitlementSelectors:
    """Consumers gate access on entitlements, never on order status."""

    def test_has_entitlement_after_fulfillment(self, paid_order, buyer_ref):
        assert not selectors.has_entitlement(buyer_ref, Entitlement.Kind.DOWNLOAD, "P1")

        fulfill(paid_order)

        assert selectors.has_entitlement(buyer_ref, Entitlement.Kind.DOWNLOAD, "P1")
        assert not selectors.has_entitlement("someone-else", Entitlement.Kind.DOWNLOAD, "P1")
        assert not selectors.has_entitlement(buyer_ref, Entitlement.Kind.SUBSCRIPTION, "P1")

    def test_download_window_closes(self, paid_order, buyer_ref):
        fulfill(paid_order)

        eight_days_later = timezone.now() + timedelta(days=8)
        assert not selectors.has_entitlement(
            buyer_ref, Entitlement.Kind.DOWNLOAD, "P1", at=eight_days_later
        )

    def test_entitlements_for_buyer_active_only(self, paid_order, buyer_ref):
        fulfill(paid_order)
        Entitlement.objects.update(ends_at=timezone.now() - timedelta(minutes=1))

        assert selectors.entitlements_for_buyer(buyer_ref).count() == 1
        assert selectors.entitlements_for_buyer(buyer_ref, active_only=True).count() == 0

    def test_entitlement_payload(self, paid_order):
        fulfill(paid_order)
        payload = selectors.entitlement_payload(Entitlement.objects.get())

        assert payload["order_id"] == str(paid_order.pk)
        assert payload["kind"] == "download"
        assert payload["license_type"] == "COMMERCIAL"
        assert payload["plan_name"] is None
        assert payload["active"] is True


@pytest.mark.django_db
class TestOrderSelectors:
    """Test suite for buyer-scoped order reads."""

    def test_get_order_for_buyer(self, draft, buyer_ref):
        order = selectors.get_order_for_buyer(draft.pk, buyer_ref)
        assert order.pk == draft.pk

    def test_other_buyer_cannot_read(self, draft):
        with pytest.raises(OrderNotFoundError):
            selectors.get_order_for_buyer(draft.pk, "someone-else")

    def test_malformed_id(self, buyer_ref):
        with pytest.raises(OrderNotFoundError):
            selectors.get_order_for_buyer("not-a-uuid", buyer_ref)

    def test_order_payload(self, paid_order):
        payload = selectors.order_payload(selectors.get_order_for_buyer(paid_order.pk, paid_order.buyer_ref))

        assert payload["status"] == "paid"
        assert payload["total_amount"] == "49.00"
        assert payload["paid_at"] is not None
        assert payload["line_items"] == [{
            "product_ref": "P1",
            "kind": "download",
            "title": "Icon Pack",
            "unit_price": "49.00",
            "quantity": 1,
            "line_total": "49.00",
        }]
        assert "gateway_event_id" not in payload
        assert "last_fulfillment_error" not in payload
