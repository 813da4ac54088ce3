"""QuerySet helpers for orders and entitlements."""
from django.db import models
from django.db.models import Q
from django.utils import timezone


class OrderQuerySet(models.QuerySet):
    """QuerySet for orders, used by selectors and the reconciliation sweeper."""

    def for_buyer(self, buyer_ref):
        return self.filter(buyer_ref=buyer_ref)

    def awaiting_payment_since_before(self, cutoff):
        """
        Orders still waiting for a payment callback that started before cutoff.

        Args:
            cutoff: Orders that entered awaiting_payment before this are returned
        """
        return self.filter(
            status='awaiting_payment',
            awaiting_payment_at__lt=cutoff,
        )

    def paid_before(self, cutoff):
        """Orders paid before cutoff that have not reached fulfilled."""
        return self.filter(status='paid', paid_at__lt=cutoff)

    def needing_review(self):
        """Failed orders flagged for operator attention."""
        return self.filter(
            status__in=['payment_failed', 'fulfillment_failed'],
            needs_review=True,
        )


class EntitlementQuerySet(models.QuerySet):
    """
    QuerySet for entitlements with validity periods.

    Query pattern: starts_at <= ts AND (ends_at IS NULL OR ends_at > ts)
    """

    def for_buyer(self, buyer_ref):
        return self.filter(buyer_ref=buyer_ref)

    def active_at(self, timestamp):
        """
        Return entitlements that grant access at the given timestamp.

        Args:
            timestamp: The datetime to query as of

        Returns:
            QuerySet filtered to entitlements valid at the timestamp
        """
        return self.filter(
            starts_at__lte=timestamp
        ).filter(
            Q(ends_at__isnull=True) | Q(ends_at__gt=timestamp)
        )

    def active(self):
        """Convenience method equivalent to active_at(timezone.now())."""
        return self.active_at(timezone.now())
