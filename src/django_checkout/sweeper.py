"""Reconciliation sweeper.

Periodic pass over orders that the callback path could not finish:
1. Expire orders idle in awaiting_payment past CHECKOUT_PAYMENT_TIMEOUT
2. Re-drive fulfillment for paid orders older than CHECKOUT_FULFILLMENT_GRACE
3. Report failed orders flagged for review (never resolved automatically)

The run-lock only stops one process from overlapping its own runs.
Correctness against concurrent callbacks comes from the ledger's
conditional updates and the entitlement unique constraint.
"""
import logging
import threading
from dataclasses import dataclass, field

from django.utils import timezone

from django_checkout import ledger
from django_checkout.conf import fulfillment_grace
from django_checkout.exceptions import CheckoutError, FulfillmentFailedError
from django_checkout.fulfillment import fulfill
from django_checkout.models import Order

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """What one sweeper run did."""

    started_at: object = None
    expired: list = field(default_factory=list)
    fulfilled: list = field(default_factory=list)
    retry_pending: list = field(default_factory=list)
    gave_up: list = field(default_factory=list)
    needs_review: list = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'expired': self.expired,
            'fulfilled': self.fulfilled,
            'retry_pending': self.retry_pending,
            'gave_up': self.gave_up,
            'needs_review': self.needs_review,
        }


class ReconciliationSweeper:
    """Runs the three reconciliation passes.

    Usage:
        report = ReconciliationSweeper().run()
        if report is None:
            ...  # another run in this process is still going
    """

    _run_lock = threading.Lock()

    def run(self, now=None):
        """Run one sweep.

        Returns:
            SweepReport, or None if a sweep is already running in this process
        """
        if not self._run_lock.acquire(blocking=False):
            logger.info("Sweep already in progress, skipping")
            return None
        try:
            return self._sweep(now or timezone.now())
        finally:
            self._run_lock.release()

    def _sweep(self, now) -> SweepReport:
        report = SweepReport(started_at=now)
        self.expire_stale_orders(report, now)
        self.redrive_fulfillment(report, now)
        self.collect_review_queue(report)
        logger.info(
            f"Sweep done: {len(report.expired)} expired, {len(report.fulfilled)} fulfilled, "
            f"{len(report.retry_pending)} pending retry, {len(report.gave_up)} gave up, "
            f"{len(report.needs_review)} need review"
        )
        return report

    def expire_stale_orders(self, report: SweepReport, now) -> None:
        report.expired = [str(order.pk) for order in ledger.expire_stale(now=now)]

    def redrive_fulfillment(self, report: SweepReport, now) -> None:
        """Each order is independent; one failure never stops the pass."""
        cutoff = now - fulfillment_grace()
        order_ids = list(Order.objects.paid_before(cutoff).values_list('pk', flat=True))
        for order_id in order_ids:
            try:
                fulfill(ledger.get_order(order_id))
            except FulfillmentFailedError:
                report.gave_up.append(str(order_id))
            except CheckoutError as e:
                logger.warning(f"Order {order_id}: re-driven fulfillment did not complete: {e}")
                report.retry_pending.append(str(order_id))
            else:
                report.fulfilled.append(str(order_id))

    def collect_review_queue(self, report: SweepReport) -> None:
        flagged = Order.objects.needing_review().order_by('failed_at')
        for order in flagged:
            logger.warning(
                f"Order {order.pk} needs review: {order.status}, {order.failure_reason}"
            )
        report.needs_review = [str(order.pk) for order in flagged]
