"""Management command to run the reconciliation sweeper."""

import time

from django.core.management.base import BaseCommand

from django_checkout.conf import get_setting
from django_checkout.sweeper import ReconciliationSweeper


class Command(BaseCommand):
    help = 'Expire idle orders, re-drive fulfillment of paid orders and report failed orders'

    def add_arguments(self, parser):
        parser.add_argument(
            '--loop',
            action='store_true',
            help='Keep sweeping until interrupted'
        )
        parser.add_argument(
            '--interval',
            type=int,
            default=None,
            help='Seconds between sweeps with --loop (default: CHECKOUT_SWEEP_INTERVAL)'
        )

    def handle(self, *args, **options):
        interval = options['interval'] or get_setting('SWEEP_INTERVAL')
        sweeper = ReconciliationSweeper()

        if not options['loop']:
            self.sweep_once(sweeper)
            return

        self.stdout.write(f'Sweeping every {interval}s, press Ctrl+C to stop')
        try:
            while True:
                self.sweep_once(sweeper)
                time.sleep(interval)
        except KeyboardInterrupt:
            self.stdout.write('Stopped')

    def sweep_once(self, sweeper):
        report = sweeper.run()
        if report is None:
            self.stdout.write(self.style.WARNING('Sweep already in progress, skipped'))
            return

        self.stdout.write(
            self.style.SUCCESS(
                f'Expired {len(report.expired)}, fulfilled {len(report.fulfilled)}, '
                f'retry pending {len(report.retry_pending)}, gave up {len(report.gave_up)}'
            )
        )
        if report.needs_review:
            self.stdout.write(
                self.style.WARNING(f'{len(report.needs_review)} orders need review:')
            )
            for order_id in report.needs_review:
                self.stdout.write(f'  - {order_id}')
