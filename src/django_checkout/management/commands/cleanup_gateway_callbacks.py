"""Management command to clean up old gateway callback logs."""

from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from django_checkout.models import GatewayCallback


class Command(BaseCommand):
    help = 'Delete old gateway callback logs to prevent unbounded table growth'

    def add_arguments(self, parser):
        parser.add_argument(
            '--days',
            type=int,
            default=90,
            help='Delete callbacks older than this many days, unprocessed ones included (default: 90)'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show count of callbacks that would be deleted without actually deleting'
        )

    def handle(self, *args, **options):
        days = options['days']
        cutoff = timezone.now() - timedelta(days=days)

        # A row still received after --days was abandoned by a failed request
        qs = GatewayCallback.objects.filter(created_at__lt=cutoff)
        count = qs.count()

        if options['dry_run']:
            self.stdout.write(f'Would delete {count} gateway callbacks (older than {days} days)')
            for status in GatewayCallback.Status:
                status_count = qs.filter(status=status).count()
                if status_count > 0:
                    self.stdout.write(f'  - {status.label}: {status_count}')
        else:
            deleted, _ = qs.delete()
            self.stdout.write(
                self.style.SUCCESS(f'Deleted {deleted} gateway callbacks')
            )
