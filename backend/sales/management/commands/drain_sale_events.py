"""
Management command to deliver pending sale events.

Delivers outbox events left pending after a worker crash or broker outage.
Safe to run repeatedly: delivered events are skipped.

Usage:
    python manage.py drain_sale_events
    python manage.py drain_sale_events --limit 500 --include-failed
"""

from django.core.management.base import BaseCommand

from sales.services.sale_event_service import SaleEventService


class Command(BaseCommand):
    help = 'Delivers pending sale events (SaleVoided, SaleReturned) to WebSocket subscribers'

    def add_arguments(self, parser):
        parser.add_argument('--limit', type=int, default=100,
                            help='Maximum number of events to deliver')
        parser.add_argument('--min-age', type=int, default=0,
                            help='Only deliver events older than this many seconds')
        parser.add_argument('--include-failed', action='store_true',
                            help='Also retry events previously marked as failed')

    def handle(self, *args, **options):
        pending = SaleEventService.pending_count()
        self.stdout.write(f'{pending} pending event(s)')

        result = SaleEventService.drain(
            limit=options['limit'],
            min_age_seconds=options['min_age'],
            include_failed=options['include_failed'],
        )

        self.stdout.write(self.style.SUCCESS(f"Delivered: {result['delivered']}"))
        if result['failed']:
            self.stdout.write(self.style.ERROR(f"Failed: {result['failed']}"))
