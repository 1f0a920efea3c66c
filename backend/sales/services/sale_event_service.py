"""
Sale Event Service (outbox)

Domain events are written to the SaleEvent table inside the transaction that
causes them and delivered only after that transaction commits:

1. record()   - insert a pending outbox row and schedule dispatch on commit
2. dispatch() - enqueue the Celery delivery task (or deliver inline when
                SALE_EVENTS_USE_QUEUE is off)
3. deliver()  - broadcast the event to the 'sales' Channels group and mark
                the row delivered
4. drain()    - re-deliver rows left pending (worker crash, broker outage)

Delivery failures are logged and stored on the row; they never propagate to
the operation that produced the event.
"""

from datetime import timedelta
from typing import Dict
import json
import logging

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from sales.models import SaleEvent
from utils.constants import SALES_EVENTS_GROUP

logger = logging.getLogger(__name__)


class SaleEventService:
    """Service for recording and delivering sale events."""

    @staticmethod
    def record(store, sale, event_type: str, payload: Dict) -> SaleEvent:
        """
        Write an outbox row in the current transaction.

        Dispatch is deferred with ``transaction.on_commit`` so nothing is
        published for a transaction that rolls back.
        """
        event = SaleEvent.objects.create(
            store=store,
            sale=sale,
            event_type=event_type,
            # round-trip through JSON so UUIDs, Decimals and datetimes become strings
            payload=json.loads(json.dumps(payload, default=str)),
        )
        event_id = event.pk
        transaction.on_commit(lambda: SaleEventService.dispatch(event_id))
        return event

    @staticmethod
    def dispatch(event_id) -> None:
        """Queue or deliver an event. Never raises."""
        try:
            if getattr(settings, 'SALE_EVENTS_USE_QUEUE', True):
                from sales.tasks import deliver_sale_event
                deliver_sale_event.delay(str(event_id))
                logger.info(f"Queued sale event {event_id} for delivery")
            else:
                SaleEventService.deliver(event_id)
        except Exception as e:
            logger.error(f"Failed to dispatch sale event {event_id}: {e}")

    @staticmethod
    def to_message(event: SaleEvent) -> Dict:
        return {
            'id': str(event.pk),
            'event_type': event.event_type,
            'sale_id': str(event.sale_id),
            'store_id': str(event.store_id),
            'payload': event.payload,
            'created_at': event.created_at.isoformat(),
        }

    @staticmethod
    def deliver(event_id) -> bool:
        """
        Broadcast one event to WebSocket subscribers.

        Already-delivered events are skipped, so repeated delivery attempts
        are harmless.

        Returns:
            True when the event is (or already was) delivered

        Raises:
            SaleEvent.DoesNotExist: Unknown event id
            Exception: Whatever the channel layer raised; the attempt and
                error are recorded on the row first
        """
        event = SaleEvent.objects.get(pk=event_id)
        if event.status == SaleEvent.Status.DELIVERED:
            return True

        try:
            channel_layer = get_channel_layer()
            if channel_layer is None:
                raise RuntimeError('No channel layer configured')
            async_to_sync(channel_layer.group_send)(
                SALES_EVENTS_GROUP,
                {
                    'type': 'sale.event',
                    'event': SaleEventService.to_message(event),
                }
            )
        except Exception as e:
            SaleEvent.objects.filter(pk=event.pk).update(
                attempts=F('attempts') + 1,
                last_error=str(e)[:1000],
            )
            logger.error(f"Failed to deliver {event.event_type} event {event.pk}: {e}")
            raise

        SaleEvent.objects.filter(pk=event.pk).update(
            status=SaleEvent.Status.DELIVERED,
            attempts=F('attempts') + 1,
            delivered_at=timezone.now(),
            last_error='',
        )
        logger.info(f"Delivered {event.event_type} event {event.pk} for sale {event.sale_id}")
        return True

    @staticmethod
    def mark_failed(event_id, error: str) -> None:
        """Give up on an event after its retries are exhausted."""
        SaleEvent.objects.filter(pk=event_id).exclude(
            status=SaleEvent.Status.DELIVERED
        ).update(status=SaleEvent.Status.FAILED, last_error=str(error)[:1000])
        logger.error(f"Sale event {event_id} marked as failed: {error}")

    @staticmethod
    def drain(limit: int = 100, min_age_seconds: int = 0, include_failed: bool = False,
              store=None) -> Dict[str, int]:
        """
        Deliver undelivered events synchronously, oldest first.

        Args:
            limit: Maximum number of events to process
            min_age_seconds: Skip events younger than this (still in flight)
            include_failed: Also retry events previously marked failed
            store: Restrict to one store

        Returns:
            Dict with 'delivered' and 'failed' counts
        """
        statuses = [SaleEvent.Status.PENDING]
        if include_failed:
            statuses.append(SaleEvent.Status.FAILED)

        events = SaleEvent.objects.filter(status__in=statuses)
        if min_age_seconds:
            events = events.filter(
                created_at__lte=timezone.now() - timedelta(seconds=min_age_seconds)
            )
        if store is not None:
            events = events.filter(store=store)

        result = {'delivered': 0, 'failed': 0}
        for event_id in events.order_by('created_at').values_list('pk', flat=True)[:limit]:
            try:
                SaleEventService.deliver(event_id)
                result['delivered'] += 1
            except Exception:
                result['failed'] += 1

        if result['delivered'] or result['failed']:
            logger.info(
                f"Drained sale events: {result['delivered']} delivered, {result['failed']} failed"
            )
        return result

    @staticmethod
    def pending_count(store=None) -> int:
        events = SaleEvent.objects.filter(status=SaleEvent.Status.PENDING)
        if store is not None:
            events = events.filter(store=store)
        return events.count()
