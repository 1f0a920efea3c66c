from celery import Task, shared_task
from django.conf import settings
import logging

from .models import SaleEvent
from .services.sale_event_service import SaleEventService

logger = logging.getLogger(__name__)


class SaleEventTask(Task):
    """Marks the outbox row failed once a delivery task gives up."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        event_id = args[0] if args else kwargs.get('event_id')
        if event_id:
            SaleEventService.mark_failed(event_id, str(exc))


@shared_task(
    bind=True,
    base=SaleEventTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=getattr(settings, 'SALE_EVENTS_RETRY_BACKOFF_MAX', 600),
    retry_jitter=True,
    max_retries=getattr(settings, 'SALE_EVENTS_MAX_RETRIES', 5),
)
def deliver_sale_event(self, event_id):
    """Broadcast one outbox event, retrying with exponential backoff."""
    try:
        return SaleEventService.deliver(event_id)
    except SaleEvent.DoesNotExist:
        logger.error(f"SaleEvent with id {event_id} does not exist.")
        return False


@shared_task
def drain_pending_sale_events(limit=100, min_age_seconds=30):
    """
    Periodic sweep for events whose delivery task never ran.

    Events younger than ``min_age_seconds`` are left alone since their
    delivery task is most likely still queued.
    """
    return SaleEventService.drain(limit=limit, min_age_seconds=min_age_seconds)
