"""
Accounting collaborator.

Entry generation lives elsewhere; the void workflow only needs to find the
journal entries produced for a sale and cancel them.
"""

import logging

from django.utils import timezone

from sales.models import JournalEntry
from utils.exceptions import InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)


class AccountingService:

    @staticmethod
    def find_entries_for_sale(store, sale):
        """Return every journal entry sourced from ``sale``, cancelled ones included."""
        return list(
            JournalEntry.objects.filter(
                store=store, source_type='sale', source_id=sale.pk
            ).order_by('created_at')
        )

    @staticmethod
    def cancel_entry(store, entry_id, user, reason) -> JournalEntry:
        """
        Cancel a journal entry.

        Raises:
            NotFoundError: If the entry does not exist in this store
            InvalidStateError: If the entry is already cancelled
        """
        try:
            entry = JournalEntry.objects.select_for_update().get(pk=entry_id, store=store)
        except JournalEntry.DoesNotExist:
            raise NotFoundError(f"Journal entry {entry_id} not found")

        if entry.status == JournalEntry.Status.CANCELLED:
            raise InvalidStateError(f"Journal entry {entry.entry_number} is already cancelled")

        entry.status = JournalEntry.Status.CANCELLED
        entry.cancelled_at = timezone.now()
        entry.cancelled_by = user
        entry.cancellation_reason = reason or ''
        entry.save(update_fields=[
            'status', 'cancelled_at', 'cancelled_by', 'cancellation_reason'
        ])

        logger.info(f"Cancelled journal entry {entry.entry_number}")
        return entry
