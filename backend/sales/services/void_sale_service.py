"""
Void Sale Service

Voiding cancels a sale for good. Unlike a full return, which only shrinks
the totals, a void makes the sale terminal.

Workflow (single transaction, all or nothing):
1. Lock the sale and check it can be reversed (same rules as returns)
2. Delete the sale's debt, which must have no payments
3. Put every still-unreturned quantity back into stock and lots
4. Return every serial still tied to the sale
5. Cancel the sale's journal entries (failure aborts the void)
6. Stamp void metadata and queue a SaleVoided event
"""

from decimal import Decimal
from typing import Optional
import logging

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from sales.models import Debt, JournalEntry, ProductSerial, Sale, SaleEvent
from utils.constants import QTY_TOLERANCE
from utils.exceptions import ExternalFailureError

from .accounting_service import AccountingService
from .return_inventory_service import ReturnInventoryService
from .return_validation_service import ReturnValidationService
from .sale_event_service import SaleEventService
from .sale_return_service import SaleReturnService

logger = logging.getLogger(__name__)


class VoidSaleService:
    """Service for voiding completed sales."""

    @staticmethod
    def void_sale(store, sale_id, user, reason: Optional[str] = None) -> Sale:
        """
        Void a sale.

        Args:
            store: Store the sale belongs to
            sale_id: UUID of the sale
            user: User performing the void
            reason: Optional free-text reason

        Returns:
            The voided Sale

        Raises:
            SaleNotFoundError: The sale does not exist in this store
            InvalidStateError: Already voided, missing credit note or debt
                with payments
            ExternalFailureError: Stock or accounting collaborator failed
        """
        with transaction.atomic():
            sale = SaleReturnService.get_sale(store, sale_id, lock=True)
            ReturnValidationService.validate_sale_state(store, sale)

            VoidSaleService.delete_unpaid_debt(sale)

            now = timezone.now()
            note = f'Return of sale {sale.pk}: {reason}' if reason else f'Return of sale {sale.pk}'
            reversed_items = VoidSaleService.reverse_items(store, sale, user, note, now)

            serial_count = ProductSerial.objects.filter(
                Q(sale=sale) | Q(sale_item__sale=sale)
            ).update(
                status=ProductSerial.Status.RETURNED,
                sale=None,
                sale_item=None,
                sold_at=None,
                updated_at=now,
            )

            VoidSaleService.cancel_journal_entries(store, sale, user, reason)

            sale.voided_at = now
            sale.voided_by = user
            sale.void_reason = reason or None
            sale.save(update_fields=['voided_at', 'voided_by', 'void_reason', 'updated_at'])

            SaleEventService.record(store, sale, SaleEvent.EventType.SALE_VOIDED, {
                'sale_id': sale.pk,
                'voided_at': sale.voided_at,
                'voided_by': getattr(user, 'pk', None),
                'void_reason': sale.void_reason,
            })

        logger.info(
            f"Voided sale {sale.pk}: {reversed_items} item(s) restocked, "
            f"{serial_count} serial(s) returned"
        )
        return sale

    @staticmethod
    def delete_unpaid_debt(sale) -> bool:
        """
        Delete the sale's debt. Callers must have checked it has no payments.

        Returns:
            True if a debt was deleted
        """
        debt = Debt.objects.filter(sale=sale).first()
        if debt is None:
            return False
        debt.payments.all().delete()
        debt.delete()
        logger.info(f"Deleted unpaid debt of sale {sale.pk}")
        return True

    @staticmethod
    def reverse_items(store, sale, user, note: str, now) -> int:
        """
        Restock the un-returned quantity of every item of the sale.

        Quantities already put back by earlier returns are skipped so they
        are not restocked twice.
        """
        returned = ReturnValidationService.returned_quantities(sale)
        warehouse_map = ReturnInventoryService.build_warehouse_map(store, sale)

        count = 0
        for sale_item in sale.items.select_related('product', 'variant'):
            remaining = sale_item.qty - returned.get(sale_item.pk, Decimal('0'))
            if remaining <= QTY_TOLERANCE:
                continue
            ReturnInventoryService.reverse_item(
                store, sale, sale_item, remaining, user,
                reference={
                    'sale_id': str(sale.pk),
                    'sale_item_id': str(sale_item.pk),
                    'reversal': True,
                },
                note=note,
                warehouse_map=warehouse_map,
                now=now,
            )
            count += 1
        return count

    @staticmethod
    def cancel_journal_entries(store, sale, user, reason: Optional[str]) -> int:
        """
        Cancel every non-cancelled journal entry of the sale.

        Raises:
            ExternalFailureError: The accounting collaborator failed
        """
        cancellation_reason = reason or f'Sale {sale.pk} voided'
        count = 0
        for entry in AccountingService.find_entries_for_sale(store, sale):
            if entry.status == JournalEntry.Status.CANCELLED:
                continue
            try:
                AccountingService.cancel_entry(store, entry.pk, user, cancellation_reason)
            except Exception as e:
                logger.error(f"Could not cancel journal entry {entry.pk} of sale {sale.pk}: {e}")
                raise ExternalFailureError(f'Accounting entry cancellation failed: {e}') from e
            count += 1
        return count
