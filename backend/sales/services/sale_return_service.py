"""
Sale Return Service

Partial (or complete) returns of a sale's items.

Workflow of process_return, all inside one database transaction:
1. Lock the sale row
2. Validate the sale state and every requested line
3. Put each line back into inventory (serials, lot, stock ledger, stock)
4. Compute the returned amounts and shrink the sale totals
5. Reset the sale's debt to the new totals
6. Persist the immutable return record and queue a SaleReturned event

Business Rules:
- Voided sales cannot be returned
- Issued invoices need an issued credit note first
- Debts with payments block returns
- A sale item can never be returned beyond its sold quantity
- Returns never change the sale's status; totals shrink towards zero
"""

from decimal import Decimal
from typing import Dict, List, Optional
import logging
import uuid

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from sales.models import ProductSerial, Sale, SaleEvent, SaleReturn, SaleReturnItem
from utils.constants import QTY_PLACES, QTY_TOLERANCE
from utils.exceptions import NothingToReturnError, SaleNotFoundError

from .return_financial_service import ReturnFinancialService, round_money
from .return_inventory_service import ReturnInventoryService
from .return_validation_service import ReturnValidationService
from .sale_event_service import SaleEventService

logger = logging.getLogger(__name__)


class SaleReturnService:
    """Service for returning items of a completed sale."""

    @staticmethod
    def get_sale(store, sale_id, lock: bool = False) -> Sale:
        """
        Load a sale of ``store``, optionally locking its row.

        Raises:
            SaleNotFoundError: Unknown id, malformed id or another store's sale
        """
        queryset = Sale.objects.all()
        if lock:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=sale_id, store=store)
        except (Sale.DoesNotExist, ValidationError, ValueError):
            raise SaleNotFoundError(f'Sale {sale_id} not found')

    @staticmethod
    def process_return(store, sale_id, user, items: List[Dict],
                       reason: Optional[str] = None) -> SaleReturn:
        """
        Return items of a sale.

        Args:
            store: Store the sale belongs to
            sale_id: UUID of the sale
            user: User performing the return
            items: List of dicts:
                - sale_item_id: Sale item being returned
                - qty: Quantity to return
                - serial_ids: Serial ids (required for serialized items)
                - note: Optional line note
            reason: Optional reason for the whole return

        Returns:
            The created SaleReturn (with items)

        Raises:
            NotFoundError: Sale, sale item or serial does not exist
            InvalidStateError: A business rule was violated
            ExternalFailureError: The stock collaborator failed
        """
        with transaction.atomic():
            sale = SaleReturnService.get_sale(store, sale_id, lock=True)
            lines = ReturnValidationService.validate_return_request(store, sale, items)

            warehouse_map = ReturnInventoryService.build_warehouse_map(store, sale)
            return_id = uuid.uuid4()
            now = timezone.now()
            totals = ReturnFinancialService.empty_totals()
            return_items = []

            for line in lines:
                sale_item = line['sale_item']
                qty = line['qty']
                note = line['note'] or reason or f'Return of sale {sale.pk}'

                ReturnInventoryService.reverse_item(
                    store, sale, sale_item, qty, user,
                    reference={
                        'sale_id': str(sale.pk),
                        'sale_item_id': str(sale_item.pk),
                        'return_id': str(return_id),
                        'return': True,
                    },
                    note=note,
                    warehouse_map=warehouse_map,
                    serial_ids=line['serial_ids'],
                    now=now,
                )

                amounts = ReturnFinancialService.line_amounts(sale_item, qty)
                ReturnFinancialService.accumulate(totals, amounts)

                return_items.append(SaleReturnItem(
                    sale_return_id=return_id,
                    sale_item=sale_item,
                    product_id=sale_item.product_id,
                    variant_id=sale_item.variant_id,
                    lot_id=sale_item.lot_id,
                    qty=qty,
                    unit_price_bs=round_money(amounts['unit_price_bs']),
                    unit_price_usd=round_money(amounts['unit_price_usd']),
                    discount_bs=round_money(amounts['discount_bs']),
                    discount_usd=round_money(amounts['discount_usd']),
                    total_bs=round_money(amounts['total_bs']),
                    total_usd=round_money(amounts['total_usd']),
                    serial_ids=line['serial_ids'],
                    note=line['note'],
                ))

            ReturnFinancialService.apply_to_sale(sale, totals)
            ReturnFinancialService.sync_debt(sale)

            sale_return = SaleReturn.objects.create(
                id=return_id,
                store=store,
                sale=sale,
                created_by=user,
                reason=reason or None,
                created_at=now,
                **ReturnFinancialService.rounded(totals),
            )
            SaleReturnItem.objects.bulk_create(return_items)

            SaleEventService.record(store, sale, SaleEvent.EventType.SALE_RETURNED, {
                'sale_id': sale.pk,
                'return_id': sale_return.pk,
                'total_bs': sale_return.total_bs,
                'total_usd': sale_return.total_usd,
                'sale_total_usd': sale.total_usd,
            })

        logger.info(
            f"Return {sale_return.pk} of sale {sale.pk}: {len(return_items)} item(s), "
            f"{sale_return.total_usd} USD"
        )
        return sale_return

    @staticmethod
    def build_full_return_items(store, sale_id) -> List[Dict]:
        """
        Build the request that returns everything still returnable.

        Items already fully returned are skipped. Serialized items default
        to every serial still sold on them.

        Returns:
            List of dicts with sale_item_id, qty and serial_ids
        """
        sale = SaleReturnService.get_sale(store, sale_id)
        returned = ReturnValidationService.returned_quantities(sale)

        items = []
        for sale_item in sale.items.all():
            remaining = sale_item.qty - returned.get(sale_item.pk, Decimal('0'))
            if remaining <= QTY_TOLERANCE:
                continue

            serial_ids = [
                str(pk) for pk in ProductSerial.objects.filter(
                    sale_item=sale_item, status=ProductSerial.Status.SOLD
                ).order_by('serial_number').values_list('pk', flat=True)
            ]
            items.append({
                'sale_item_id': str(sale_item.pk),
                'qty': remaining.quantize(QTY_PLACES),
                'serial_ids': serial_ids or None,
            })
        return items

    @staticmethod
    def return_full_sale(store, sale_id, user, reason: Optional[str] = None) -> SaleReturn:
        """
        Return every remaining unit of a sale.

        Raises:
            NothingToReturnError: Every item has already been fully returned
        """
        items = SaleReturnService.build_full_return_items(store, sale_id)
        if not items:
            raise NothingToReturnError()
        return SaleReturnService.process_return(store, sale_id, user, items, reason=reason)
