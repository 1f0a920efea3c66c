"""
Return Validation Service

Checks a return or void request against the current state of a sale before
anything is mutated.

Whole-sale rules (checked in this order):
1. The sale is not voided
2. An issued fiscal invoice requires an issued credit note
3. A debt with any recorded payment blocks the operation

Per-item rules:
- Quantity is a finite number greater than zero
- Non-weight products are returned in whole units
- Quantity does not exceed what is still returnable (original - returned)
- Items with sold serials name exactly one serial per returned unit
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, List, Optional
import logging

from django.db.models import Sum

from sales.models import DebtPayment, ProductSerial, SaleReturnItem
from utils.constants import QTY_PLACES, QTY_TOLERANCE
from utils.exceptions import (
    CreditNoteRequiredError, DebtHasPaymentsError, InvalidQuantityError,
    InvalidStateError, QuantityExceedsRemainingError, SaleItemNotFoundError,
    SaleVoidedError, SerialsRequiredError,
)

from .fiscal_invoice_service import FiscalInvoiceService

logger = logging.getLogger(__name__)


class ReturnValidationService:
    """Service for validating returns and voids."""

    @staticmethod
    def validate_sale_state(store, sale) -> None:
        """
        Check the whole-sale preconditions shared by returns and voids.

        Raises:
            SaleVoidedError: The sale is already voided
            CreditNoteRequiredError: An issued invoice has no issued credit note
            DebtHasPaymentsError: The sale's debt has payments
        """
        if sale.is_voided:
            logger.warning(f"Rejected operation on voided sale {sale.pk}")
            raise SaleVoidedError()

        invoices = FiscalInvoiceService.list_for_sale(store, sale)
        if FiscalInvoiceService.requires_credit_note(invoices):
            logger.warning(f"Sale {sale.pk} has an issued invoice without credit note")
            raise CreditNoteRequiredError()

        if DebtPayment.objects.filter(debt__sale=sale).exists():
            logger.warning(f"Sale {sale.pk} has debt payments")
            raise DebtHasPaymentsError()

    @staticmethod
    def returned_quantities(sale) -> Dict:
        """Map each sale item id to the quantity already returned."""
        rows = (
            SaleReturnItem.objects
            .filter(sale_return__sale=sale)
            .values('sale_item_id')
            .annotate(returned_qty=Sum('qty'))
        )
        return {row['sale_item_id']: row['returned_qty'] or Decimal('0') for row in rows}

    @staticmethod
    def parse_quantity(value) -> Decimal:
        """
        Convert a requested quantity to Decimal with 4 decimal places.

        Raises:
            InvalidQuantityError: Not a finite number greater than zero
                after rounding
        """
        if isinstance(value, bool) or value is None:
            raise InvalidQuantityError()
        try:
            qty = value if isinstance(value, Decimal) else Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise InvalidQuantityError()

        if not qty.is_finite():
            raise InvalidQuantityError()
        try:
            qty = qty.quantize(QTY_PLACES, rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise InvalidQuantityError()
        if qty <= 0:
            raise InvalidQuantityError()
        return qty

    @staticmethod
    def validate_item(sale_item, qty, already_returned: Decimal,
                      serial_ids: Optional[List] = None) -> Decimal:
        """
        Validate one requested line against its sale item.

        Args:
            sale_item: The SaleItem being returned
            qty: Requested quantity (any numeric representation)
            already_returned: Quantity of this item already returned
            serial_ids: Serial ids supplied by the caller

        Returns:
            The requested quantity as Decimal
        """
        qty = ReturnValidationService.parse_quantity(qty)

        if not sale_item.is_weight_product and qty != qty.to_integral_value():
            raise InvalidQuantityError(
                'Returned quantity must be a whole number for non-weight products.'
            )

        remaining = sale_item.qty - already_returned
        if qty > remaining + QTY_TOLERANCE:
            logger.warning(
                f"Return of {qty} exceeds remaining {remaining} on sale item {sale_item.pk}"
            )
            raise QuantityExceedsRemainingError(
                f'Return quantity exceeds what is available. Available: {remaining}'
            )

        sold_serials = ProductSerial.objects.filter(
            sale_item=sale_item, status=ProductSerial.Status.SOLD
        ).count()
        if sold_serials:
            serial_ids = serial_ids or []
            if not serial_ids:
                raise SerialsRequiredError()
            if len(set(map(str, serial_ids))) != len(serial_ids):
                raise InvalidStateError('Duplicate serials in return request.')
            if Decimal(len(serial_ids)) != qty:
                raise SerialsRequiredError(
                    'The number of serials must match the returned quantity.'
                )

        return qty

    @staticmethod
    def validate_return_request(store, sale, items: List[Dict]) -> List[Dict]:
        """
        Validate a full return request.

        Args:
            store: Store performing the return
            sale: Locked Sale instance
            items: List of dicts with sale_item_id, qty, and optional
                serial_ids / note

        Returns:
            List of validated lines: dicts with sale_item, qty (Decimal),
            serial_ids and note

        Raises:
            InvalidStateError / NotFoundError subclasses on the first violation
        """
        ReturnValidationService.validate_sale_state(store, sale)

        if not items:
            raise InvalidStateError('At least one item is required for a return.')

        sale_items = {
            str(item.pk): item
            for item in sale.items.select_related('product', 'variant', 'lot')
        }
        returned = ReturnValidationService.returned_quantities(sale)
        # running totals so repeated lines for the same item are cumulative
        running = {pk: returned.get(item.pk, Decimal('0')) for pk, item in sale_items.items()}

        seen_serials = set()
        lines = []
        for requested in items:
            sale_item_id = str(requested.get('sale_item_id'))
            sale_item = sale_items.get(sale_item_id)
            if sale_item is None:
                raise SaleItemNotFoundError(
                    f'Item {sale_item_id} does not belong to sale {sale.pk}'
                )

            serial_ids = requested.get('serial_ids') or None
            qty = ReturnValidationService.validate_item(
                sale_item, requested.get('qty'), running[sale_item_id], serial_ids
            )

            for serial_id in serial_ids or []:
                if str(serial_id) in seen_serials:
                    raise InvalidStateError('Duplicate serials in return request.')
                seen_serials.add(str(serial_id))

            running[sale_item_id] += qty
            lines.append({
                'sale_item': sale_item,
                'qty': qty,
                'serial_ids': [str(s) for s in serial_ids] if serial_ids else None,
                'note': requested.get('note') or None,
            })

        return lines
