"""
Return Inventory Service

Puts returned quantities back into inventory:
1. Resolve the warehouse the stock originally left from
2. Move returned serials from sold to returned
3. Credit the lot (remaining quantity + lot movement)
4. Append an approved adjustment movement to the stock ledger
5. Increment warehouse stock through the stock collaborator

Each call must run inside the caller's transaction; any failure aborts it.
"""

from decimal import Decimal
from typing import Dict, List, Optional
import logging

from django.core.exceptions import ValidationError
from django.db.models import F
from django.utils import timezone

from sales.models import InventoryMovement, LotMovement, ProductLot, ProductSerial
from utils.exceptions import (
    ExternalFailureError, SaleReturnError, SerialMismatchError, SerialNotFoundError,
)

from .warehouse_service import WarehouseService

logger = logging.getLogger(__name__)


class ReturnInventoryService:
    """Service for reversing the inventory effects of a sale item."""

    @staticmethod
    def build_warehouse_map(store, sale) -> Dict:
        """
        Map (product_id, variant_id) to the warehouse of the earliest stock
        movement recorded for the sale.

        Only used for items sold before the warehouse was stored on the
        sale item itself.
        """
        movements = (
            InventoryMovement.objects
            .filter(store=store, reference__sale_id=str(sale.pk))
            .exclude(warehouse__isnull=True)
            .order_by('created_at')
            .values_list('product_id', 'variant_id', 'warehouse_id')
        )
        warehouse_map = {}
        for product_id, variant_id, warehouse_id in movements:
            warehouse_map.setdefault((product_id, variant_id), warehouse_id)
        return warehouse_map

    @staticmethod
    def resolve_warehouse_id(store, sale_item, warehouse_map: Dict):
        """
        Warehouse to restock into: the one stored on the sale item, else the
        one found in the sale's movements, else the store default.
        """
        if sale_item.warehouse_id:
            return sale_item.warehouse_id
        warehouse_id = warehouse_map.get((sale_item.product_id, sale_item.variant_id))
        if warehouse_id:
            return warehouse_id
        return WarehouseService.get_default_or_first(store).pk

    @staticmethod
    def return_serials(sale_item, serial_ids: List, now=None) -> int:
        """
        Mark the given serials as returned and detach them from the sale.

        Raises:
            SerialNotFoundError: One or more serial ids do not exist
            SerialMismatchError: A serial is not sold on this sale item
        """
        now = now or timezone.now()
        unique_ids = set(str(s) for s in serial_ids)
        try:
            serials = list(
                ProductSerial.objects.select_for_update().filter(pk__in=unique_ids)
            )
        except ValidationError:
            raise SerialNotFoundError()

        if len(serials) != len(unique_ids):
            raise SerialNotFoundError()

        for serial in serials:
            if serial.sale_item_id != sale_item.pk or serial.status != ProductSerial.Status.SOLD:
                raise SerialMismatchError(
                    f'Serial {serial.serial_number} does not belong to this sale or is not sold.'
                )

        return ProductSerial.objects.filter(pk__in=[s.pk for s in serials]).update(
            status=ProductSerial.Status.RETURNED,
            sale=None,
            sale_item=None,
            sold_at=None,
            updated_at=now,
        )

    @staticmethod
    def credit_lot(sale, sale_item, qty: Decimal, note: str, now=None) -> Optional[LotMovement]:
        """Add ``qty`` back to the item's lot and record a lot movement."""
        if not sale_item.lot_id:
            return None
        now = now or timezone.now()

        updated = ProductLot.objects.filter(pk=sale_item.lot_id).update(
            remaining_quantity=F('remaining_quantity') + qty,
            updated_at=now,
        )
        if not updated:
            logger.warning(f"Lot {sale_item.lot_id} of sale item {sale_item.pk} no longer exists")
            return None

        return LotMovement.objects.create(
            lot_id=sale_item.lot_id,
            movement_type=LotMovement.MovementType.ADJUSTED,
            qty_delta=qty,
            happened_at=now,
            sale=sale,
            note=note[:255],
        )

    @staticmethod
    def reverse_item(store, sale, sale_item, qty: Decimal, user, reference: Dict,
                     note: str, warehouse_map: Dict, serial_ids: Optional[List] = None,
                     now=None) -> InventoryMovement:
        """
        Reverse ``qty`` units of a sale item.

        Args:
            store: Store owning the sale
            sale: Sale being reversed
            sale_item: Item being reversed
            qty: Quantity to put back (already validated)
            user: Acting user, recorded as requester and approver
            reference: Base reference payload for the movement; the resolved
                warehouse id is added to it
            note: Note for the lot and stock movements
            warehouse_map: Result of build_warehouse_map for the sale
            serial_ids: Serials returned with this line

        Returns:
            The created InventoryMovement

        Raises:
            ExternalFailureError: The stock collaborator failed
        """
        now = now or timezone.now()
        warehouse_id = ReturnInventoryService.resolve_warehouse_id(
            store, sale_item, warehouse_map
        )

        if serial_ids:
            ReturnInventoryService.return_serials(sale_item, serial_ids, now)

        ReturnInventoryService.credit_lot(sale, sale_item, qty, note, now)

        movement = InventoryMovement.objects.create(
            store=store,
            product_id=sale_item.product_id,
            variant_id=sale_item.variant_id,
            warehouse_id=warehouse_id,
            movement_type=InventoryMovement.MovementType.ADJUST,
            qty_delta=qty,
            unit_cost_bs=Decimal('0'),
            unit_cost_usd=Decimal('0'),
            reference={**reference, 'warehouse_id': str(warehouse_id)},
            note=note[:255],
            approved=True,
            requested_by=user,
            approved_by=user,
            approved_at=now,
            happened_at=now,
            created_at=now,
        )

        try:
            WarehouseService.update_stock(
                warehouse_id, sale_item.product, sale_item.variant, qty, store
            )
        except SaleReturnError:
            raise
        except Exception as e:
            logger.error(
                f"Stock update failed for sale item {sale_item.pk} "
                f"in warehouse {warehouse_id}: {e}"
            )
            raise ExternalFailureError(f'Stock update failed: {e}') from e

        return movement
