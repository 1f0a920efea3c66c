"""
Warehouse Stock Service

Stock collaborator used by the return and void workflows:
1. Resolve the store's default (or first active) warehouse
2. Apply signed stock deltas to a (warehouse, product, variant) row

Stock never goes below zero; missing stock rows are created on first use.
"""

from decimal import Decimal
import logging

from django.db import transaction

from sales.models import Warehouse, WarehouseStock
from utils.exceptions import WarehouseNotFoundError

logger = logging.getLogger(__name__)


class WarehouseService:
    """Service for warehouse lookup and stock updates."""

    @staticmethod
    def get_default_or_first(store) -> Warehouse:
        """
        Return the store's default warehouse, falling back to the oldest
        active one.

        Raises:
            WarehouseNotFoundError: If the store has no active warehouse
        """
        warehouses = Warehouse.objects.filter(store=store, is_active=True)
        warehouse = (
            warehouses.filter(is_default=True).order_by('created_at').first()
            or warehouses.order_by('created_at').first()
        )
        if warehouse is None:
            raise WarehouseNotFoundError(f"Store {store.pk} has no active warehouse")
        return warehouse

    @staticmethod
    def update_stock(warehouse, product, variant, qty_delta, store) -> WarehouseStock:
        """
        Add ``qty_delta`` (may be negative) to the stock of a product in a
        warehouse.

        Args:
            warehouse: Warehouse instance or id
            product: Product instance
            variant: ProductVariant instance or None
            qty_delta: Signed quantity
            store: Store the warehouse must belong to

        Returns:
            The updated WarehouseStock row
        """
        warehouse_id = getattr(warehouse, 'pk', warehouse)
        if not Warehouse.objects.filter(pk=warehouse_id, store=store).exists():
            raise WarehouseNotFoundError(
                f"Warehouse {warehouse_id} does not belong to store {store.pk}"
            )

        with transaction.atomic():
            stock_row, created = WarehouseStock.objects.select_for_update().get_or_create(
                warehouse_id=warehouse_id,
                product=product,
                variant=variant,
                defaults={'stock': Decimal('0')},
            )
            new_stock = stock_row.stock + Decimal(qty_delta)
            stock_row.stock = max(Decimal('0'), new_stock)
            stock_row.save(update_fields=['stock', 'updated_at'])

        logger.debug(
            f"Stock for product {product.pk} in warehouse {warehouse_id} "
            f"changed by {qty_delta} -> {stock_row.stock}"
        )
        return stock_row
