import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone

from utils.constants import SALE_STATUS_COLORS, SALE_STATUS_LABELS
from utils.exceptions import ImmutableRecordError


def money_field(**kwargs):
    kwargs.setdefault('default', Decimal('0.00'))
    return models.DecimalField(max_digits=18, decimal_places=2, **kwargs)


def qty_field(**kwargs):
    return models.DecimalField(max_digits=18, decimal_places=4, **kwargs)


# ============================================================
# STORE & WAREHOUSE
# ============================================================

class Store(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return self.name


class Warehouse(models.Model):
    """
    Physical stock location belonging to a store.

    Exactly one warehouse per store is expected to be flagged as default;
    when none is, the oldest active warehouse is used instead.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='warehouses')
    name = models.CharField(max_length=100)
    is_default = models.BooleanField(default=False)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-is_default', 'created_at']

    def __str__(self):
        return f"{self.name} ({self.store})"


# ============================================================
# CATALOG REFERENCES
# ============================================================

class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='products')
    sku = models.CharField(max_length=100, db_index=True)
    name = models.CharField(max_length=200)
    is_weight_product = models.BooleanField(
        default=False,
        help_text="Sold by weight; fractional quantities allowed"
    )

    def __str__(self):
        return f"{self.sku} - {self.name}"


class ProductVariant(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='variants')
    name = models.CharField(max_length=200)

    def __str__(self):
        return f"{self.product.name} / {self.name}"


class WarehouseStock(models.Model):
    """Current stock of a product (or variant) in a warehouse."""
    warehouse = models.ForeignKey(Warehouse, on_delete=models.CASCADE, related_name='stock')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='warehouse_stock')
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.CASCADE, null=True, blank=True, related_name='warehouse_stock'
    )
    stock = qty_field(default=Decimal('0'))
    reserved = qty_field(default=Decimal('0'))
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['warehouse', 'product', 'variant'],
                name='unique_warehouse_product_variant_stock',
            ),
        ]

    def __str__(self):
        return f"{self.product} @ {self.warehouse.name}: {self.stock}"


class ProductLot(models.Model):
    """A tracked batch of inventory with a remaining-quantity counter."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='lots')
    lot_number = models.CharField(max_length=100)
    remaining_quantity = qty_field(default=Decimal('0'))
    expiration_date = models.DateField(null=True, blank=True)
    updated_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"Lot {self.lot_number} ({self.remaining_quantity} left)"


class LotMovement(models.Model):
    """Append-only ledger of lot quantity changes."""

    class MovementType(models.TextChoices):
        RECEIVED = 'received', 'Received'
        SOLD = 'sold', 'Sold'
        ADJUSTED = 'adjusted', 'Adjusted'
        EXPIRED = 'expired', 'Expired'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    lot = models.ForeignKey(ProductLot, on_delete=models.CASCADE, related_name='movements')
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)
    qty_delta = qty_field()
    happened_at = models.DateTimeField(default=timezone.now)
    sale = models.ForeignKey(
        'Sale', on_delete=models.SET_NULL, null=True, blank=True, related_name='lot_movements'
    )
    note = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ['happened_at']

    def __str__(self):
        return f"{self.get_movement_type_display()}: {self.qty_delta} on {self.lot.lot_number}"


# ============================================================
# SALES
# ============================================================

class Sale(models.Model):
    """
    Completed retail sale.

    Totals are kept in both currencies. A sale stays mutable (totals shrink
    as items are returned) until it is voided; void metadata makes it
    terminal.
    """

    class PaymentMethod(models.TextChoices):
        CASH_BS = 'CASH_BS', 'Cash (Bs)'
        CASH_USD = 'CASH_USD', 'Cash (USD)'
        CARD = 'CARD', 'Card'
        TRANSFER = 'TRANSFER', 'Transfer'
        MIXED = 'MIXED', 'Mixed'
        FIAO = 'FIAO', 'Pay later (FIAO)'

    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        VOIDED = 'voided', 'Voided'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.PROTECT, related_name='sales')
    sold_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    payment_method = models.CharField(
        max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CASH_USD
    )
    exchange_rate = models.DecimalField(max_digits=18, decimal_places=6, default=Decimal('1'))

    subtotal_bs = money_field()
    subtotal_usd = money_field()
    discount_bs = money_field()
    discount_usd = money_field()
    total_bs = money_field()
    total_usd = money_field()

    voided_at = models.DateTimeField(null=True, blank=True, db_index=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    void_reason = models.TextField(null=True, blank=True)

    sold_at = models.DateTimeField(default=timezone.now, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-sold_at']

    def __str__(self):
        return f"Sale {self.id} ({self.total_usd} USD)"

    @property
    def is_voided(self):
        return self.voided_at is not None

    @property
    def status(self):
        return self.Status.VOIDED if self.is_voided else self.Status.ACTIVE

    @property
    def status_display(self):
        """
        Return status information for frontend display.

        Returns:
            dict: {'status': 'voided', 'label': 'Voided', 'color': '#6B7280', 'is_locked': True}
        """
        return {
            'status': self.status,
            'label': SALE_STATUS_LABELS.get(self.status, self.status),
            'color': SALE_STATUS_COLORS.get(self.status, '#6B7280'),
            'is_locked': self.is_voided,
        }


class SaleItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='sale_items')
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.PROTECT, null=True, blank=True, related_name='sale_items'
    )
    lot = models.ForeignKey(
        ProductLot, on_delete=models.PROTECT, null=True, blank=True, related_name='sale_items'
    )
    warehouse = models.ForeignKey(
        Warehouse,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='sale_items',
        help_text="Warehouse the stock was drawn from at sale time"
    )
    qty = qty_field()
    unit_price_bs = money_field()
    unit_price_usd = money_field()
    discount_bs = money_field(help_text="Total line discount (not per unit)")
    discount_usd = money_field(help_text="Total line discount (not per unit)")
    is_weight_product = models.BooleanField(default=False)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ['position', 'id']

    def __str__(self):
        return f"{self.qty}x {self.product.name} (Sale {self.sale_id})"


class ProductSerial(models.Model):
    """
    Uniquely numbered unit of a serialized product.

    Lifecycle: available -> sold -> returned | damaged. Returned serials may
    be sold again later.
    """

    class Status(models.TextChoices):
        AVAILABLE = 'available', 'Available'
        SOLD = 'sold', 'Sold'
        RETURNED = 'returned', 'Returned'
        DAMAGED = 'damaged', 'Damaged'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='serials')
    serial_number = models.CharField(max_length=120)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.AVAILABLE, db_index=True
    )
    sale = models.ForeignKey(
        Sale, on_delete=models.SET_NULL, null=True, blank=True, related_name='serials'
    )
    sale_item = models.ForeignKey(
        SaleItem, on_delete=models.SET_NULL, null=True, blank=True, related_name='serials'
    )
    sold_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['product', 'serial_number'], name='unique_product_serial_number'
            ),
        ]

    def __str__(self):
        return f"{self.serial_number} ({self.status})"


class InventoryMovement(models.Model):
    """
    Append-only stock ledger.

    The ``reference`` payload links a movement back to the sale, sale item
    and return that caused it; for historical sales it is also the only
    record of which warehouse the stock came from.
    """

    class MovementType(models.TextChoices):
        RECEIVED = 'received', 'Received'
        SOLD = 'sold', 'Sold'
        ADJUST = 'adjust', 'Adjustment'
        TRANSFER = 'transfer', 'Transfer'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='inventory_movements')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='movements')
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.CASCADE, null=True, blank=True, related_name='movements'
    )
    warehouse = models.ForeignKey(
        Warehouse, on_delete=models.SET_NULL, null=True, blank=True, related_name='movements'
    )
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)
    qty_delta = qty_field()
    unit_cost_bs = money_field()
    unit_cost_usd = money_field()
    reference = models.JSONField(default=dict, blank=True)
    note = models.CharField(max_length=255, blank=True)

    approved = models.BooleanField(default=False)
    requested_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    approved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    approved_at = models.DateTimeField(null=True, blank=True)

    happened_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['store', 'created_at']),
            models.Index(fields=['product', 'created_at']),
            models.Index(fields=['movement_type']),
        ]

    def __str__(self):
        sign = '+' if self.qty_delta > 0 else ''
        return f"{self.get_movement_type_display()}: {sign}{self.qty_delta} {self.product.name}"


# ============================================================
# RETURNS (append-only)
# ============================================================

class AppendOnlyModel(models.Model):
    """Rows can be inserted once; updates and deletes are rejected."""

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableRecordError(f"{type(self).__name__} {self.pk} cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableRecordError(f"{type(self).__name__} {self.pk} cannot be deleted")


class SaleReturn(AppendOnlyModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.PROTECT, related_name='sale_returns')
    sale = models.ForeignKey(Sale, on_delete=models.PROTECT, related_name='returns')
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    reason = models.TextField(null=True, blank=True)
    subtotal_bs = money_field()
    subtotal_usd = money_field()
    discount_bs = money_field()
    discount_usd = money_field()
    total_bs = money_field()
    total_usd = money_field()
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"Return {self.id} of sale {self.sale_id} ({self.total_usd} USD)"


class SaleReturnItem(AppendOnlyModel):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sale_return = models.ForeignKey(SaleReturn, on_delete=models.PROTECT, related_name='items')
    sale_item = models.ForeignKey(SaleItem, on_delete=models.PROTECT, related_name='return_items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='+')
    variant = models.ForeignKey(
        ProductVariant, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    lot = models.ForeignKey(
        ProductLot, on_delete=models.PROTECT, null=True, blank=True, related_name='+'
    )
    qty = qty_field()
    unit_price_bs = money_field()
    unit_price_usd = money_field()
    discount_bs = money_field()
    discount_usd = money_field()
    total_bs = money_field()
    total_usd = money_field()
    serial_ids = models.JSONField(null=True, blank=True)
    note = models.CharField(max_length=255, null=True, blank=True)

    def __str__(self):
        return f"{self.qty}x returned from item {self.sale_item_id}"


# ============================================================
# DEBTS
# ============================================================

class Debt(models.Model):
    """Receivable created by a pay-later (FIAO) sale."""

    class Status(models.TextChoices):
        OPEN = 'open', 'Open'
        PARTIAL = 'partial', 'Partially paid'
        PAID = 'paid', 'Paid'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='debts')
    sale = models.OneToOneField(Sale, on_delete=models.CASCADE, related_name='debt')
    customer_name = models.CharField(max_length=255, blank=True)
    amount_bs = money_field()
    amount_usd = money_field()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.OPEN)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Debt {self.amount_usd} USD ({self.status})"


class DebtPayment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    debt = models.ForeignKey(Debt, on_delete=models.CASCADE, related_name='payments')
    amount_bs = money_field()
    amount_usd = money_field()
    method = models.CharField(
        max_length=20, choices=Sale.PaymentMethod.choices, default=Sale.PaymentMethod.CASH_USD
    )
    paid_at = models.DateTimeField(default=timezone.now)

    def __str__(self):
        return f"Payment {self.amount_usd} USD on debt {self.debt_id}"


# ============================================================
# FISCAL & ACCOUNTING COLLABORATORS
# ============================================================

class FiscalInvoice(models.Model):
    class InvoiceType(models.TextChoices):
        INVOICE = 'invoice', 'Invoice'
        CREDIT_NOTE = 'credit_note', 'Credit note'

    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        ISSUED = 'issued', 'Issued'
        CANCELLED = 'cancelled', 'Cancelled'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='fiscal_invoices')
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name='fiscal_invoices')
    invoice_number = models.CharField(max_length=50, blank=True)
    invoice_type = models.CharField(
        max_length=20, choices=InvoiceType.choices, default=InvoiceType.INVOICE
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    issued_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.get_invoice_type_display()} {self.invoice_number} ({self.status})"


class JournalEntry(models.Model):
    """Accounting ledger entry generated for a sale (header only)."""

    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        POSTED = 'posted', 'Posted'
        CANCELLED = 'cancelled', 'Cancelled'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='journal_entries')
    entry_number = models.CharField(max_length=50)
    source_type = models.CharField(max_length=30, default='sale', db_index=True)
    source_id = models.UUIDField(db_index=True)
    description = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.POSTED)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )
    cancellation_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = 'Journal entries'

    def __str__(self):
        return f"Entry {self.entry_number} ({self.status})"


# ============================================================
# EVENT OUTBOX
# ============================================================

class SaleEvent(models.Model):
    """
    Durable outbox row for domain events such as ``SaleVoided``.

    Written in the same transaction as the change it describes and drained
    after commit, giving at-least-once delivery across crashes.
    """

    class EventType(models.TextChoices):
        SALE_VOIDED = 'SaleVoided', 'Sale voided'
        SALE_RETURNED = 'SaleReturned', 'Sale items returned'

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        DELIVERED = 'delivered', 'Delivered'
        FAILED = 'failed', 'Failed'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    store = models.ForeignKey(Store, on_delete=models.CASCADE, related_name='sale_events')
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name='events')
    event_type = models.CharField(max_length=40, choices=EventType.choices)
    payload = models.JSONField(default=dict)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True
    )
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    delivered_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['created_at']

    def __str__(self):
        return f"{self.event_type} for sale {self.sale_id} ({self.status})"
