from django.contrib import admin
from django.utils.html import format_html
from .models import (
    Debt, DebtPayment, FiscalInvoice, InventoryMovement, JournalEntry, LotMovement,
    Product, ProductLot, ProductSerial, ProductVariant, Sale, SaleEvent, SaleItem,
    SaleReturn, SaleReturnItem, Store, Warehouse, WarehouseStock
)


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ['name', 'created_at']
    search_fields = ['name']


@admin.register(Warehouse)
class WarehouseAdmin(admin.ModelAdmin):
    list_display = ['name', 'store', 'is_default', 'is_active']
    list_filter = ['is_default', 'is_active', 'store']


@admin.register(WarehouseStock)
class WarehouseStockAdmin(admin.ModelAdmin):
    list_display = ['product', 'variant', 'warehouse', 'stock', 'updated_at']
    list_filter = ['warehouse']
    search_fields = ['product__sku', 'product__name']


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['sku', 'name', 'store', 'is_weight_product']
    search_fields = ['sku', 'name']


admin.site.register(ProductVariant)


class SaleItemInline(admin.TabularInline):
    model = SaleItem
    extra = 0
    fields = ['product', 'variant', 'lot', 'warehouse', 'qty', 'unit_price_usd', 'discount_usd']
    readonly_fields = fields
    can_delete = False


@admin.register(Sale)
class SaleAdmin(admin.ModelAdmin):
    """Admin interface for sales; voided sales are read-only"""
    list_display = ['id', 'store', 'payment_method', 'total_usd', 'total_bs', 'status_badge', 'sold_at']
    list_filter = ['payment_method', 'store', 'sold_at']
    search_fields = ['id']
    readonly_fields = ['id', 'voided_at', 'voided_by', 'void_reason', 'created_at', 'updated_at']
    inlines = [SaleItemInline]

    def status_badge(self, obj):
        """Display sale status with badge"""
        info = obj.status_display
        return format_html(
            '<span style="background-color: {}; color: white; padding: 3px 10px; border-radius: 3px;">{}</span>',
            info['color'],
            info['label']
        )
    status_badge.short_description = 'Status'

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.is_voided:
            return False
        return super().has_change_permission(request, obj)


class SaleReturnItemInline(admin.TabularInline):
    model = SaleReturnItem
    extra = 0
    can_delete = False
    readonly_fields = [
        'sale_item', 'product', 'variant', 'lot', 'qty', 'unit_price_usd',
        'discount_usd', 'total_usd', 'total_bs', 'serial_ids', 'note'
    ]
    fields = readonly_fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(SaleReturn)
class SaleReturnAdmin(admin.ModelAdmin):
    """Returns are append-only; the admin only displays them"""
    list_display = ['id', 'sale', 'store', 'total_usd', 'total_bs', 'created_by', 'created_at']
    list_filter = ['store', 'created_at']
    search_fields = ['id', 'sale__id', 'reason']
    inlines = [SaleReturnItemInline]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ProductSerial)
class ProductSerialAdmin(admin.ModelAdmin):
    list_display = ['serial_number', 'product', 'status', 'sale', 'sold_at']
    list_filter = ['status']
    search_fields = ['serial_number', 'product__sku']


@admin.register(ProductLot)
class ProductLotAdmin(admin.ModelAdmin):
    list_display = ['lot_number', 'product', 'remaining_quantity', 'expiration_date']
    search_fields = ['lot_number', 'product__sku']


@admin.register(LotMovement)
class LotMovementAdmin(admin.ModelAdmin):
    list_display = ['lot', 'movement_type', 'qty_delta', 'sale', 'happened_at']
    list_filter = ['movement_type']


@admin.register(InventoryMovement)
class InventoryMovementAdmin(admin.ModelAdmin):
    list_display = ['product', 'movement_type', 'qty_delta', 'warehouse', 'approved', 'created_at']
    list_filter = ['movement_type', 'approved', 'warehouse']
    search_fields = ['product__sku', 'note']
    readonly_fields = ['reference', 'created_at']


class DebtPaymentInline(admin.TabularInline):
    model = DebtPayment
    extra = 0


@admin.register(Debt)
class DebtAdmin(admin.ModelAdmin):
    list_display = ['sale', 'customer_name', 'amount_usd', 'amount_bs', 'status']
    list_filter = ['status']
    inlines = [DebtPaymentInline]


@admin.register(FiscalInvoice)
class FiscalInvoiceAdmin(admin.ModelAdmin):
    list_display = ['invoice_number', 'invoice_type', 'status', 'sale', 'issued_at']
    list_filter = ['invoice_type', 'status']


@admin.register(JournalEntry)
class JournalEntryAdmin(admin.ModelAdmin):
    list_display = ['entry_number', 'source_type', 'source_id', 'status', 'cancelled_at']
    list_filter = ['status', 'source_type']
    readonly_fields = ['cancelled_at', 'cancelled_by', 'cancellation_reason']


@admin.register(SaleEvent)
class SaleEventAdmin(admin.ModelAdmin):
    """Outbox rows; failed events can be inspected and re-drained"""
    list_display = ['event_type', 'sale', 'status', 'attempts', 'created_at', 'delivered_at']
    list_filter = ['event_type', 'status']
    readonly_fields = ['payload', 'attempts', 'last_error', 'created_at', 'delivered_at']
