from rest_framework import serializers
from .models import Sale, SaleItem, SaleReturn, SaleReturnItem


class ReturnItemInputSerializer(serializers.Serializer):
    """One requested return line."""
    sale_item_id = serializers.UUIDField()
    qty = serializers.DecimalField(max_digits=18, decimal_places=4)
    serial_ids = serializers.ListField(
        child=serializers.UUIDField(), required=False, allow_null=True, allow_empty=True
    )
    note = serializers.CharField(max_length=255, required=False, allow_blank=True, allow_null=True)


class ProcessReturnSerializer(serializers.Serializer):
    """
    Request body for a partial return.

    An empty item list is passed through so the service can reject it with
    its own error.
    """
    items = ReturnItemInputSerializer(many=True)
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class ReasonSerializer(serializers.Serializer):
    """Request body for full returns and voids."""
    reason = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class FullReturnItemSerializer(serializers.Serializer):
    sale_item_id = serializers.UUIDField()
    qty = serializers.DecimalField(max_digits=18, decimal_places=4)
    serial_ids = serializers.ListField(child=serializers.UUIDField(), allow_null=True)


class SaleReturnItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)

    class Meta:
        model = SaleReturnItem
        fields = [
            'id', 'sale_item', 'product', 'product_name', 'variant', 'lot', 'qty',
            'unit_price_bs', 'unit_price_usd', 'discount_bs', 'discount_usd',
            'total_bs', 'total_usd', 'serial_ids', 'note'
        ]
        read_only_fields = fields


class SaleReturnSerializer(serializers.ModelSerializer):
    items = SaleReturnItemSerializer(many=True, read_only=True)
    created_by_username = serializers.CharField(
        source='created_by.username', read_only=True, allow_null=True
    )

    class Meta:
        model = SaleReturn
        fields = [
            'id', 'store', 'sale', 'created_by', 'created_by_username', 'reason',
            'subtotal_bs', 'subtotal_usd', 'discount_bs', 'discount_usd',
            'total_bs', 'total_usd', 'created_at', 'items'
        ]
        read_only_fields = fields


class SaleItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = SaleItem
        fields = [
            'id', 'product', 'variant', 'lot', 'warehouse', 'qty',
            'unit_price_bs', 'unit_price_usd', 'discount_bs', 'discount_usd',
            'is_weight_product'
        ]


class SaleSerializer(serializers.ModelSerializer):
    items = SaleItemSerializer(many=True, read_only=True)
    status = serializers.CharField(read_only=True)
    status_display = serializers.ReadOnlyField()

    class Meta:
        model = Sale
        fields = [
            'id', 'store', 'payment_method', 'exchange_rate',
            'subtotal_bs', 'subtotal_usd', 'discount_bs', 'discount_usd',
            'total_bs', 'total_usd', 'status', 'status_display',
            'voided_at', 'voided_by', 'void_reason', 'sold_at', 'items'
        ]
        read_only_fields = fields
