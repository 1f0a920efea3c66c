
from django_filters import rest_framework as filters
from .models import SaleReturn


class SaleReturnFilter(filters.FilterSet):
    """
    Sale return filtering.

    Available filters:
    - Sale: sale
    - Date range: created_after, created_before
    - Refund range (USD): min_total, max_total
    - Text search: reason_contains
    """

    sale = filters.UUIDFilter(
        field_name="sale_id",
        help_text="Returns of this sale"
    )
    created_after = filters.DateTimeFilter(
        field_name="created_at",
        lookup_expr='gte',
        help_text="Created after this date"
    )
    created_before = filters.DateTimeFilter(
        field_name="created_at",
        lookup_expr='lte',
        help_text="Created before this date"
    )
    min_total = filters.NumberFilter(
        field_name="total_usd",
        lookup_expr='gte',
        help_text="Minimum refund total (USD)"
    )
    max_total = filters.NumberFilter(
        field_name="total_usd",
        lookup_expr='lte',
        help_text="Maximum refund total (USD)"
    )
    reason_contains = filters.CharFilter(
        field_name="reason",
        lookup_expr='icontains',
        help_text="Reason contains text (case-insensitive)"
    )

    class Meta:
        model = SaleReturn
        fields = ['sale', 'created_after', 'created_before', 'min_total', 'max_total']
