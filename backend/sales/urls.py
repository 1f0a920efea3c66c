from django.urls import path
from .views import (
    SaleReturnDetailView, SaleReturnListView, full_return_items,
    process_sale_return, return_full_sale, sale_return_pdf, void_sale
)

urlpatterns = [
    path('sales/<uuid:sale_id>/returns/', process_sale_return, name='sale-return-create'),
    path('sales/<uuid:sale_id>/returns/full-items/', full_return_items, name='sale-return-full-items'),
    path('sales/<uuid:sale_id>/returns/full/', return_full_sale, name='sale-return-full'),
    path('sales/<uuid:sale_id>/void/', void_sale, name='sale-void'),

    path('returns/', SaleReturnListView.as_view(), name='sale-return-list'),
    path('returns/<uuid:pk>/', SaleReturnDetailView.as_view(), name='sale-return-detail'),
    path('returns/<uuid:pk>/pdf/', sale_return_pdf, name='sale-return-pdf'),
]
