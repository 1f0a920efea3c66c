from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import HttpResponse
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics, filters, status
from rest_framework.decorators import api_view
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.response import Response
import logging

from .filters import SaleReturnFilter
from .models import SaleReturn, Store
from .serializers import (
    FullReturnItemSerializer, ProcessReturnSerializer, ReasonSerializer,
    SaleReturnSerializer, SaleSerializer
)
from .services import SaleReturnService, VoidSaleService
from .services.return_slip_pdf_service import ReturnSlipPDFService
from utils.exceptions import SaleReturnError

logger = logging.getLogger(__name__)


def get_request_store(request):
    """
    Resolve the store from the X-STORE-ID header.

    Raises:
        ValidationError: Header missing
        NotFound: Unknown store
    """
    store_id = request.headers.get('X-Store-Id')
    if not store_id:
        raise ValidationError({'store': 'X-STORE-ID header is required'})
    try:
        return Store.objects.get(pk=store_id)
    except (Store.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFound('Store not found')


# ============================================================================
# Return & Void API Views
# ============================================================================

@api_view(['POST'])
def process_sale_return(request, sale_id):
    """
    Return items of a sale.

    Headers: X-STORE-ID: <store uuid>
    Request body:
    {
        "items": [
            {"sale_item_id": "<uuid>", "qty": "2", "serial_ids": ["<uuid>", ...], "note": "..."}
        ],
        "reason": "Damaged packaging"   // optional
    }
    """
    store = get_request_store(request)
    serializer = ProcessReturnSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

    try:
        sale_return = SaleReturnService.process_return(
            store,
            sale_id,
            request.user,
            serializer.validated_data['items'],
            reason=serializer.validated_data.get('reason'),
        )
    except SaleReturnError:
        raise
    except Exception as e:
        logger.error(f"Error processing return for sale {sale_id}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(SaleReturnSerializer(sale_return).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
def full_return_items(request, sale_id):
    """
    Everything still returnable on a sale, in the shape accepted by the
    return endpoint.
    """
    store = get_request_store(request)
    items = SaleReturnService.build_full_return_items(store, sale_id)
    return Response({
        'sale_id': str(sale_id),
        'items': FullReturnItemSerializer(items, many=True).data,
    })


@api_view(['POST'])
def return_full_sale(request, sale_id):
    """
    Return every remaining unit of a sale.

    Request body:
    {
        "reason": "Customer changed their mind"   // optional
    }
    """
    store = get_request_store(request)
    serializer = ReasonSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

    try:
        sale_return = SaleReturnService.return_full_sale(
            store, sale_id, request.user, reason=serializer.validated_data.get('reason')
        )
    except SaleReturnError:
        raise
    except Exception as e:
        logger.error(f"Error returning full sale {sale_id}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(SaleReturnSerializer(sale_return).data, status=status.HTTP_201_CREATED)


@api_view(['POST'])
def void_sale(request, sale_id):
    """
    Void a sale. Voided sales are terminal.

    Request body:
    {
        "reason": "Wrong customer"   // optional
    }
    """
    store = get_request_store(request)
    serializer = ReasonSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({'error': serializer.errors}, status=status.HTTP_400_BAD_REQUEST)

    try:
        sale = VoidSaleService.void_sale(
            store, sale_id, request.user, reason=serializer.validated_data.get('reason')
        )
    except SaleReturnError:
        raise
    except Exception as e:
        logger.error(f"Error voiding sale {sale_id}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return Response(SaleSerializer(sale).data, status=status.HTTP_200_OK)


class SaleReturnListView(generics.ListAPIView):
    """
    List a store's returns.

    GET /api/v1/returns/?sale=<uuid>&created_after=...&min_total=...
    """
    serializer_class = SaleReturnSerializer
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = SaleReturnFilter
    ordering_fields = ['created_at', 'total_usd']
    ordering = ['-created_at']

    def get_queryset(self):
        store = get_request_store(self.request)
        return (
            SaleReturn.objects.filter(store=store)
            .select_related('created_by')
            .prefetch_related('items__product')
        )


class SaleReturnDetailView(generics.RetrieveAPIView):
    serializer_class = SaleReturnSerializer

    def get_queryset(self):
        store = get_request_store(self.request)
        return SaleReturn.objects.filter(store=store).prefetch_related('items__product')


@api_view(['GET'])
def sale_return_pdf(request, pk):
    """Download the printable slip of a return."""
    store = get_request_store(request)
    try:
        sale_return = SaleReturn.objects.select_related('store', 'created_by').get(pk=pk, store=store)
    except SaleReturn.DoesNotExist:
        return Response({'error': 'Return not found'}, status=status.HTTP_404_NOT_FOUND)

    try:
        pdf_buffer = ReturnSlipPDFService.generate_return_slip(sale_return)
    except Exception as e:
        logger.error(f"Error generating return slip for {pk}: {e}")
        return Response({'error': str(e)}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    response = HttpResponse(pdf_buffer, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="return_{sale_return.pk}.pdf"'
    return response
