from rest_framework import status, views
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from apps.accounts.permissions import IsProducer
from apps.catalog.models import Product
from apps.utils.exceptions import ForbiddenError, NotFoundError
from .models import Stock
from .serializers import StockAdjustmentSerializer, StockSerializer
from .services import InventoryService


class ProducerStockView(views.APIView):
    permission_classes = [IsAuthenticated, IsProducer]

    def get(self, request):
        stocks = Stock.objects.filter(product__producer=request.user).select_related('product')
        return Response(StockSerializer(stocks, many=True).data)


class StockAdjustView(views.APIView):
    """
    Harvest in, spoilage out. Producers can only touch their own products.
    """
    permission_classes = [IsAuthenticated, IsProducer]

    def post(self, request):
        serializer = StockAdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        product = Product.objects.filter(id=data['product_id']).first()
        if product is None:
            raise NotFoundError("Product not found.")
        if product.producer_id != request.user.id:
            raise ForbiddenError("You can only adjust stock of your own products.")

        stock = InventoryService.adjust(product.id, data['delta'], request.user, data['reason'])
        return Response(StockSerializer(stock).data, status=status.HTTP_200_OK)
