from rest_framework import serializers
from .models import Stock


class StockSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)

    class Meta:
        model = Stock
        fields = ['product', 'product_name', 'quantity', 'low_stock_threshold', 'is_low', 'updated_at']


class StockAdjustmentSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    delta = serializers.IntegerField()
    reason = serializers.CharField(max_length=200)
