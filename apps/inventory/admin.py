from django.contrib import admin
from .models import Stock, StockMovementLog


@admin.register(Stock)
class StockAdmin(admin.ModelAdmin):
    list_display = ('product', 'quantity', 'low_stock_threshold', 'updated_at')
    search_fields = ('product__name',)
    readonly_fields = ('quantity',)


@admin.register(StockMovementLog)
class StockMovementLogAdmin(admin.ModelAdmin):
    list_display = ('stock', 'movement_type', 'quantity_change', 'balance_after', 'reference', 'created_at')
    list_filter = ('movement_type',)
    search_fields = ('reference',)

    def has_change_permission(self, request, obj=None):
        return False
