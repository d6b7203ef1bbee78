import json
from django.contrib import admin
from django.utils.html import format_html
from .models import Order, OrderItem, OrderTimeline


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('product', 'product_name_snapshot', 'unit_price_snapshot', 'quantity')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderTimelineInline(admin.TabularInline):
    model = OrderTimeline
    extra = 0
    readonly_fields = ('timestamp', 'status', 'note', 'created_by')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Read-only: status changes must go through OrderService so stock,
    slots and wallets move with them.
    """
    list_display = ('id', 'buyer', 'status', 'total', 'delivery_fee', 'platform_fee', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('id', 'buyer__email')
    inlines = [OrderItemInline, OrderTimelineInline]

    readonly_fields = (
        'id', 'buyer', 'status', 'total', 'delivery_fee', 'platform_fee',
        'formatted_delivery_details', 'formatted_payment_link',
        'created_at', 'updated_at', 'confirmed_at', 'shipped_at', 'delivered_at', 'cancelled_at',
    )
    exclude = ('delivery_details', 'payment_link')

    def has_add_permission(self, request):
        return False

    def _pretty(self, value):
        if not value:
            return "-"
        return format_html("<pre>{}</pre>", json.dumps(value, indent=2))

    def formatted_delivery_details(self, obj):
        return self._pretty(obj.delivery_details)

    formatted_delivery_details.short_description = "Delivery"

    def formatted_payment_link(self, obj):
        return self._pretty(obj.payment_link)

    formatted_payment_link.short_description = "Payment"
