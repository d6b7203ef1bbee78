from django.contrib import admin
from .models import DeliverySlot, Booking


class BookingInline(admin.TabularInline):
    model = Booking
    extra = 0
    readonly_fields = ('order', 'quantity', 'unit_price_snapshot', 'status', 'expires_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(DeliverySlot)
class DeliverySlotAdmin(admin.ModelAdmin):
    list_display = ('product', 'date', 'reserved', 'max_capacity', 'is_available')
    list_filter = ('is_available', 'date')
    search_fields = ('product__name',)
    readonly_fields = ('reserved',)
    inlines = [BookingInline]


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ('id', 'slot', 'order', 'quantity', 'status', 'expires_at')
    list_filter = ('status',)
    search_fields = ('order__id',)
    readonly_fields = ('slot', 'order', 'quantity', 'unit_price_snapshot', 'status', 'expires_at')
