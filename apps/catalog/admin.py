from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('name', 'producer', 'price', 'unit', 'is_available', 'requires_delivery_slot', 'tracks_stock')
    list_filter = ('is_available', 'requires_delivery_slot', 'tracks_stock')
    search_fields = ('name', 'producer__email')
