from django.contrib import admin

from .models import Order


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "status", "payment_status", "payment_method", "total_amount", "paid_at", "updated_at")
    search_fields = ("order_number", "customer_name")
    list_filter = ("status", "payment_status", "created_at")
    readonly_fields = ("id", "created_at", "updated_at", "paid_at")
    ordering = ("-created_at",)
