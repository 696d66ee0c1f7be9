from django.contrib import admin
from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("short_code", "user", "total_amount", "status", "payment_status", "payment_method", "created_at")
    list_filter = ("status", "payment_status", "payment_method")
    search_fields = ("id", "user__email", "external_payment_ref")
    # Status é responsabilidade da conciliação; no admin fica só leitura.
    readonly_fields = ("status", "payment_status", "external_payment_ref", "fulfillment_status", "created_at", "updated_at")
    inlines = [OrderItemInline]
