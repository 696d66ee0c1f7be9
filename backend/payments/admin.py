from django.contrib import admin, messages

from .exceptions import AttemptClosed, ManualConfirmationNotAllowed
from .models import PaymentAttempt, PaymentWebhookEvent
from .reconciliation import admin_confirm


@admin.register(PaymentAttempt)
class PaymentAttemptAdmin(admin.ModelAdmin):
    list_display = ("id", "order", "method", "amount", "status", "expires_at", "confirmed_at", "created_at")
    list_filter = ("status", "method")
    search_fields = ("id", "order__id", "provider_transaction_id", "pix_key")
    readonly_fields = [f.name for f in PaymentAttempt._meta.fields]
    actions = ["confirm_direct_pix"]

    @admin.action(description="Confirmar PIX direto selecionado")
    def confirm_direct_pix(self, request, queryset):
        confirmed = 0
        for attempt in queryset.select_related("order"):
            try:
                admin_confirm(attempt, actor=request.user)
                confirmed += 1
            except (AttemptClosed, ManualConfirmationNotAllowed) as exc:
                self.message_user(request, f"{attempt.pk}: {exc.detail}", level=messages.WARNING)
        if confirmed:
            self.message_user(request, f"{confirmed} pagamento(s) confirmado(s).", level=messages.SUCCESS)


@admin.register(PaymentWebhookEvent)
class PaymentWebhookEventAdmin(admin.ModelAdmin):
    list_display = ("provider", "external_event_id", "event_type", "attempt", "received_at")
    list_filter = ("provider", "event_type")
    search_fields = ("external_event_id",)
    readonly_fields = ("provider", "external_event_id", "event_type", "attempt", "raw_payload", "received_at")
