from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Pagamentos"

    def ready(self):
        from .realtime import on_attempt_status_changed
        from .signals import attempt_status_changed

        attempt_status_changed.connect(on_attempt_status_changed, dispatch_uid="payments_realtime_hub")
