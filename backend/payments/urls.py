from django.urls import path, re_path

from .views import (
    AsaasWebhookView,
    PaymentAttemptConfirmView,
    PaymentAttemptCreateView,
    PaymentAttemptEventsView,
    PaymentAttemptStatusView,
    PaymentConfigView,
)

# Barra final opcional: o painel do Asaas e o front chamam sem barra.
urlpatterns = [
    re_path(r"^webhook/?$", AsaasWebhookView.as_view(), name="payments-webhook"),
    re_path(r"^config/?$", PaymentConfigView.as_view(), name="payments-config"),
    re_path(r"^attempts/?$", PaymentAttemptCreateView.as_view(), name="payment-attempt-create"),
    path("attempts/<uuid:attempt_id>/status", PaymentAttemptStatusView.as_view(), name="payment-attempt-status"),
    path("attempts/<uuid:attempt_id>/events", PaymentAttemptEventsView.as_view(), name="payment-attempt-events"),
    path("attempts/<uuid:attempt_id>/confirm", PaymentAttemptConfirmView.as_view(), name="payment-attempt-confirm"),
]
