import json
import logging

from django.conf import settings
from django.db import DatabaseError
from django.http import StreamingHttpResponse
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.exceptions import ParseError, PermissionDenied
from rest_framework.renderers import BaseRenderer, JSONRenderer
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from common.security import AdminEndpointMixin, PrivateEndpointMixin, WebhookEndpointMixin

from .checkout import CheckoutSessionController, build_card, build_payer
from .models import PaymentAttempt
from .realtime import stream_attempt_status
from .reconciliation import admin_confirm, authorize_webhook, process_gateway_webhook, refresh_expiry
from .serializers import (
    CreatePaymentAttemptSerializer,
    PaymentAttemptSerializer,
    attempt_status_payload,
)

logger = logging.getLogger(__name__)


class EventStreamRenderer(BaseRenderer):
    media_type = "text/event-stream"
    format = "event-stream"
    charset = "utf-8"

    def render(self, data, accepted_media_type=None, renderer_context=None):
        return json.dumps(data, default=str).encode(self.charset)


def _get_visible_attempt(request, attempt_id):
    attempt = get_object_or_404(PaymentAttempt.objects.select_related("order"), pk=attempt_id)
    user = request.user
    if not user.is_staff and attempt.order.user_id != user.pk:
        raise PermissionDenied("Este pagamento pertence a outro usuário.")
    return attempt


class AsaasWebhookView(WebhookEndpointMixin, APIView):
    """
    Webhook do Asaas. O token é validado antes de qualquer leitura de estado;
    evento desconhecido é aceito e ignorado; erro de banco devolve 503 para o
    provedor reenviar.
    """

    def post(self, request):
        authorize_webhook(request)
        try:
            payload = request.data if isinstance(request.data, dict) else {}
        except ParseError:
            logger.warning("asaas_webhook_malformed_body")
            payload = {}
        try:
            result = process_gateway_webhook(payload)
        except DatabaseError as exc:
            logger.error(
                "asaas_webhook_persistence_error",
                extra={"event": payload.get("event"), "error": str(exc)},
            )
            return Response(
                {"detail": "Falha temporária ao registrar o evento."},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )
        return Response(result, status=status.HTTP_200_OK)


class PaymentAttemptCreateView(PrivateEndpointMixin, APIView):
    throttle_scope = "checkout"

    def post(self, request):
        serializer = CreatePaymentAttemptSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        controller = CheckoutSessionController(request.user)
        attempt = controller.create_payment_attempt(
            data["orderId"],
            data["method"],
            data["amount"],
            payer=build_payer(data.get("payerDetails")),
            card=build_card(data.get("cardDetails")),
            installments=data.get("installments") or 1,
        )
        return Response(PaymentAttemptSerializer(attempt).data, status=status.HTTP_201_CREATED)


class PaymentAttemptStatusView(PrivateEndpointMixin, APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payment_status"

    def get(self, request, attempt_id):
        attempt = _get_visible_attempt(request, attempt_id)
        refresh_expiry(attempt)
        return Response(attempt_status_payload(attempt))


class PaymentAttemptEventsView(PrivateEndpointMixin, APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payment_status"
    renderer_classes = [JSONRenderer, EventStreamRenderer]

    def get(self, request, attempt_id):
        attempt = _get_visible_attempt(request, attempt_id)
        stream = stream_attempt_status(
            attempt,
            heartbeat=settings.PAYMENT_STREAM_HEARTBEAT_SECONDS,
            timeout=settings.PAYMENT_STREAM_TIMEOUT_SECONDS,
        )
        response = StreamingHttpResponse(stream, content_type="text/event-stream")
        response["Cache-Control"] = "no-cache"
        response["X-Accel-Buffering"] = "no"
        return response


class PaymentAttemptConfirmView(AdminEndpointMixin, APIView):
    """Confirmação manual de PIX direto (o admin conferiu o extrato)."""

    def post(self, request, attempt_id):
        attempt = get_object_or_404(PaymentAttempt.objects.select_related("order"), pk=attempt_id)
        result = admin_confirm(attempt, actor=request.user)
        return Response(
            {
                "attemptId": str(attempt.pk),
                "status": result.status,
                "idempotent": result.idempotent,
            }
        )


class PaymentConfigView(AdminEndpointMixin, APIView):
    """
    Health-check de configuração de pagamentos/Asaas.
    Só admins.
    """

    def get(self, request):
        return Response(
            {
                "asaas_api_key_configured": bool(settings.ASAAS_API_KEY),
                "asaas_sandbox": "sandbox" in settings.ASAAS_BASE_URL,
                "asaas_base_url": settings.ASAAS_BASE_URL,
                "webhook_token_configured": bool(settings.ASAAS_WEBHOOK_TOKEN),
                "webhook_token_required": settings.ASAAS_REQUIRE_WEBHOOK_TOKEN,
                "webhook_no_token_allowed": settings.ASAAS_ALLOW_WEBHOOK_NO_TOKEN,
                "whatsapp_configured": bool(settings.WHATSAPP_WEBHOOK_URL),
                "poll_interval_seconds": settings.PAYMENT_POLL_INTERVAL_SECONDS,
                "debug": settings.DEBUG,
            }
        )
