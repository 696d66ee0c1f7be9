import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from orders.models import Order


class PaymentAttempt(models.Model):
    """
    Uma tentativa de pagamento de um pedido em um trilho (PIX direto, PIX/boleto/cartão via Asaas).
    Criada pelo checkout, alterada só pela conciliação, nunca apagada.
    """

    class Status:
        PENDING = "pending"
        CONFIRMED = "confirmed"
        EXPIRED = "expired"
        FAILED = "failed"

        CHOICES = [
            (PENDING, "Pendente"),
            (CONFIRMED, "Confirmado"),
            (EXPIRED, "Expirado"),
            (FAILED, "Falhou"),
        ]
        TERMINAL = {CONFIRMED, EXPIRED, FAILED}

    Method = Order.PaymentMethod

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="payment_attempts")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="payment_attempts",
    )
    method = models.CharField(max_length=20, choices=Order.PaymentMethod.CHOICES)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=10, choices=Status.CHOICES, default=Status.PENDING)

    provider_transaction_id = models.CharField(max_length=80, blank=True, db_index=True)
    provider_customer_id = models.CharField(max_length=80, blank=True)
    # PIX
    pix_key = models.CharField(max_length=64, blank=True)
    pix_payload = models.TextField(blank=True)
    pix_qr_image = models.TextField(blank=True)
    # Asaas (fatura / boleto)
    invoice_url = models.URLField(max_length=500, blank=True)
    # Cartão
    card_last_digits = models.CharField(max_length=4, blank=True)
    card_brand = models.CharField(max_length=20, blank=True)
    installments = models.PositiveSmallIntegerField(default=1)

    failure_reason = models.CharField(max_length=60, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Tentativa de pagamento"
        verbose_name_plural = "Tentativas de pagamento"
        constraints = [
            # No máximo uma tentativa não-terminal por pedido
            models.UniqueConstraint(
                fields=["order"],
                condition=Q(status="pending"),
                name="uniq_pending_attempt_per_order",
            ),
        ]

    def __str__(self):
        return f"{self.get_method_display()} {self.amount} ({self.status})"

    @property
    def is_terminal(self):
        return self.status in self.Status.TERMINAL

    @property
    def is_direct_pix(self):
        return self.method == Order.PaymentMethod.PIX_DIRECT

    @property
    def is_gateway(self):
        return self.method in Order.PaymentMethod.GATEWAY

    def is_past_deadline(self, now=None):
        if not self.expires_at:
            return False
        return (now or timezone.now()) > self.expires_at


class PaymentWebhookEvent(models.Model):
    """Registro de idempotência dos webhooks (entregas repetidas ou fora de ordem)."""

    PROVIDER_ASAAS = "asaas"
    PROVIDERS = ((PROVIDER_ASAAS, "Asaas"),)

    provider = models.CharField(max_length=40, choices=PROVIDERS)
    external_event_id = models.CharField(max_length=255)
    event_type = models.CharField(max_length=60, blank=True)
    attempt = models.ForeignKey(
        PaymentAttempt,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="webhook_events",
    )
    raw_payload = models.JSONField(null=True, blank=True)
    received_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-received_at"]
        unique_together = [("provider", "external_event_id")]

    def __str__(self):
        return f"{self.provider}:{self.external_event_id}"
