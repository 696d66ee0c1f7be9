import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Order(models.Model):
    class Status:
        CREATED = "created"
        AWAITING_PAYMENT = "awaiting_payment"
        PAID = "paid"
        CANCELLED = "cancelled"

        CHOICES = [
            (CREATED, "Criado"),
            (AWAITING_PAYMENT, "Aguardando pagamento"),
            (PAID, "Pago"),
            (CANCELLED, "Cancelado"),
        ]

    class PaymentStatus:
        PENDING = "pending"
        CONFIRMED = "confirmed"
        OVERDUE = "overdue"
        REFUNDED = "refunded"
        CANCELLED = "cancelled"
        FAILED = "failed"

        CHOICES = [
            (PENDING, "Pendente"),
            (CONFIRMED, "Confirmado"),
            (OVERDUE, "Vencido"),
            (REFUNDED, "Estornado"),
            (CANCELLED, "Cancelado"),
            (FAILED, "Falhou"),
        ]

    class PaymentMethod:
        PIX_DIRECT = "pix_direct"
        GATEWAY_PIX = "gateway_pix"
        GATEWAY_BOLETO = "gateway_boleto"
        GATEWAY_CARD = "gateway_card"

        CHOICES = [
            (PIX_DIRECT, "PIX direto"),
            (GATEWAY_PIX, "PIX (Asaas)"),
            (GATEWAY_BOLETO, "Boleto (Asaas)"),
            (GATEWAY_CARD, "Cartão de crédito (Asaas)"),
        ]
        GATEWAY = {GATEWAY_PIX, GATEWAY_BOLETO, GATEWAY_CARD}

    class Fulfillment:
        PROCESSING = "processing"
        AWAITING_CUSTOMIZATION = "awaiting_customization"

        CHOICES = [
            (PROCESSING, "Em produção"),
            (AWAITING_CUSTOMIZATION, "Aguardando personalização"),
        ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    shipping_cost = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    discount_amount = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    status = models.CharField(max_length=20, choices=Status.CHOICES, default=Status.CREATED)
    payment_status = models.CharField(max_length=12, choices=PaymentStatus.CHOICES, default=PaymentStatus.PENDING)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.CHOICES, blank=True)
    external_payment_ref = models.CharField(max_length=80, null=True, blank=True)
    invoice_url = models.URLField(max_length=500, blank=True)
    fulfillment_status = models.CharField(max_length=30, choices=Fulfillment.CHOICES, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Pedido"
        verbose_name_plural = "Pedidos"

    def __str__(self):
        return f"Pedido #{self.short_code}"

    @property
    def short_code(self):
        return str(self.id)[:8]

    @property
    def is_paid(self):
        return self.status == self.Status.PAID or self.payment_status == self.PaymentStatus.CONFIRMED

    def expected_total(self) -> Decimal:
        """Subtotal dos itens + frete - desconto, arredondado em centavos."""
        subtotal = sum(
            (item.unit_price * item.quantity for item in self.items.all()),
            Decimal("0.00"),
        )
        total = subtotal + (self.shipping_cost or Decimal("0.00")) - (self.discount_amount or Decimal("0.00"))
        return total.quantize(Decimal("0.01"))

    def next_fulfillment_status(self) -> str:
        """
        Próxima etapa após pagamento confirmado:
        - pedido com display (business_display) -> awaiting_customization
        - só pet tag / outros -> processing
        """
        has_display = self.items.filter(product_type=OrderItem.ProductType.BUSINESS_DISPLAY).exists()
        if has_display:
            return self.Fulfillment.AWAITING_CUSTOMIZATION
        return self.Fulfillment.PROCESSING

    # --- Escritas condicionais -------------------------------------------
    # Status só avança: created -> awaiting_payment -> {paid, cancelled}.
    # A única volta permitida é o estorno explícito (paid -> cancelled/refunded).

    def mark_awaiting_payment(self, *, method, external_ref=None, invoice_url=""):
        updates = {
            "payment_method": method,
            "external_payment_ref": external_ref,
            "invoice_url": invoice_url or "",
            "payment_status": self.PaymentStatus.PENDING,
            "updated_at": timezone.now(),
        }
        rows = Order.objects.filter(
            pk=self.pk,
            status__in=[self.Status.CREATED, self.Status.AWAITING_PAYMENT],
        ).update(status=self.Status.AWAITING_PAYMENT, **updates)
        return rows == 1

    def mark_paid(self):
        rows = Order.objects.filter(
            pk=self.pk,
            status__in=[self.Status.CREATED, self.Status.AWAITING_PAYMENT],
        ).update(
            status=self.Status.PAID,
            payment_status=self.PaymentStatus.CONFIRMED,
            fulfillment_status=self.next_fulfillment_status(),
            updated_at=timezone.now(),
        )
        return rows == 1

    def mark_refunded(self):
        rows = Order.objects.filter(
            pk=self.pk,
            status__in=[self.Status.CREATED, self.Status.AWAITING_PAYMENT, self.Status.PAID],
        ).update(
            status=self.Status.CANCELLED,
            payment_status=self.PaymentStatus.REFUNDED,
            updated_at=timezone.now(),
        )
        return rows == 1

    def set_payment_status(self, value, *, only_from=None):
        """Muda só payment_status (overdue/cancelled), nunca sobre um pedido confirmado."""
        qs = Order.objects.filter(pk=self.pk).exclude(
            Q(payment_status=self.PaymentStatus.CONFIRMED) | Q(status=self.Status.PAID)
        )
        if only_from:
            qs = qs.filter(payment_status__in=only_from)
        rows = qs.update(payment_status=value, updated_at=timezone.now())
        return rows == 1


class OrderItem(models.Model):
    class ProductType:
        PET_TAG = "pet_tag"
        BUSINESS_DISPLAY = "business_display"

        CHOICES = [
            (PET_TAG, "Tag pet"),
            (BUSINESS_DISPLAY, "Display empresarial"),
        ]

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    name = models.CharField(max_length=120)
    product_type = models.CharField(max_length=20, choices=ProductType.CHOICES, default=ProductType.PET_TAG)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    class Meta:
        verbose_name = "Item do pedido"
        verbose_name_plural = "Itens do pedido"

    def __str__(self):
        return f"{self.quantity}x {self.name}"
