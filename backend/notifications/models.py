from django.db import models
from django.utils import timezone

from orders.models import Order


class Notification(models.Model):
    """
    Outbox de avisos ao cliente. A linha é gravada junto com a transição de estado
    e o envio acontece depois do commit (ou pelo comando dispatch_notifications).
    """

    class Kind:
        PAYMENT_CONFIRMED = "payment_confirmed"
        ADMIN_PAYMENT_ALERT = "admin_payment_alert"

        CHOICES = [
            (PAYMENT_CONFIRMED, "Pagamento confirmado"),
            (ADMIN_PAYMENT_ALERT, "Aviso de pagamento (admin)"),
        ]

    class Channel:
        EMAIL = "email"
        WHATSAPP = "whatsapp"

        CHOICES = [(EMAIL, "Email"), (WHATSAPP, "WhatsApp")]

    class Status:
        QUEUED = "queued"
        SENT = "sent"
        FAILED = "failed"
        SKIPPED = "skipped"

        CHOICES = [
            (QUEUED, "Na fila"),
            (SENT, "Enviada"),
            (FAILED, "Falhou"),
            (SKIPPED, "Ignorada"),
        ]

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="notifications")
    kind = models.CharField(max_length=40, choices=Kind.CHOICES)
    channel = models.CharField(max_length=20, choices=Channel.CHOICES)
    recipient = models.CharField(max_length=254, blank=True)
    subject = models.CharField(max_length=200, blank=True)
    body = models.TextField()
    status = models.CharField(max_length=10, choices=Status.CHOICES, default=Status.QUEUED)
    attempts = models.PositiveSmallIntegerField(default=0)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at"]
        verbose_name = "Notificação"
        verbose_name_plural = "Notificações"
        constraints = [
            models.UniqueConstraint(
                fields=["order", "kind", "channel"],
                name="uniq_notification_per_order_kind_channel",
            ),
        ]

    def __str__(self):
        return f"{self.kind} -> {self.channel} ({self.status})"
