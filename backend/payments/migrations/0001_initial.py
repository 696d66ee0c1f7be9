import uuid

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentAttempt",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "method",
                    models.CharField(
                        choices=[
                            ("pix_direct", "PIX direto"),
                            ("gateway_pix", "PIX (Asaas)"),
                            ("gateway_boleto", "Boleto (Asaas)"),
                            ("gateway_card", "Cartão de crédito (Asaas)"),
                        ],
                        max_length=20,
                    ),
                ),
                ("amount", models.DecimalField(decimal_places=2, max_digits=12)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pendente"),
                            ("confirmed", "Confirmado"),
                            ("expired", "Expirado"),
                            ("failed", "Falhou"),
                        ],
                        default="pending",
                        max_length=10,
                    ),
                ),
                ("provider_transaction_id", models.CharField(blank=True, db_index=True, max_length=80)),
                ("provider_customer_id", models.CharField(blank=True, max_length=80)),
                ("pix_key", models.CharField(blank=True, max_length=64)),
                ("pix_payload", models.TextField(blank=True)),
                ("pix_qr_image", models.TextField(blank=True)),
                ("invoice_url", models.URLField(blank=True, max_length=500)),
                ("card_last_digits", models.CharField(blank=True, max_length=4)),
                ("card_brand", models.CharField(blank=True, max_length=20)),
                ("installments", models.PositiveSmallIntegerField(default=1)),
                ("failure_reason", models.CharField(blank=True, max_length=60)),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_attempts",
                        to="orders.order",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payment_attempts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Tentativa de pagamento",
                "verbose_name_plural": "Tentativas de pagamento",
                "ordering": ["-created_at"],
            },
        ),
        migrations.AddConstraint(
            model_name="paymentattempt",
            constraint=models.UniqueConstraint(
                condition=models.Q(("status", "pending")),
                fields=("order",),
                name="uniq_pending_attempt_per_order",
            ),
        ),
        migrations.CreateModel(
            name="PaymentWebhookEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider", models.CharField(choices=[("asaas", "Asaas")], max_length=40)),
                ("external_event_id", models.CharField(max_length=255)),
                ("event_type", models.CharField(blank=True, max_length=60)),
                ("raw_payload", models.JSONField(blank=True, null=True)),
                ("received_at", models.DateTimeField(auto_now_add=True)),
                (
                    "attempt",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="webhook_events",
                        to="payments.paymentattempt",
                    ),
                ),
            ],
            options={
                "ordering": ["-received_at"],
                "unique_together": {("provider", "external_event_id")},
            },
        ),
    ]
