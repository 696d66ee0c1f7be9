import uuid
from decimal import Decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("shipping_cost", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=10)),
                ("discount_amount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=10)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("created", "Criado"),
                            ("awaiting_payment", "Aguardando pagamento"),
                            ("paid", "Pago"),
                            ("cancelled", "Cancelado"),
                        ],
                        default="created",
                        max_length=20,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pendente"),
                            ("confirmed", "Confirmado"),
                            ("overdue", "Vencido"),
                            ("refunded", "Estornado"),
                            ("cancelled", "Cancelado"),
                            ("failed", "Falhou"),
                        ],
                        default="pending",
                        max_length=12,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("pix_direct", "PIX direto"),
                            ("gateway_pix", "PIX (Asaas)"),
                            ("gateway_boleto", "Boleto (Asaas)"),
                            ("gateway_card", "Cartão de crédito (Asaas)"),
                        ],
                        max_length=20,
                    ),
                ),
                ("external_payment_ref", models.CharField(blank=True, max_length=80, null=True)),
                ("invoice_url", models.URLField(blank=True, max_length=500)),
                (
                    "fulfillment_status",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("processing", "Em produção"),
                            ("awaiting_customization", "Aguardando personalização"),
                        ],
                        max_length=30,
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="orders",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Pedido",
                "verbose_name_plural": "Pedidos",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="OrderItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=120)),
                (
                    "product_type",
                    models.CharField(
                        choices=[("pet_tag", "Tag pet"), ("business_display", "Display empresarial")],
                        default="pet_tag",
                        max_length=20,
                    ),
                ),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("unit_price", models.DecimalField(decimal_places=2, max_digits=10)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Item do pedido",
                "verbose_name_plural": "Itens do pedido",
            },
        ),
    ]
