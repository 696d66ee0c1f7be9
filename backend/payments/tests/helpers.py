from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from orders.models import Order, OrderItem
from payments.models import PaymentAttempt


User = get_user_model()


def make_user(email="cliente@example.com", **extra):
    return User.objects.create_user(email=email, password="Senha123!", **extra)


def make_order(user, unit_price="59.90", quantity=1, **extra):
    order = Order.objects.create(user=user, total_amount=Decimal(unit_price) * quantity, **extra)
    OrderItem.objects.create(order=order, name="Tag QR Pet", quantity=quantity, unit_price=Decimal(unit_price))
    return order


def make_attempt(order, method=Order.PaymentMethod.GATEWAY_PIX, expires_in=timedelta(minutes=30), **extra):
    extra.setdefault("provider_transaction_id", "pay_123")
    attempt = PaymentAttempt.objects.create(
        order=order,
        user=order.user,
        method=method,
        amount=order.expected_total(),
        expires_at=timezone.now() + expires_in if expires_in is not None else None,
        **extra,
    )
    order.mark_awaiting_payment(method=method, external_ref=attempt.provider_transaction_id)
    order.refresh_from_db()
    return attempt
