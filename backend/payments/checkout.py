import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.db import DatabaseError, IntegrityError, transaction
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError

from orders.models import Order

from .exceptions import (
    AlreadyPaid,
    AmountMismatch,
    AttemptInProgress,
    ChargeRejected,
    PaymentPersistenceError,
)
from .gateway import AsaasGatewayClient, BillingAddress, CardDetails, CustomerIdentity
from .models import PaymentAttempt
from .pix import DirectPixIssuer
from .reconciliation import SOURCE_CARD, confirm_attempt, expire_overdue_attempts, fail_attempt

logger = logging.getLogger(__name__)

CARD_CONFIRMED = {"CONFIRMED", "RECEIVED"}
CARD_WAITING = {"PENDING", "AWAITING_RISK_ANALYSIS"}


@dataclass
class PayerDetails:
    name: str
    email: str
    tax_id: str
    phone: str = ""
    address: Optional[BillingAddress] = None

    def identity(self, order):
        return CustomerIdentity(
            name=self.name,
            email=self.email,
            phone=self.phone,
            external_reference=str(order.user_id),
        )


class CheckoutSessionController:
    """
    Cria tentativas de pagamento para os pedidos do usuário autenticado.
    Uma instância por request; não guarda "pedido atual" entre chamadas.
    """

    def __init__(self, user, gateway=None, pix_issuer=None):
        self.user = user
        self.gateway = gateway or AsaasGatewayClient()
        self.pix_issuer = pix_issuer or DirectPixIssuer()

    def _load_order(self, order_id):
        order = Order.objects.filter(pk=order_id).select_related("user").first()
        if order is None:
            raise NotFound("Pedido não encontrado.")
        if order.user_id != self.user.pk:
            raise PermissionDenied("Este pedido pertence a outro usuário.")
        return order

    def _check_amount(self, order, amount):
        try:
            value = Decimal(str(amount)).quantize(Decimal("0.01"))
        except (InvalidOperation, TypeError, ValueError):
            raise AmountMismatch("Valor do pagamento inválido.")
        expected = order.expected_total()
        if value != expected:
            logger.warning(
                "checkout_amount_mismatch",
                extra={"order_id": str(order.pk), "amount": str(value), "expected": str(expected)},
            )
            raise AmountMismatch()
        return value

    def create_payment_attempt(self, order_id, method, amount, payer=None, card=None, installments=1):
        order = self._load_order(order_id)
        if order.is_paid:
            raise AlreadyPaid()
        if order.status == Order.Status.CANCELLED:
            raise ValidationError({"detail": "Pedido cancelado não pode ser pago."})
        value = self._check_amount(order, amount)

        expire_overdue_attempts(order=order)
        pending = order.payment_attempts.filter(status=PaymentAttempt.Status.PENDING).first()
        if pending is not None:
            raise AttemptInProgress(pending)

        if method == Order.PaymentMethod.PIX_DIRECT:
            return self._issue_direct_pix(order, value)
        if method in Order.PaymentMethod.GATEWAY:
            if payer is None:
                raise ValidationError({"payerDetails": "Dados do pagador são obrigatórios."})
            if method == Order.PaymentMethod.GATEWAY_CARD and card is None:
                raise ValidationError({"cardDetails": "Dados do cartão são obrigatórios."})
            return self._charge_gateway(order, value, method, payer, card, installments or 1)
        raise ValidationError({"method": "Forma de pagamento inválida."})

    # --- PIX direto --------------------------------------------------------

    def _issue_direct_pix(self, order, amount):
        charge = self.pix_issuer.issue(order.pk, amount)
        try:
            with transaction.atomic():
                attempt = PaymentAttempt.objects.create(
                    order=order,
                    user=self.user,
                    method=Order.PaymentMethod.PIX_DIRECT,
                    amount=amount,
                    pix_key=charge.pix_key,
                    provider_transaction_id=charge.transaction_id,
                    expires_at=charge.expires_at,
                    created_at=charge.issued_at,
                )
                order.mark_awaiting_payment(
                    method=Order.PaymentMethod.PIX_DIRECT,
                    external_ref=charge.transaction_id,
                )
        except IntegrityError:
            raise AttemptInProgress(
                order.payment_attempts.filter(status=PaymentAttempt.Status.PENDING).first()
            )
        logger.info(
            "checkout_pix_direct_issued",
            extra={
                "order_id": str(order.pk),
                "attempt_id": str(attempt.pk),
                "transaction_id": charge.transaction_id,
                "expires_at": charge.expires_at.isoformat(),
            },
        )
        return attempt

    # --- Asaas ------------------------------------------------------------

    def _record_rejection(self, order, amount, method, exc, card=None, installments=1):
        with transaction.atomic():
            attempt = PaymentAttempt.objects.create(
                order=order,
                user=self.user,
                method=method,
                amount=amount,
                status=PaymentAttempt.Status.FAILED,
                failure_reason=exc.category,
                card_last_digits=card.last_digits if card else "",
                card_brand=card.brand if card else "",
                installments=installments,
            )
            order.mark_awaiting_payment(method=method)
        logger.info(
            "checkout_charge_rejected",
            extra={
                "order_id": str(order.pk),
                "attempt_id": str(attempt.pk),
                "category": exc.category,
                "reason": exc.provider_reason,
            },
        )
        return attempt

    def _charge_gateway(self, order, amount, method, payer, card, installments):
        is_card = method == Order.PaymentMethod.GATEWAY_CARD
        try:
            customer_id = self.gateway.find_or_create_customer(payer.identity(order), payer.tax_id, payer.address)
            payment = self.gateway.create_charge(
                customer_id,
                amount,
                order.pk,
                method,
                card=card,
                installments=installments if is_card else 1,
                description=f"Pedido #{order.short_code} - Tag na Mão",
                holder=payer.identity(order) if is_card else None,
                holder_tax_id=payer.tax_id,
                address=payer.address,
            )
        except ChargeRejected as exc:
            self._record_rejection(order, amount, method, exc, card=card, installments=installments)
            raise

        try:
            with transaction.atomic():
                attempt = PaymentAttempt.objects.create(
                    order=order,
                    user=self.user,
                    method=method,
                    amount=amount,
                    provider_transaction_id=payment.id,
                    provider_customer_id=customer_id,
                    pix_payload=payment.pix_payload,
                    pix_qr_image=payment.pix_qr_image,
                    invoice_url=payment.invoice_url,
                    card_last_digits=card.last_digits if is_card else "",
                    card_brand=card.brand if is_card else "",
                    installments=installments if is_card else 1,
                    expires_at=payment.expires_at if method == Order.PaymentMethod.GATEWAY_PIX else None,
                )
                order.mark_awaiting_payment(
                    method=method,
                    external_ref=payment.id,
                    invoice_url=payment.invoice_url,
                )
        except DatabaseError as exc:
            logger.error(
                "checkout_persist_failed",
                extra={"order_id": str(order.pk), "provider_payment_id": payment.id, "error": str(exc)},
            )
            self.gateway.cancel_charge(payment.id)
            raise PaymentPersistenceError() from exc

        logger.info(
            "checkout_gateway_charge_created",
            extra={
                "order_id": str(order.pk),
                "attempt_id": str(attempt.pk),
                "method": method,
                "provider_payment_id": payment.id,
                "provider_status": payment.status,
            },
        )
        if is_card:
            self._settle_card(attempt, payment.status)
        return attempt

    def _settle_card(self, attempt, provider_status):
        # Cartão resolve na hora; pendente/análise de risco fica para o webhook.
        if provider_status in CARD_CONFIRMED:
            confirm_attempt(attempt, source=SOURCE_CARD)
        elif provider_status not in CARD_WAITING:
            fail_attempt(attempt, source=SOURCE_CARD, reason=(provider_status or "declined").lower())
        return attempt


def build_card(data) -> Optional[CardDetails]:
    if not data:
        return None
    return CardDetails(
        holder_name=data["holderName"],
        number=data["number"],
        expiry_month=data["expiryMonth"],
        expiry_year=data["expiryYear"],
        ccv=data["ccv"],
    )


def build_payer(data) -> Optional[PayerDetails]:
    if not data:
        return None
    address = None
    if data.get("postalCode"):
        address = BillingAddress(
            postal_code=data["postalCode"],
            address=data.get("address", ""),
            address_number=data.get("addressNumber", ""),
            province=data.get("province", ""),
            city=data.get("city", ""),
            state=data.get("state", ""),
            complement=data.get("complement", ""),
        )
    return PayerDetails(
        name=data["name"],
        email=data["email"],
        tax_id=data["taxId"],
        phone=data.get("phone", ""),
        address=address,
    )
