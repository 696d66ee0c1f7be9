"""
Conciliação de pagamentos.

Toda mudança de estado de uma tentativa passa por `transition`, que é um único
UPDATE condicional (`WHERE status='pending'`). Só quem afeta a linha dispara os
efeitos colaterais (pedido pago, outbox de notificações, push em tempo real).
"""
import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.db import connection, transaction
from django.utils import timezone
from django.utils.crypto import constant_time_compare

from notifications.dispatch import dispatch_queued, enqueue_payment_confirmed
from orders.models import Order

from .exceptions import (
    AttemptClosed,
    InvalidWebhookAuth,
    InvalidWebhookPayload,
    ManualConfirmationNotAllowed,
    StaleTransition,
    WebhookNotConfigured,
)
from .models import PaymentAttempt, PaymentWebhookEvent
from .signals import attempt_status_changed

logger = logging.getLogger(__name__)

Status = PaymentAttempt.Status

SOURCE_WEBHOOK = "webhook"
SOURCE_ADMIN = "admin"
SOURCE_EXPIRY = "expiry"
SOURCE_CARD = "card_sync"


@dataclass
class TransitionResult:
    attempt: PaymentAttempt
    status: str
    applied: bool = False
    idempotent: bool = False
    stale: Optional[StaleTransition] = None

    @property
    def ok(self):
        return self.applied or self.idempotent


def transition(attempt, target, *, source, reason=""):
    """
    pending -> target, uma única vez. Repetir o mesmo terminal é sucesso idempotente;
    pedir um terminal diferente do atual é anomalia (logada, não aplicada, não levantada).
    """
    if target not in Status.TERMINAL:
        raise ValueError(f"Estado de destino inválido: {target}")

    now = timezone.now()
    updates = {"status": target, "updated_at": now}
    if target == Status.CONFIRMED:
        updates["confirmed_at"] = now
    if target == Status.FAILED and reason:
        updates["failure_reason"] = reason[:60]

    with transaction.atomic():
        rows = PaymentAttempt.objects.filter(pk=attempt.pk, status=Status.PENDING).update(**updates)
        if rows == 1:
            for field, value in updates.items():
                setattr(attempt, field, value)
            logger.info(
                "payment_transition_applied",
                extra={
                    "attempt_id": str(attempt.pk),
                    "order_id": str(attempt.order_id),
                    "status": target,
                    "source": source,
                },
            )
            if target == Status.CONFIRMED:
                _apply_confirmation(attempt)
            _publish_after_commit(attempt, Status.PENDING, target, source)
            return TransitionResult(attempt=attempt, status=target, applied=True)

    attempt.refresh_from_db(fields=["status", "confirmed_at", "failure_reason", "updated_at"])
    if attempt.status == target:
        return TransitionResult(attempt=attempt, status=target, idempotent=True)

    stale = StaleTransition(attempt.pk, attempt.status, target, source)
    logger.warning(
        "payment_stale_transition",
        extra={
            "attempt_id": str(attempt.pk),
            "current": attempt.status,
            "proposed": target,
            "source": source,
        },
    )
    return TransitionResult(attempt=attempt, status=attempt.status, stale=stale)


def confirm_attempt(attempt, *, source):
    return transition(attempt, Status.CONFIRMED, source=source)


def fail_attempt(attempt, *, source, reason=""):
    return transition(attempt, Status.FAILED, source=source, reason=reason)


def expire_attempt(attempt, *, source=SOURCE_EXPIRY):
    return transition(attempt, Status.EXPIRED, source=source)


# --- Efeitos colaterais ----------------------------------------------------

def _apply_confirmation(attempt):
    order = attempt.order
    if not order.mark_paid():
        # Pedido já pago/cancelado por outro caminho; nada a repetir.
        logger.warning(
            "payment_order_not_payable",
            extra={"order_id": str(order.pk), "attempt_id": str(attempt.pk)},
        )
        return
    order.refresh_from_db()
    created = enqueue_payment_confirmed(order)
    ids = [n.pk for n in created]
    if ids:
        transaction.on_commit(lambda: schedule_notification_dispatch(ids))


def schedule_notification_dispatch(ids):
    """
    Tira o envio (SMTP/WhatsApp) do caminho do request: o webhook responde ao Asaas
    sem esperar. Modos em NOTIFICATION_DISPATCH_MODE:
    "thread" (padrão) envia numa thread daemon; "inline" envia na hora;
    "outbox" só deixa na fila para o comando dispatch_notifications.
    """
    mode = getattr(settings, "NOTIFICATION_DISPATCH_MODE", "thread")
    if mode == "outbox":
        return None
    if mode == "inline":
        _dispatch_notifications(ids)
        return None
    worker = threading.Thread(
        target=_dispatch_in_background,
        args=(list(ids),),
        name="notification-dispatch",
        daemon=True,
    )
    worker.start()
    return worker


def _dispatch_in_background(ids):
    try:
        _dispatch_notifications(ids)
    finally:
        # Conexão de banco aberta nesta thread não é reaproveitada por ninguém.
        connection.close()


def _dispatch_notifications(ids):
    try:
        dispatch_queued(ids=ids)
    except Exception as exc:
        # O comando dispatch_notifications reenvia o que ficou na fila.
        logger.error("notification_dispatch_error", extra={"ids": ids, "error": str(exc)})


def _publish_after_commit(attempt, previous, status, source):
    def _send():
        attempt_status_changed.send(
            sender=PaymentAttempt,
            attempt=attempt,
            previous=previous,
            status=status,
            source=source,
        )

    transaction.on_commit(_send)


# --- Expiração -----------------------------------------------------------

def refresh_expiry(attempt, now=None):
    """Leitura com expiração preguiçosa: pendente e vencida vira expired."""
    if attempt.status == Status.PENDING and attempt.is_past_deadline(now):
        if not expire_attempt(attempt).applied:
            # Outro caminho terminou a tentativa antes; o pedido em memória ficou velho.
            attempt.order.refresh_from_db(fields=["status", "payment_status", "fulfillment_status"])
    return attempt


def expire_overdue_attempts(now=None, order=None):
    now = now or timezone.now()
    qs = PaymentAttempt.objects.filter(status=Status.PENDING, expires_at__lt=now)
    if order is not None:
        qs = qs.filter(order=order)
    expired = 0
    for attempt in qs.select_related("order"):
        if expire_attempt(attempt).applied:
            expired += 1
    if expired:
        logger.info("payment_attempts_expired", extra={"count": expired})
    return expired


# --- Confirmação manual (PIX direto) -------------------------------------

def admin_confirm(attempt, *, actor=None):
    if not attempt.is_direct_pix:
        raise ManualConfirmationNotAllowed()
    result = confirm_attempt(attempt, source=SOURCE_ADMIN)
    if not result.ok:
        raise AttemptClosed(result.status)
    logger.info(
        "payment_admin_confirmed",
        extra={
            "attempt_id": str(attempt.pk),
            "actor_id": getattr(actor, "pk", None),
            "idempotent": result.idempotent,
        },
    )
    return result


# --- Webhook Asaas -------------------------------------------------------

def authorize_webhook(request):
    """
    Valida o token compartilhado antes de qualquer acesso a estado.
    Aceita:
      - Header `asaas-access-token: <token>`
      - Authorization: Bearer <token>
    """
    token = settings.ASAAS_WEBHOOK_TOKEN
    if not token:
        allow = settings.DEBUG and settings.ASAAS_ALLOW_WEBHOOK_NO_TOKEN and not settings.ASAAS_REQUIRE_WEBHOOK_TOKEN
        if allow:
            logger.warning("asaas_webhook_token_missing_allowed")
            return
        logger.error("asaas_webhook_not_configured")
        raise WebhookNotConfigured()

    auth = (request.headers.get("Authorization") or "").strip()
    bearer = auth[7:].strip() if auth.lower().startswith("bearer ") else ""
    incoming = (request.headers.get("asaas-access-token") or bearer or "").strip()
    if not incoming or not constant_time_compare(incoming, token):
        logger.warning("asaas_webhook_rejected", extra={"has_token": bool(incoming)})
        raise InvalidWebhookAuth()


def webhook_event_id(payload):
    payment = payload.get("payment") if isinstance(payload.get("payment"), dict) else {}
    event = str(payload.get("event") or "")
    payment_id = str(payment.get("id") or "")
    if payment_id and event:
        return f"{payment_id}:{event}"
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _locate_attempt(order, provider_payment_id):
    """
    Com `payment.id` só vale o casamento exato: um id desconhecido pode ser uma cobrança
    órfã (cancelada na compensação) e não pode atingir a tentativa viva do pedido.
    Sem id, cai na tentativa de gateway mais recente.
    """
    attempts = order.payment_attempts.filter(method__in=Order.PaymentMethod.GATEWAY)
    if provider_payment_id:
        return attempts.filter(provider_transaction_id=provider_payment_id).first()
    return attempts.order_by("-created_at").first()


def _lookup_order(reference):
    try:
        order_id = uuid.UUID(str(reference))
    except ValueError:
        return None
    return Order.objects.filter(pk=order_id).select_related("user").first()


def _handle_confirmed(order, attempt, event):
    if attempt is None:
        logger.warning("asaas_webhook_confirmed_without_attempt", extra={"order_id": str(order.pk)})
        return "no_attempt"
    result = confirm_attempt(attempt, source=SOURCE_WEBHOOK)
    return "confirmed" if result.ok else "stale"


def _handle_overdue(order, attempt, event):
    changed = order.set_payment_status(Order.PaymentStatus.OVERDUE, only_from=[Order.PaymentStatus.PENDING])
    return "overdue" if changed else "unchanged"


def _handle_refunded(order, attempt, event):
    if attempt is not None:
        fail_attempt(attempt, source=SOURCE_WEBHOOK, reason="refunded")
    order.mark_refunded()
    return "refunded"


def _handle_deleted(order, attempt, event):
    if attempt is None or not fail_attempt(attempt, source=SOURCE_WEBHOOK, reason="deleted").applied:
        return "unchanged"
    order.set_payment_status(Order.PaymentStatus.CANCELLED)
    return "cancelled"


EVENT_HANDLERS = {
    "PAYMENT_CONFIRMED": _handle_confirmed,
    "PAYMENT_RECEIVED": _handle_confirmed,
    "PAYMENT_OVERDUE": _handle_overdue,
    "PAYMENT_REFUNDED": _handle_refunded,
    "PAYMENT_REFUND_REQUESTED": _handle_refunded,
    "PAYMENT_DELETED": _handle_deleted,
}


def process_gateway_webhook(payload):
    """
    Aplica um evento do Asaas. Devolve um resumo curto para a resposta/log.
    Erros de banco sobem para a view (que responde 503 e o provedor reenvia).
    """
    if not isinstance(payload, dict):
        payload = {}
    event = str(payload.get("event") or "").upper()
    payment = payload.get("payment") if isinstance(payload.get("payment"), dict) else {}
    handler = EVENT_HANDLERS.get(event)
    if handler is None:
        logger.info("asaas_webhook_ignored_event", extra={"event": event})
        return {"detail": "ignored", "event": event}

    reference = payment.get("externalReference")
    if not reference:
        raise InvalidWebhookPayload()

    order = _lookup_order(reference)
    if order is None:
        logger.warning("asaas_webhook_unknown_order", extra={"event": event, "external_reference": str(reference)})
        return {"detail": "ignored", "event": event}

    provider_payment_id = str(payment.get("id") or "")
    event_id = webhook_event_id(payload)
    with transaction.atomic():
        record, created = PaymentWebhookEvent.objects.get_or_create(
            provider=PaymentWebhookEvent.PROVIDER_ASAAS,
            external_event_id=event_id,
            defaults={"event_type": event, "raw_payload": payload},
        )
        if not created:
            logger.info("asaas_webhook_duplicate", extra={"event_id": event_id})
            return {"detail": "duplicate", "event": event}

        attempt = _locate_attempt(order, provider_payment_id)
        if attempt is None and provider_payment_id:
            logger.warning(
                "asaas_webhook_unknown_payment",
                extra={"event": event, "order_id": str(order.pk), "provider_payment_id": provider_payment_id},
            )
            return {"detail": "ignored", "event": event}
        if attempt is not None:
            record.attempt = attempt
            record.save(update_fields=["attempt"])
        outcome = handler(order, attempt, event)

    logger.info(
        "asaas_webhook_processed",
        extra={
            "event": event,
            "order_id": str(order.pk),
            "attempt_id": str(attempt.pk) if attempt else None,
            "provider_payment_id": provider_payment_id,
            "outcome": outcome,
        },
    )
    return {"detail": "ok", "event": event, "outcome": outcome}
