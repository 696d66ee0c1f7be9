"""
Envio best-effort dos avisos de pagamento.

enqueue_* grava as linhas do outbox (dentro da transação de quem chama);
send_notification tenta entregar uma linha. Falhas ficam registradas na própria
linha e nunca sobem para quem confirmou o pagamento.
"""
import logging

import requests
from django.conf import settings
from django.core.mail import send_mail
from django.db.models import F
from django.utils import timezone

from .models import Notification

logger = logging.getLogger(__name__)

WHATSAPP_TIMEOUT_SECONDS = 5


def _confirmation_texts(order):
    user = order.user
    name = getattr(user, "display_name", "") or user.email
    subject = f"Pagamento confirmado - Pedido #{order.short_code}"
    body = (
        f"Olá, {name}!\n"
        f"Recebemos o pagamento de R$ {order.total_amount} do pedido #{order.short_code}.\n"
    )
    if order.fulfillment_status == order.Fulfillment.AWAITING_CUSTOMIZATION:
        body += "O próximo passo é personalizar o seu display. Acesse sua conta para continuar.\n"
    else:
        body += "Seu pedido já entrou em produção. Avisaremos quando for enviado.\n"
    whatsapp = f"Tag na Mão: pagamento do pedido #{order.short_code} confirmado (R$ {order.total_amount}). Obrigado!"
    return subject, body, whatsapp


def enqueue_payment_confirmed(order):
    """
    Cria (uma única vez por canal) os avisos de pagamento confirmado.
    Retorna só as linhas criadas agora.
    """
    order.refresh_from_db(fields=["fulfillment_status", "total_amount"])
    subject, body, whatsapp = _confirmation_texts(order)
    user = order.user
    rows = [
        (Notification.Kind.PAYMENT_CONFIRMED, Notification.Channel.EMAIL, user.email, subject, body),
    ]
    phone = getattr(user, "contact_phone", "")
    if phone:
        rows.append((Notification.Kind.PAYMENT_CONFIRMED, Notification.Channel.WHATSAPP, phone, "", whatsapp))
    admin_phone = getattr(settings, "ADMIN_WHATSAPP", "")
    if admin_phone:
        admin_msg = f"Pedido #{order.short_code} pago: R$ {order.total_amount} ({order.get_payment_method_display()})."
        rows.append((Notification.Kind.ADMIN_PAYMENT_ALERT, Notification.Channel.WHATSAPP, admin_phone, "", admin_msg))

    created = []
    for kind, channel, recipient, subj, text in rows:
        notification, was_created = Notification.objects.get_or_create(
            order=order,
            kind=kind,
            channel=channel,
            defaults={"recipient": recipient, "subject": subj, "body": text},
        )
        if was_created:
            created.append(notification)
    logger.info(
        "notification_enqueued",
        extra={"order_id": str(order.pk), "count": len(created)},
    )
    return created


def _send_email(notification):
    send_mail(
        notification.subject,
        notification.body,
        settings.DEFAULT_FROM_EMAIL,
        [notification.recipient],
        fail_silently=False,
    )


def _send_whatsapp(notification):
    webhook = settings.WHATSAPP_WEBHOOK_URL
    resp = requests.post(
        webhook,
        json={"to": notification.recipient, "message": notification.body},
        timeout=WHATSAPP_TIMEOUT_SECONDS,
    )
    resp.raise_for_status()


def send_notification(notification) -> str:
    """Tenta entregar uma notificação na fila e devolve o status final da linha."""
    if notification.status != Notification.Status.QUEUED:
        return notification.status

    if not notification.recipient:
        return _finish(notification, Notification.Status.SKIPPED, "sem destinatário")
    if notification.channel == Notification.Channel.WHATSAPP and not settings.WHATSAPP_WEBHOOK_URL:
        logger.info(
            "notification_whatsapp_not_configured",
            extra={"notification_id": notification.pk, "to": notification.recipient},
        )
        return _finish(notification, Notification.Status.SKIPPED, "WHATSAPP_WEBHOOK_URL não configurado")

    Notification.objects.filter(pk=notification.pk).update(attempts=F("attempts") + 1)
    notification.attempts += 1
    try:
        if notification.channel == Notification.Channel.EMAIL:
            _send_email(notification)
        else:
            _send_whatsapp(notification)
    except Exception as exc:
        logger.warning(
            "notification_send_failed",
            extra={
                "notification_id": notification.pk,
                "channel": notification.channel,
                "attempts": notification.attempts,
                "error": str(exc),
            },
        )
        exhausted = notification.attempts >= settings.NOTIFICATION_MAX_ATTEMPTS
        status = Notification.Status.FAILED if exhausted else Notification.Status.QUEUED
        return _finish(notification, status, str(exc)[:500])

    logger.info(
        "notification_sent",
        extra={"notification_id": notification.pk, "channel": notification.channel},
    )
    return _finish(notification, Notification.Status.SENT, "")


def _finish(notification, status, error):
    notification.status = status
    notification.last_error = error
    fields = ["status", "last_error"]
    if status == Notification.Status.SENT:
        notification.sent_at = timezone.now()
        fields.append("sent_at")
    notification.save(update_fields=fields)
    return status


def dispatch_queued(ids=None, limit=None):
    qs = Notification.objects.filter(status=Notification.Status.QUEUED).select_related("order")
    if ids is not None:
        qs = qs.filter(pk__in=list(ids))
    if limit:
        qs = qs[:limit]
    results = {}
    for notification in qs:
        status = send_notification(notification)
        results[status] = results.get(status, 0) + 1
    return results
