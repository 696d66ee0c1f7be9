from io import StringIO
from unittest import mock

from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings

from notifications.dispatch import dispatch_queued, enqueue_payment_confirmed, send_notification
from notifications.models import Notification
from payments.tests.helpers import make_order, make_user


@override_settings(ADMIN_WHATSAPP="", WHATSAPP_WEBHOOK_URL="", NOTIFICATION_MAX_ATTEMPTS=2)
class NotificationDispatchTests(TestCase):
    def setUp(self):
        self.user = make_user(full_name="Ana Souza", whatsapp="69999990000")
        self.order = make_order(self.user)
        self.order.mark_paid()
        self.order.refresh_from_db()

    def test_enqueue_is_once_per_channel(self):
        created = enqueue_payment_confirmed(self.order)
        self.assertEqual({n.channel for n in created}, {"email", "whatsapp"})
        self.assertEqual(enqueue_payment_confirmed(self.order), [])
        self.assertEqual(Notification.objects.filter(order=self.order).count(), 2)

    @override_settings(ADMIN_WHATSAPP="69988887777")
    def test_admin_alert_is_enqueued_when_configured(self):
        enqueue_payment_confirmed(self.order)
        alert = Notification.objects.get(kind=Notification.Kind.ADMIN_PAYMENT_ALERT)
        self.assertEqual(alert.recipient, "69988887777")
        self.assertIn(self.order.short_code, alert.body)

    def test_email_is_sent(self):
        enqueue_payment_confirmed(self.order)
        email = Notification.objects.get(channel=Notification.Channel.EMAIL)
        self.assertEqual(send_notification(email), Notification.Status.SENT)
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].to, [self.user.email])
        self.assertIn("Ana Souza", mail.outbox[0].body)
        email.refresh_from_db()
        self.assertIsNotNone(email.sent_at)

    def test_whatsapp_without_webhook_is_skipped(self):
        enqueue_payment_confirmed(self.order)
        whatsapp = Notification.objects.get(channel=Notification.Channel.WHATSAPP)
        self.assertEqual(send_notification(whatsapp), Notification.Status.SKIPPED)

    @override_settings(WHATSAPP_WEBHOOK_URL="https://hooks.example.com/wa")
    @mock.patch("notifications.dispatch.requests.post", side_effect=ConnectionError("timeout"))
    def test_failures_are_retried_until_limit(self, post):
        enqueue_payment_confirmed(self.order)
        whatsapp = Notification.objects.get(channel=Notification.Channel.WHATSAPP)
        self.assertEqual(send_notification(whatsapp), Notification.Status.QUEUED)
        self.assertEqual(send_notification(whatsapp), Notification.Status.FAILED)
        whatsapp.refresh_from_db()
        self.assertEqual(whatsapp.attempts, 2)
        self.assertEqual(post.call_count, 2)

    def test_dispatch_command_processes_queue(self):
        enqueue_payment_confirmed(self.order)
        out = StringIO()
        call_command("dispatch_notifications", stdout=out)
        self.assertIn("sent: 1", out.getvalue())
        self.assertIn("skipped: 1", out.getvalue())
        self.assertEqual(dispatch_queued(), {})
