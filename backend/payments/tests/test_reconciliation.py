from datetime import timedelta
from io import StringIO
from unittest import mock

from django.core import mail
from django.core.management import call_command
from django.test import TestCase, override_settings

from notifications.models import Notification
from orders.models import Order
from payments.models import PaymentAttempt
from payments.reconciliation import (
    confirm_attempt,
    expire_attempt,
    fail_attempt,
    refresh_expiry,
    transition,
)
from payments.serializers import attempt_status_payload
from payments.signals import attempt_status_changed

from .helpers import make_attempt, make_order, make_user


Status = PaymentAttempt.Status


@override_settings(NOTIFICATION_DISPATCH_MODE="outbox")
class TransitionTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.order = make_order(self.user)
        self.attempt = make_attempt(self.order)

    def test_confirm_marks_order_paid_and_enqueues_once(self):
        first = confirm_attempt(self.attempt, source="test")
        self.assertTrue(first.applied)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAID)
        self.assertEqual(self.order.payment_status, Order.PaymentStatus.CONFIRMED)
        self.assertEqual(self.order.fulfillment_status, Order.Fulfillment.PROCESSING)
        self.assertIsNotNone(PaymentAttempt.objects.get(pk=self.attempt.pk).confirmed_at)

        second = confirm_attempt(self.attempt, source="test")
        self.assertFalse(second.applied)
        self.assertTrue(second.idempotent)
        self.assertEqual(Notification.objects.filter(order=self.order).count(), 1)

    def test_exactly_one_of_many_stale_copies_applies(self):
        copies = [PaymentAttempt.objects.get(pk=self.attempt.pk) for _ in range(6)]
        for copy in copies:
            self.assertEqual(copy.status, Status.PENDING)

        results = [confirm_attempt(copy, source="webhook") for copy in copies]

        self.assertEqual(sum(1 for r in results if r.applied), 1)
        self.assertEqual(sum(1 for r in results if r.idempotent), 5)
        self.assertEqual(Notification.objects.filter(order=self.order).count(), 1)

    def test_different_terminal_is_stale_and_not_applied(self):
        confirm_attempt(self.attempt, source="webhook")
        late = PaymentAttempt.objects.get(pk=self.attempt.pk)
        with self.assertLogs("payments.reconciliation", level="WARNING") as logs:
            result = fail_attempt(late, source="webhook", reason="deleted")
        self.assertIsNotNone(result.stale)
        self.assertEqual(result.stale.current, Status.CONFIRMED)
        self.assertEqual(result.stale.proposed, Status.FAILED)
        self.assertIn("payment_stale_transition", logs.output[0])
        self.assertEqual(PaymentAttempt.objects.get(pk=self.attempt.pk).status, Status.CONFIRMED)

    def test_confirmation_after_expiry_does_not_resurrect(self):
        expire_attempt(self.attempt)
        result = confirm_attempt(PaymentAttempt.objects.get(pk=self.attempt.pk), source="webhook")
        self.assertIsNotNone(result.stale)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.AWAITING_PAYMENT)

    def test_rejects_non_terminal_target(self):
        with self.assertRaises(ValueError):
            transition(self.attempt, Status.PENDING, source="test")

    def test_failure_reason_is_recorded(self):
        fail_attempt(self.attempt, source="webhook", reason="refunded")
        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, Status.FAILED)
        self.assertEqual(self.attempt.failure_reason, "refunded")

    def test_status_change_is_published_after_commit(self):
        received = []

        def receiver(sender, attempt, previous, status, source, **kwargs):
            received.append((str(attempt.pk), previous, status, source))

        attempt_status_changed.connect(receiver)
        self.addCleanup(attempt_status_changed.disconnect, receiver)

        with self.captureOnCommitCallbacks(execute=True):
            confirm_attempt(self.attempt, source="admin")
            confirm_attempt(self.attempt, source="admin")

        self.assertEqual(received, [(str(self.attempt.pk), Status.PENDING, Status.CONFIRMED, "admin")])

    def test_business_display_order_waits_for_customization(self):
        self.order.items.create(name="Display Empresa", product_type="business_display", unit_price="10.00")
        confirm_attempt(self.attempt, source="webhook")
        self.order.refresh_from_db()
        self.assertEqual(self.order.fulfillment_status, Order.Fulfillment.AWAITING_CUSTOMIZATION)


class ExpiryTests(TestCase):
    def setUp(self):
        self.user = make_user()
        self.order = make_order(self.user)

    def test_read_after_deadline_expires(self):
        attempt = make_attempt(self.order, expires_in=timedelta(seconds=-1))
        refresh_expiry(attempt)
        self.assertEqual(attempt.status, Status.EXPIRED)
        self.assertEqual(PaymentAttempt.objects.get(pk=attempt.pk).status, Status.EXPIRED)

    def test_read_before_deadline_keeps_pending(self):
        attempt = make_attempt(self.order)
        refresh_expiry(attempt)
        self.assertEqual(PaymentAttempt.objects.get(pk=attempt.pk).status, Status.PENDING)

    def test_confirmation_after_deadline_but_before_expiry_write_wins(self):
        attempt = make_attempt(self.order, expires_in=timedelta(seconds=-1))
        result = confirm_attempt(attempt, source="webhook")
        self.assertTrue(result.applied)
        refresh_expiry(attempt)
        self.assertEqual(PaymentAttempt.objects.get(pk=attempt.pk).status, Status.CONFIRMED)

    def test_read_racing_confirmation_reports_fresh_order(self):
        attempt = make_attempt(self.order, expires_in=timedelta(seconds=-1))
        stale_copy = PaymentAttempt.objects.select_related("order").get(pk=attempt.pk)
        self.assertEqual(stale_copy.order.status, Order.Status.AWAITING_PAYMENT)

        confirm_attempt(PaymentAttempt.objects.get(pk=attempt.pk), source="webhook")
        refresh_expiry(stale_copy)

        payload = attempt_status_payload(stale_copy)
        self.assertEqual(payload["status"], Status.CONFIRMED)
        self.assertEqual(payload["orderStatus"], Order.Status.PAID)
        self.assertEqual(payload["paymentStatus"], Order.PaymentStatus.CONFIRMED)

    def test_sweep_command_expires_overdue_attempts(self):
        make_attempt(self.order, expires_in=timedelta(minutes=-5))
        other = make_order(make_user("outro@example.com"))
        fresh = make_attempt(other)
        out = StringIO()
        call_command("expire_payment_attempts", stdout=out)
        self.assertIn("Tentativas expiradas: 1", out.getvalue())
        self.assertEqual(PaymentAttempt.objects.get(pk=fresh.pk).status, Status.PENDING)


@override_settings(NOTIFICATION_DISPATCH_MODE="inline")
class ConfirmationNotificationTests(TestCase):
    def setUp(self):
        self.user = make_user(whatsapp="69999990000", full_name="Ana")
        self.order = make_order(self.user)
        self.attempt = make_attempt(self.order)

    @override_settings(WHATSAPP_WEBHOOK_URL="https://hooks.example.com/wa", ADMIN_WHATSAPP="")
    @mock.patch("notifications.dispatch.requests.post")
    def test_notifications_are_sent_after_commit(self, post):
        post.return_value.raise_for_status.return_value = None
        with self.captureOnCommitCallbacks(execute=True):
            confirm_attempt(self.attempt, source="webhook")

        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(self.order.short_code, mail.outbox[0].subject)
        post.assert_called_once()
        self.assertEqual(post.call_args.kwargs["json"]["to"], "69999990000")
        statuses = set(Notification.objects.filter(order=self.order).values_list("status", flat=True))
        self.assertEqual(statuses, {Notification.Status.SENT})

    @override_settings(WHATSAPP_WEBHOOK_URL="https://hooks.example.com/wa", ADMIN_WHATSAPP="")
    @mock.patch("notifications.dispatch.requests.post", side_effect=ConnectionError("down"))
    def test_send_failure_does_not_undo_confirmation(self, post):
        with self.captureOnCommitCallbacks(execute=True):
            result = confirm_attempt(self.attempt, source="webhook")
        self.assertTrue(result.applied)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAID)
        whatsapp = Notification.objects.get(order=self.order, channel=Notification.Channel.WHATSAPP)
        self.assertEqual(whatsapp.status, Notification.Status.QUEUED)
        self.assertEqual(whatsapp.attempts, 1)
        self.assertIn("down", whatsapp.last_error)
