from datetime import timedelta

from django.test import override_settings
from rest_framework.test import APITestCase

from orders.models import Order
from payments.models import PaymentAttempt
from payments.reconciliation import expire_attempt

from .helpers import make_attempt, make_order, make_user


class AdminConfirmTests(APITestCase):
    def setUp(self):
        self.admin = make_user("admin@tagnamao.com.br", is_staff=True)
        self.customer = make_user()
        self.order = make_order(self.customer)
        self.attempt = make_attempt(self.order, method=Order.PaymentMethod.PIX_DIRECT, provider_transaction_id="PIXABC")
        self.url = f"/api/payments/attempts/{self.attempt.pk}/confirm"

    def test_admin_confirms_direct_pix(self):
        self.client.force_authenticate(self.admin)
        res = self.client.post(self.url)
        self.assertEqual(res.status_code, 200, res.data)
        self.assertEqual(res.data["status"], "confirmed")
        self.assertFalse(res.data["idempotent"])
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAID)

        again = self.client.post(self.url)
        self.assertEqual(again.status_code, 200)
        self.assertTrue(again.data["idempotent"])

    def test_customer_cannot_confirm(self):
        self.client.force_authenticate(self.customer)
        res = self.client.post(self.url)
        self.assertEqual(res.status_code, 403)
        self.assertEqual(PaymentAttempt.objects.get(pk=self.attempt.pk).status, PaymentAttempt.Status.PENDING)

    def test_expired_attempt_conflicts(self):
        expire_attempt(self.attempt)
        self.client.force_authenticate(self.admin)
        res = self.client.post(self.url)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(res.data["status"], "expired")

    def test_gateway_attempt_cannot_be_confirmed_manually(self):
        other_order = make_order(self.customer)
        gateway_attempt = make_attempt(other_order, method=Order.PaymentMethod.GATEWAY_BOLETO)
        self.client.force_authenticate(self.admin)
        res = self.client.post(f"/api/payments/attempts/{gateway_attempt.pk}/confirm")
        self.assertEqual(res.status_code, 400)


class AttemptStatusEndpointTests(APITestCase):
    def setUp(self):
        self.customer = make_user()
        self.order = make_order(self.customer)
        self.attempt = make_attempt(self.order)
        self.url = f"/api/payments/attempts/{self.attempt.pk}/status"

    def test_owner_reads_status(self):
        self.client.force_authenticate(self.customer)
        res = self.client.get(self.url)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["attemptId"], str(self.attempt.pk))
        self.assertEqual(res.data["status"], "pending")
        self.assertEqual(res.data["paymentStatus"], "pending")
        self.assertIsNone(res.data["confirmedAt"])

    def test_other_customer_is_forbidden(self):
        self.client.force_authenticate(make_user("curioso@example.com"))
        res = self.client.get(self.url)
        self.assertEqual(res.status_code, 403)

    def test_admin_read_applies_expiry(self):
        PaymentAttempt.objects.filter(pk=self.attempt.pk).update(expires_at=self.attempt.created_at - timedelta(seconds=1))
        self.client.force_authenticate(make_user("admin@tagnamao.com.br", is_staff=True))
        res = self.client.get(self.url)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.data["status"], "expired")

    def test_unknown_attempt_is_404(self):
        self.client.force_authenticate(self.customer)
        res = self.client.get("/api/payments/attempts/00000000-0000-0000-0000-000000000000/status")
        self.assertEqual(res.status_code, 404)


class EventStreamEndpointTests(APITestCase):
    def setUp(self):
        self.customer = make_user()
        self.order = make_order(self.customer)
        self.attempt = make_attempt(self.order)
        self.client.force_authenticate(self.customer)

    def test_terminal_attempt_streams_single_event(self):
        expire_attempt(self.attempt)
        res = self.client.get(
            f"/api/payments/attempts/{self.attempt.pk}/events",
            HTTP_ACCEPT="text/event-stream",
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res["Content-Type"], "text/event-stream")
        body = b"".join(res.streaming_content).decode()
        self.assertIn("event: status", body)
        self.assertIn('"status": "expired"', body)

    @override_settings(PAYMENT_STREAM_TIMEOUT_SECONDS=0)
    def test_stream_ends_on_timeout(self):
        res = self.client.get(f"/api/payments/attempts/{self.attempt.pk}/events")
        body = b"".join(res.streaming_content).decode()
        self.assertIn('"status": "pending"', body)
        self.assertIn("event: timeout", body)


class PaymentConfigEndpointTests(APITestCase):
    @override_settings(ASAAS_API_KEY="$aact_key", ASAAS_WEBHOOK_TOKEN="tok")
    def test_admin_sees_configuration_health(self):
        self.client.force_authenticate(make_user("admin@tagnamao.com.br", is_staff=True))
        res = self.client.get("/api/payments/config")
        self.assertEqual(res.status_code, 200)
        self.assertTrue(res.data["asaas_api_key_configured"])
        self.assertTrue(res.data["webhook_token_configured"])
        self.assertNotIn("$aact_key", str(res.data))

    def test_customer_is_forbidden(self):
        self.client.force_authenticate(make_user())
        res = self.client.get("/api/payments/config")
        self.assertEqual(res.status_code, 403)
