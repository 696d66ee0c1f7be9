import re
from datetime import datetime, timedelta, timezone as dt_timezone

from django.test import SimpleTestCase

from payments.pix import DirectPixIssuer, to_base36


class DirectPixIssuerTests(SimpleTestCase):
    def setUp(self):
        self.issued_at = datetime(2026, 3, 10, 14, 0, tzinfo=dt_timezone.utc)
        self.issuer = DirectPixIssuer(clock=lambda: self.issued_at)

    def test_expires_exactly_thirty_minutes_after_issue(self):
        charge = self.issuer.issue("order-1", "59.90")
        self.assertEqual(charge.issued_at, self.issued_at)
        self.assertEqual(charge.expires_at - charge.issued_at, timedelta(minutes=30))

    def test_pix_key_is_32_lowercase_alphanumeric(self):
        charge = self.issuer.issue("order-1", "59.90")
        self.assertRegex(charge.pix_key, r"^[a-z0-9]{32}$")

    def test_transaction_id_format(self):
        charge = self.issuer.issue("order-1", "59.90")
        millis = int(self.issued_at.timestamp() * 1000)
        prefix = "PIX" + to_base36(millis).upper()
        self.assertTrue(charge.transaction_id.startswith(prefix))
        self.assertTrue(re.fullmatch(r"PIX[0-9A-Z]+", charge.transaction_id))
        self.assertEqual(len(charge.transaction_id), len(prefix) + 8)

    def test_transaction_ids_do_not_collide(self):
        ids = {self.issuer.issue("order-1", "59.90").transaction_id for _ in range(200)}
        self.assertEqual(len(ids), 200)

    def test_base36(self):
        self.assertEqual(to_base36(0), "0")
        self.assertEqual(to_base36(35), "z")
        self.assertEqual(to_base36(36), "10")
