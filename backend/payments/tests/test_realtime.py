from django.test import SimpleTestCase, TestCase, override_settings

from payments.realtime import AttemptHub, format_event, hub, stream_attempt_status
from payments.reconciliation import confirm_attempt

from .helpers import make_attempt, make_order, make_user


class AttemptHubTests(SimpleTestCase):
    def test_publish_reaches_only_subscribers_of_the_attempt(self):
        local = AttemptHub()
        first = local.subscribe("a1")
        second = local.subscribe("a1")
        other = local.subscribe("a2")

        self.assertEqual(local.publish("a1", {"status": "confirmed"}), 2)
        self.assertEqual(first.get_nowait(), {"status": "confirmed"})
        self.assertEqual(second.get_nowait(), {"status": "confirmed"})
        self.assertTrue(other.empty())

    def test_unsubscribe_cleans_up(self):
        local = AttemptHub()
        q = local.subscribe("a1")
        local.unsubscribe("a1", q)
        self.assertEqual(local.subscriber_count("a1"), 0)
        self.assertEqual(local.publish("a1", {}), 0)

    def test_full_queue_does_not_block_publisher(self):
        local = AttemptHub(maxsize=1)
        local.subscribe("a1")
        local.publish("a1", {"n": 1})
        self.assertEqual(local.publish("a1", {"n": 2}), 1)

    def test_format_event(self):
        self.assertEqual(format_event({"status": "pending"}), 'event: status\ndata: {"status": "pending"}\n\n')


@override_settings(NOTIFICATION_DISPATCH_MODE="outbox")
class StatusStreamTests(TestCase):
    def setUp(self):
        self.order = make_order(make_user())
        self.attempt = make_attempt(self.order)

    def test_pushes_confirmation_and_stops(self):
        stream = stream_attempt_status(self.attempt, heartbeat=5, timeout=60)
        first = next(stream)
        self.assertIn('"status": "pending"', first)
        self.assertEqual(hub.subscriber_count(self.attempt.pk), 1)

        with self.captureOnCommitCallbacks(execute=True):
            confirm_attempt(self.attempt.__class__.objects.get(pk=self.attempt.pk), source="admin")

        second = next(stream)
        self.assertIn('"status": "confirmed"', second)
        self.assertIn('"paymentStatus": "confirmed"', second)
        with self.assertRaises(StopIteration):
            next(stream)
        self.assertEqual(hub.subscriber_count(self.attempt.pk), 0)

    def test_heartbeat_when_nothing_changes(self):
        ticks = iter([0, 0, 2])
        stream = stream_attempt_status(self.attempt, heartbeat=0.01, timeout=1, clock=lambda: next(ticks))
        next(stream)
        self.assertEqual(next(stream), ": heartbeat\n\n")
        self.assertIn("event: timeout", next(stream))
        stream.close()
