"""
Canal de push das mudanças de estado das tentativas (SSE).

O hub é um fan-out em memória por processo: só reduz latência. A cada heartbeat o
stream relê a linha do banco, então um evento perdido (outro worker, reinício)
aparece no máximo um heartbeat depois.
"""
import json
import logging
import queue
import threading
import time
from collections import defaultdict

from .reconciliation import refresh_expiry
from .serializers import attempt_status_payload

logger = logging.getLogger(__name__)


class AttemptHub:
    def __init__(self, maxsize=32):
        self._lock = threading.Lock()
        self._subscribers = defaultdict(set)
        self.maxsize = maxsize

    def subscribe(self, attempt_id):
        q = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._subscribers[str(attempt_id)].add(q)
        return q

    def unsubscribe(self, attempt_id, q):
        with self._lock:
            subs = self._subscribers.get(str(attempt_id))
            if not subs:
                return
            subs.discard(q)
            if not subs:
                del self._subscribers[str(attempt_id)]

    def subscriber_count(self, attempt_id):
        with self._lock:
            return len(self._subscribers.get(str(attempt_id), ()))

    def publish(self, attempt_id, message):
        with self._lock:
            targets = list(self._subscribers.get(str(attempt_id), ()))
        for q in targets:
            try:
                q.put_nowait(message)
            except queue.Full:
                # Leitor lento: o heartbeat relê o banco de qualquer forma.
                logger.debug("realtime_queue_full", extra={"attempt_id": str(attempt_id)})
        return len(targets)


hub = AttemptHub()


def on_attempt_status_changed(sender, attempt, previous, status, source, **kwargs):
    hub.publish(attempt.pk, {"attemptId": str(attempt.pk), "status": status, "source": source})


def format_event(data, event="status"):
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def stream_attempt_status(attempt, *, heartbeat, timeout, clock=time.monotonic, channel=None):
    """
    Gerador SSE: manda o estado atual, depois cada mudança, até a tentativa ficar
    terminal ou o tempo limite do stream acabar.
    """
    channel = channel or hub
    q = channel.subscribe(attempt.pk)
    try:
        refresh_expiry(attempt)
        last = attempt_status_payload(attempt)
        yield format_event(last)
        if attempt.is_terminal:
            return
        deadline = clock() + timeout
        while True:
            remaining = deadline - clock()
            if remaining <= 0:
                yield format_event({"attemptId": str(attempt.pk)}, event="timeout")
                return
            try:
                q.get(timeout=min(heartbeat, remaining))
                pushed = True
            except queue.Empty:
                pushed = False
            attempt.refresh_from_db()
            attempt.order.refresh_from_db(fields=["status", "payment_status"])
            refresh_expiry(attempt)
            current = attempt_status_payload(attempt)
            if current != last:
                last = current
                yield format_event(current)
            elif not pushed:
                yield ": heartbeat\n\n"
            if attempt.is_terminal:
                return
    finally:
        channel.unsubscribe(attempt.pk, q)
