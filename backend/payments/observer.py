"""
Observação de uma tentativa de pagamento do lado do cliente.

Três tarefas asyncio rodam juntas: leitura do push (SSE), polling a cada
`poll_interval` segundos e a contagem regressiva até `expires_at`. O estado do
servidor é a fonte da verdade: o fim da contagem local só avisa a interface e o
polling continua até o servidor responder um estado terminal ou até `close()`.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0

TERMINAL_STATUSES = {"confirmed", "expired", "failed"}

STATUS = "status"
CONFIRMED = "confirmed"
COUNTDOWN = "countdown"
LOCAL_EXPIRED = "local_expired"
FINISHED = "finished"


@dataclass
class ObserverEvent:
    kind: str
    status: str
    payload: Optional[dict] = None
    remaining_seconds: Optional[int] = None


def _utcnow():
    return datetime.now(timezone.utc)


def _default_poll_interval():
    if not settings.configured:
        return DEFAULT_POLL_INTERVAL
    return float(getattr(settings, "PAYMENT_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL))


def _parse_expires_at(value):
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class PaymentObserver:
    def __init__(
        self,
        client,
        attempt_id,
        *,
        expires_at=None,
        poll_interval=None,
        use_push=True,
        tick=1.0,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.client = client
        self.attempt_id = str(attempt_id)
        self.expires_at = _parse_expires_at(expires_at)
        self.poll_interval = _default_poll_interval() if poll_interval is None else poll_interval
        self.use_push = use_push
        self.tick = tick
        self.now = now

        self.status = "pending"
        self.last_payload = None
        self.locally_expired = False
        self._confirmed_fired = False
        self._listeners = []
        self._tasks = []
        self._stream = None
        self._done = asyncio.Event()
        self._closed = False

    # --- Ouvintes ---------------------------------------------------------

    def add_listener(self, callback):
        self._listeners.append(callback)

    def remove_listener(self, callback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    @property
    def listener_count(self):
        return len(self._listeners)

    def _emit(self, event):
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("payment_observer_listener_error", extra={"attempt_id": self.attempt_id})

    # --- Ciclo de vida ----------------------------------------------------

    @property
    def done(self):
        return self._done.is_set()

    def start(self):
        if self._tasks or self._closed:
            return self
        self._tasks.append(asyncio.create_task(self._poll_loop()))
        if self.use_push:
            self._tasks.append(asyncio.create_task(self._push_loop()))
        if self.expires_at is not None:
            self._tasks.append(asyncio.create_task(self._countdown_loop()))
        return self

    async def wait(self, timeout=None):
        await asyncio.wait_for(self._done.wait(), timeout)
        return self.status

    async def close(self):
        if self._closed:
            return
        self._closed = True
        self._done.set()
        if self._stream is not None:
            self._stream.close()
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current and not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # --- Estado -----------------------------------------------------------

    def handle_status(self, payload):
        """Aplica uma leitura do servidor (poll ou push). Devolve True se ficou terminal."""
        if self.done or not payload:
            return self.done
        status = payload.get("status")
        if not status:
            return False
        changed = status != self.status or self.last_payload is None
        self.status = status
        self.last_payload = payload
        if changed:
            self._emit(ObserverEvent(STATUS, status, payload))
        if status == "confirmed" and not self._confirmed_fired:
            self._confirmed_fired = True
            self._emit(ObserverEvent(CONFIRMED, status, payload))
        if status in TERMINAL_STATUSES:
            self._finish()
            return True
        return False

    def _finish(self):
        if self._done.is_set():
            return
        self._done.set()
        if self._stream is not None:
            self._stream.close()
        self._emit(ObserverEvent(FINISHED, self.status, self.last_payload))
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

    # --- Tarefas ----------------------------------------------------------

    async def _poll_loop(self):
        while not self.done:
            try:
                payload = await asyncio.to_thread(self.client.get_status, self.attempt_id)
            except requests.RequestException as exc:
                logger.warning(
                    "payment_observer_poll_failed",
                    extra={"attempt_id": self.attempt_id, "error": str(exc)},
                )
            else:
                if self.handle_status(payload):
                    return
            await asyncio.sleep(self.poll_interval)

    async def _push_loop(self):
        try:
            self._stream = await asyncio.to_thread(self.client.open_event_stream, self.attempt_id)
            while not self.done:
                payload = await asyncio.to_thread(self._stream.next_event)
                if payload is None:
                    # Stream encerrado: o polling segue sozinho.
                    return
                if self.handle_status(payload):
                    return
        except (requests.RequestException, ValueError) as exc:
            # ValueError: `data:` que não é JSON. O polling cobre o resto.
            logger.info(
                "payment_observer_push_unavailable",
                extra={"attempt_id": self.attempt_id, "error": str(exc)},
            )

    def remaining_seconds(self):
        if self.expires_at is None:
            return None
        return max(0, int((self.expires_at - self.now()).total_seconds()))

    async def _countdown_loop(self):
        while not self.done:
            remaining = self.remaining_seconds()
            self._emit(ObserverEvent(COUNTDOWN, self.status, remaining_seconds=remaining))
            if remaining <= 0:
                # Só aviso local: nada é escrito no servidor.
                self.locally_expired = True
                self._emit(ObserverEvent(LOCAL_EXPIRED, self.status, remaining_seconds=0))
                return
            await asyncio.sleep(self.tick)


class ObserverRegistry:
    """Um observador por tentativa, compartilhado por quantas telas estiverem ouvindo."""

    def __init__(self, client, **observer_options):
        self.client = client
        self.observer_options = observer_options
        self._observers = {}

    def get(self, attempt_id):
        return self._observers.get(str(attempt_id))

    def acquire(self, attempt_id, listener, *, expires_at=None):
        key = str(attempt_id)
        observer = self._observers.get(key)
        if observer is None:
            observer = PaymentObserver(self.client, key, expires_at=expires_at, **self.observer_options)
            self._observers[key] = observer
            observer.add_listener(listener)
            observer.start()
        else:
            observer.add_listener(listener)
            if observer.last_payload is not None:
                # Quem chega depois recebe o último estado conhecido.
                listener(ObserverEvent(STATUS, observer.status, observer.last_payload))
        return observer

    async def release(self, attempt_id, listener):
        key = str(attempt_id)
        observer = self._observers.get(key)
        if observer is None:
            return
        observer.remove_listener(listener)
        if observer.listener_count == 0:
            del self._observers[key]
            await observer.close()

    async def close_all(self):
        observers = list(self._observers.values())
        self._observers.clear()
        for observer in observers:
            await observer.close()
