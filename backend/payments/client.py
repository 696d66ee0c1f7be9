"""
Cliente HTTP da API de pagamentos (usado pelo observador e por integrações/scripts).
"""
import json
import logging

import requests

logger = logging.getLogger(__name__)


class EventStream:
    """Leitura bloqueante de um stream SSE; `close()` pode ser chamado de outra thread."""

    def __init__(self, response):
        self.response = response
        self._lines = response.iter_lines(decode_unicode=True)
        self.closed = False

    def next_event(self):
        """Devolve o próximo `data:` de um evento `status`, ou None quando o stream acaba."""
        event = "message"
        data_lines = []
        for line in self._lines:
            if self.closed:
                return None
            if line is None:
                continue
            if line == "":
                if data_lines and event == "status":
                    return json.loads("\n".join(data_lines))
                if event == "timeout":
                    return None
                event, data_lines = "message", []
                continue
            if line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            value = value[1:] if value.startswith(" ") else value
            if field == "event":
                event = value
            elif field == "data":
                data_lines.append(value)
        return None

    def close(self):
        self.closed = True
        self.response.close()


class CheckoutAPIClient:
    def __init__(self, base_url, access_token=None, timeout=10, session=None):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, **extra):
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        headers.update(extra)
        return headers

    def create_attempt(self, payload):
        resp = self.session.post(
            f"{self.base_url}/api/payments/attempts",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def get_status(self, attempt_id):
        resp = self.session.get(
            f"{self.base_url}/api/payments/attempts/{attempt_id}/status",
            headers=self._headers(),
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def open_event_stream(self, attempt_id, read_timeout=60):
        resp = self.session.get(
            f"{self.base_url}/api/payments/attempts/{attempt_id}/events",
            headers=self._headers(Accept="text/event-stream"),
            stream=True,
            timeout=(self.timeout, read_timeout),
        )
        resp.raise_for_status()
        return EventStream(resp)
