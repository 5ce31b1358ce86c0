"""
Client-side wait for the order behind a Stripe checkout session.

After Stripe redirects back, the webhook may not have created the order yet.
The poller asks ``order-by-session`` with growing delays and, when the budget
runs out, makes a single ``verify-payment`` call which creates the order from
the paid session if it is still missing.
"""
import logging
import time
from typing import Callable, Dict, Iterator, Optional

import requests

log = logging.getLogger(__name__)


class OrderNotReadyError(Exception):
    def __init__(self, session_id: str, reason: str):
        super().__init__(f"order for session {session_id} not available: {reason}")
        self.session_id = session_id
        self.reason = reason


def backoff_delays(
    max_attempts: int = 20,
    initial: float = 0.5,
    factor: float = 1.5,
    maximum: float = 3.0,
) -> Iterator[float]:
    for n in range(1, max_attempts + 1):
        yield min(initial * factor ** (n - 1), maximum)


class OrderPoller:
    def __init__(
        self,
        base_url: str,
        token: str,
        http: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = 20,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.http.headers.update({"Authorization": f"Bearer {token}"})
        self.sleep = sleep
        self.max_attempts = max_attempts
        self.timeout = timeout

    def _get(self, path: str, session_id: str) -> requests.Response:
        return self.http.get(
            f"{self.base_url}/api/checkout/{path}",
            params={"session_id": session_id},
            timeout=self.timeout,
        )

    def poll_once(self, session_id: str) -> Optional[Dict]:
        r = self._get("order-by-session", session_id)
        if r.status_code != 200:
            log.warning("order-by-session returned %s for %s", r.status_code, session_id)
            return None
        body = r.json()
        return body.get("order") if body.get("found") else None

    def verify(self, session_id: str) -> Dict:
        r = self._get("verify-payment", session_id)
        if r.status_code != 200:
            try:
                message = r.json().get("message")
            except ValueError:
                message = r.text
            raise OrderNotReadyError(session_id, message or f"HTTP {r.status_code}")
        order = r.json().get("order")
        if not order:
            raise OrderNotReadyError(session_id, "verify-payment returned no order")
        return order

    def wait_for_order(self, session_id: str) -> Dict:
        for attempt, delay in enumerate(backoff_delays(self.max_attempts), start=1):
            try:
                order = self.poll_once(session_id)
            except requests.RequestException as e:
                log.warning("poll %d for %s failed: %s", attempt, session_id, e)
                order = None
            if order:
                log.info("order %s found after %d poll(s)", order.get("order_number"), attempt)
                return order
            self.sleep(delay)

        log.info("no order after %d polls; verifying session %s directly", self.max_attempts, session_id)
        try:
            return self.verify(session_id)
        except requests.RequestException as e:
            raise OrderNotReadyError(session_id, str(e))
