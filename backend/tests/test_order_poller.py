import pytest
import requests

from kaimono.clients.order_poller import OrderNotReadyError, OrderPoller, backoff_delays


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body or {}
        self.text = str(body)

    def json(self):
        return self._body


class FakeHttp:
    """Replays queued responses per endpoint and records every call."""

    def __init__(self, polls=(), verify=None):
        self.headers = {}
        self.polls = list(polls)
        self.verify = verify
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append(url.rsplit("/", 1)[-1])
        if url.endswith("order-by-session"):
            nxt = self.polls.pop(0) if self.polls else FakeResponse(body={"found": False})
            if isinstance(nxt, Exception):
                raise nxt
            return nxt
        if isinstance(self.verify, Exception):
            raise self.verify
        return self.verify


ORDER = {"id": 7, "order_number": "ORD-1"}


def poller(http, sleeps, attempts=5):
    return OrderPoller("http://shop.test/", "tok", http=http, sleep=sleeps.append, max_attempts=attempts)


def test_backoff_grows_and_caps():
    delays = list(backoff_delays(max_attempts=6))
    assert delays[0] == 0.5
    assert delays[1] == 0.75
    assert delays == sorted(delays)
    assert max(delays) == 3.0
    assert len(delays) == 6


def test_sets_bearer_token():
    http = FakeHttp(polls=[FakeResponse(body={"found": True, "order": ORDER})])
    poller(http, [])
    assert http.headers["Authorization"] == "Bearer tok"


def test_returns_as_soon_as_order_appears():
    sleeps = []
    http = FakeHttp(polls=[
        FakeResponse(body={"found": False}),
        FakeResponse(body={"found": False}),
        FakeResponse(body={"found": True, "order": ORDER}),
    ])
    assert poller(http, sleeps).wait_for_order("cs_1") == ORDER
    assert http.calls == ["order-by-session"] * 3
    assert sleeps == [0.5, 0.75]


def test_falls_back_to_a_single_verify():
    sleeps = []
    http = FakeHttp(verify=FakeResponse(body={"success": True, "created": True, "order": ORDER}))
    assert poller(http, sleeps, attempts=4).wait_for_order("cs_1") == ORDER
    assert http.calls == ["order-by-session"] * 4 + ["verify-payment"]
    assert len(sleeps) == 4


def test_transient_errors_keep_polling():
    http = FakeHttp(polls=[
        requests.ConnectionError("down"),
        FakeResponse(status_code=502),
        FakeResponse(body={"found": True, "order": ORDER}),
    ])
    assert poller(http, []).wait_for_order("cs_1") == ORDER


def test_verify_failure_raises():
    http = FakeHttp(verify=FakeResponse(status_code=400, body={"success": False, "message": "Payment has not been completed"}))
    with pytest.raises(OrderNotReadyError) as exc:
        poller(http, [], attempts=2).wait_for_order("cs_9")
    assert exc.value.session_id == "cs_9"
    assert exc.value.reason == "Payment has not been completed"
    assert http.calls.count("verify-payment") == 1


def test_verify_network_error_raises():
    http = FakeHttp(verify=requests.Timeout("slow"))
    with pytest.raises(OrderNotReadyError):
        poller(http, [], attempts=1).wait_for_order("cs_9")
