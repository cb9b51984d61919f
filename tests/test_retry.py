"""再試行状態機械のテスト。"""

from __future__ import annotations

import json
import time
from collections.abc import Callable

import httpx
import pytest

from themehttp import (
    ThemeClient,
    ThemeHttpConnectivityError,
    ThemeHttpRetryExhaustedError,
    ThemeHttpSerializationError,
)


class RecordingLimiter:
    """wait/reset_after の呼び出しを記録するリミッタ。"""

    def __init__(self) -> None:
        self.waits = 0
        self.resets: list[float] = []

    def wait(self) -> float:
        self.waits += 1
        return 0.0

    def reset_after(self, seconds: float) -> None:
        self.resets.append(seconds)


@pytest.fixture
def sleeps(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr(time, "sleep", recorded.append)
    return recorded


def _client(
    handler: Callable[[httpx.Request], httpx.Response],
    limiter: RecordingLimiter,
) -> ThemeClient:
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return ThemeClient(
        "shop.example.com",
        "secret-token",
        limiter=limiter,
        http_client=http_client,
    )


@pytest.mark.parametrize("status", [100, 200, 201, 204, 301, 304, 400, 404, 422, 428])
def test_success_range_returns_without_retry(status: int, sleeps: list[float]) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(status_code=status, request=request)

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        response = client.get("/admin/themes.json")

    assert response.status_code == status
    assert calls["n"] == 1
    assert limiter.waits == 1
    assert sleeps == []


def test_429_pauses_limiter_without_spending_retry_budget(sleeps: list[float]) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] <= 7:
            return httpx.Response(
                status_code=429,
                headers={"Retry-After": "2.5"},
                request=request,
            )
        return httpx.Response(status_code=200, json={"ok": True}, request=request)

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        response = client.get("/admin/themes.json")

    assert response.status_code == 200
    assert calls["n"] == 8
    assert limiter.waits == 8
    assert limiter.resets == [2.5] * 7
    assert sleeps == []


@pytest.mark.parametrize("header", [None, "", "soon", "-3", "nan"])
def test_429_with_unparsable_retry_after_resets_for_zero(
    header: str | None,
    sleeps: list[float],
) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            headers = {} if header is None else {"Retry-After": header}
            return httpx.Response(status_code=429, headers=headers, request=request)
        return httpx.Response(status_code=200, request=request)

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        client.get("/admin/themes.json")

    assert limiter.resets == [0.0]
    assert sleeps == []


def test_server_errors_exhaust_retries_with_linear_backoff(sleeps: list[float]) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(status_code=503, request=request)

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        with pytest.raises(ThemeHttpRetryExhaustedError) as excinfo:
            client.get("/admin/themes.json")

    assert calls["n"] == 6
    assert limiter.waits == 6
    assert sleeps == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert str(excinfo.value) == "request failed after 5 retries"
    assert excinfo.value.max_retry == 5
    assert excinfo.value.last_status == 503


def test_transport_errors_exhaust_retries(sleeps: list[float]) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("connection reset by peer", request=request)

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        with pytest.raises(ThemeHttpRetryExhaustedError) as excinfo:
            client.delete("/admin/themes/1.json")

    assert calls["n"] == 6
    assert sleeps == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)
    assert excinfo.value.last_status is None


def test_transient_error_then_success(sleeps: list[float]) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        if calls["n"] == 2:
            return httpx.Response(status_code=500, request=request)
        return httpx.Response(status_code=200, request=request)

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        response = client.get("/admin/themes.json")

    assert response.status_code == 200
    assert calls["n"] == 3
    assert sleeps == [1.0, 2.0]


def test_429_between_failures_does_not_advance_backoff(sleeps: list[float]) -> None:
    statuses = iter([500, 429, 429, 502, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=next(statuses), request=request)

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        response = client.get("/admin/themes.json")

    assert response.status_code == 200
    assert sleeps == [1.0, 2.0]
    assert limiter.waits == 5


def test_host_resolution_failure_is_not_retried(sleeps: list[float]) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError(
            "dial tcp: lookup shop.example.com: no such host",
            request=request,
        )

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        with pytest.raises(ThemeHttpConnectivityError) as excinfo:
            client.get("/admin/themes.json")

    assert calls["n"] == 1
    assert sleeps == []
    assert "DNS problem" in str(excinfo.value)
    assert excinfo.value.origin == "transport"


def test_body_is_reencoded_for_every_attempt(sleeps: list[float]) -> None:
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.read())
        if len(bodies) < 4:
            return httpx.Response(status_code=500, request=request)
        return httpx.Response(status_code=201, request=request)

    payload = {"asset": {"key": "templates/index.liquid", "value": "<h1>ようこそ</h1>"}}
    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        response = client.put("/admin/themes/1/assets.json", payload)

    expected = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    assert response.status_code == 201
    assert bodies == [expected] * 4
    assert sleeps == [1.0, 2.0, 3.0]


@pytest.mark.parametrize(
    ("body", "cause"),
    [
        ({"theme": object()}, TypeError),
        ({"theme": {"weight": float("nan")}}, ValueError),
        ({"theme": {"weight": float("inf")}}, ValueError),
        ({"theme": {"weight": float("-inf")}}, ValueError),
    ],
)
def test_unserializable_body_fails_before_sending(
    body: object,
    cause: type[Exception],
    sleeps: list[float],
) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(status_code=200, request=request)

    limiter = RecordingLimiter()
    with _client(handler, limiter) as client:
        with pytest.raises(ThemeHttpSerializationError) as excinfo:
            client.post("/admin/themes.json", body)

    assert calls["n"] == 0
    assert limiter.waits == 0
    assert sleeps == []
    assert isinstance(excinfo.value.__cause__, cause)


def test_zero_max_retry_sends_once(sleeps: list[float]) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(status_code=500, request=request)

    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    with ThemeClient(
        "shop.example.com",
        "secret-token",
        limiter=RecordingLimiter(),
        http_client=http_client,
        max_retry=0,
    ) as client:
        with pytest.raises(ThemeHttpRetryExhaustedError, match="after 0 retries"):
            client.get("/admin/themes.json")

    assert calls["n"] == 1
    assert sleeps == []
