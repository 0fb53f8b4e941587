from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from shopfront.core.rate_limiter import RateLimitRule, SlidingWindowLimiter
from shopfront.middleware.rate_limit import (
    BUCKET_AUTH,
    BUCKET_READ,
    BUCKET_WRITE,
    RateLimitMiddleware,
    classify_request,
)


def _app(*, limit: int, enabled: bool = True) -> FastAPI:
    app = FastAPI()
    limiter = SlidingWindowLimiter(
        {bucket: RateLimitRule(limit, 60) for bucket in (BUCKET_AUTH, BUCKET_WRITE, BUCKET_READ)}
    )
    app.add_middleware(RateLimitMiddleware, limiter=limiter, enabled=enabled)

    @app.post("/api/v1/auth/login")
    def login():
        return {"success": True}

    @app.get("/api/v1/users")
    def users():
        return {"success": True}

    return app


@pytest.mark.parametrize(
    ("method", "path", "bucket"),
    [
        ("POST", "/api/v1/auth/login", BUCKET_AUTH),
        ("GET", "/api/v1/auth/profile", BUCKET_AUTH),
        ("PUT", "/api/v1/users/3", BUCKET_WRITE),
        ("delete", "/api/v1/users/3", BUCKET_WRITE),
        ("GET", "/api/v1/me", BUCKET_READ),
        ("OPTIONS", "/api/v1/me", None),
    ],
)
def test_classify_request(method, path, bucket):
    assert classify_request(method, path) == bucket


def test_limit_exceeded_returns_429_with_retry_after():
    with TestClient(_app(limit=2)) as client:
        first = client.post("/api/v1/auth/login")
        second = client.post("/api/v1/auth/login")
        third = client.post("/api/v1/auth/login")

    assert first.status_code == 200
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert second.status_code == 200
    assert third.status_code == 429
    assert int(third.headers["Retry-After"]) >= 1
    assert third.json() == {
        "success": False,
        "message": "Too many authentication attempts, please try again later.",
    }


def test_buckets_are_counted_separately():
    with TestClient(_app(limit=1)) as client:
        assert client.post("/api/v1/auth/login").status_code == 200
        assert client.get("/api/v1/users").status_code == 200
        assert client.post("/api/v1/auth/login").status_code == 429


def test_clients_are_counted_separately():
    with TestClient(_app(limit=1)) as client:
        assert client.get("/api/v1/users", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.get("/api/v1/users", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
        assert client.get("/api/v1/users", headers={"X-Forwarded-For": "10.0.0.1, 172.16.0.1"}).status_code == 429


def test_disabled_limiter_passes_everything_through():
    with TestClient(_app(limit=1, enabled=False)) as client:
        responses = [client.post("/api/v1/auth/login") for _ in range(3)]

    assert [response.status_code for response in responses] == [200, 200, 200]
    assert "X-RateLimit-Limit" not in responses[0].headers


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_sliding_window_forgets_old_hits():
    clock = _Clock()
    limiter = SlidingWindowLimiter({"read": RateLimitRule(1, 10)}, clock=clock)

    assert limiter.check(key="ip", bucket="read").allowed is True
    blocked = limiter.check(key="ip", bucket="read")
    clock.now += 10.5
    after_window = limiter.check(key="ip", bucket="read")

    assert blocked.allowed is False
    assert blocked.retry_after_seconds == 10
    assert after_window.allowed is True


def test_reset_for_one_client_keeps_the_others():
    limiter = SlidingWindowLimiter({"auth": RateLimitRule(1, 60)})
    limiter.check(key="10.0.0.1", bucket="auth")
    limiter.check(key="10.0.0.2", bucket="auth")

    limiter.reset("10.0.0.1")

    assert limiter.check(key="10.0.0.1", bucket="auth").allowed is True
    assert limiter.check(key="10.0.0.2", bucket="auth").allowed is False


def test_idle_clients_are_swept_once_tracking_grows():
    clock = _Clock()
    limiter = SlidingWindowLimiter({"read": RateLimitRule(5, 10)}, clock=clock, max_tracked_keys=2)
    for index in range(3):
        limiter.check(key=f"client-{index}", bucket="read")

    clock.now += 11
    limiter.check(key="fresh", bucket="read")

    assert set(limiter._hits) == {("fresh", "read")}


def test_unknown_bucket_is_a_programming_error():
    limiter = SlidingWindowLimiter({"read": RateLimitRule(1, 10)})

    assert limiter.limits("write") is False
    with pytest.raises(KeyError):
        limiter.check(key="ip", bucket="write")
