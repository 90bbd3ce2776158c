"""Tests for the trigger-endpoint rate limiter."""

import pytest
from starlette.requests import Request
from starlette.responses import PlainTextResponse

from shopflow.config import settings
from shopflow.middleware.rate_limit import RateLimitMiddleware, is_limited


class FakePipeline:
    """Stands in for a redis pipeline; zcard reports a fixed request count."""

    def __init__(self, count: int):
        self.count = count

    def zremrangebyscore(self, *args):
        return self

    def zadd(self, *args):
        return self

    def zcard(self, *args):
        return self

    def expire(self, *args):
        return self

    async def execute(self):
        return [0, 1, self.count, True]


class FakeRedis:
    def __init__(self, count: int):
        self.count = count

    def pipeline(self):
        return FakePipeline(self.count)


def make_request(method: str = "POST", path: str = "/api/pipeline/run") -> Request:
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "query_string": b"",
        "headers": [],
        "client": ("10.0.0.7", 5123),
    })


async def ok(request):
    return PlainTextResponse("ok")


class TestIsLimited:
    @pytest.mark.parametrize("method,path", [
        ("POST", "/api/pipeline/run"),
        ("POST", "/api/webhooks/pipeline"),
        ("POST", "/api/marketing/post-now"),
        ("POST", "/api/marketing/post-all"),
    ])
    def test_trigger_posts_are_limited(self, method, path):
        assert is_limited(method, path)

    @pytest.mark.parametrize("method,path", [
        ("GET", "/api/pipeline/run"),
        ("GET", "/api/pipeline/status"),
        ("POST", "/api/marketing/content/1/approve"),
    ])
    def test_other_requests_pass(self, method, path):
        assert not is_limited(method, path)


@pytest.mark.asyncio
class TestRateLimitMiddleware:
    async def test_over_limit_returns_429(self):
        middleware = RateLimitMiddleware(ok)
        middleware.limit = 2
        middleware._redis = FakeRedis(count=3)

        resp = await middleware.dispatch(make_request(), ok)

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "60"

    async def test_under_limit_sets_headers(self):
        middleware = RateLimitMiddleware(ok)
        middleware.limit = 5
        middleware._redis = FakeRedis(count=2)

        resp = await middleware.dispatch(make_request(), ok)

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Remaining"] == "3"

    async def test_fails_open_without_redis(self, monkeypatch):
        middleware = RateLimitMiddleware(ok)
        middleware.limit = 0

        monkeypatch.setattr(settings, "redis_url", "redis://127.0.0.1:1/0")

        resp = await middleware.dispatch(make_request(), ok)

        assert resp.status_code == 200
        assert "X-RateLimit-Limit" not in resp.headers

    async def test_unlimited_paths_skip_redis(self):
        middleware = RateLimitMiddleware(ok)
        middleware._redis = FakeRedis(count=1000)
        middleware.limit = 1

        resp = await middleware.dispatch(make_request("GET", "/api/pipeline/status"), ok)

        assert resp.status_code == 200
