"""Integration tests for internal endpoints, internal JWT and rate limiting."""
from __future__ import annotations

from unittest.mock import patch

import jwt

from dappyboard.api.middleware import INTERNAL_TOKEN_ISSUER, create_internal_token
from dappyboard.config import settings
from dappyboard.monitoring.health_checks import HealthStatus


class TestCleanupEndpoint:
    async def test_cleanup(self, client, insert_rows, internal_token_header):
        await insert_rows(("Ada", 10_000, 0), ("Ada", 50_000, 0), ("Ada", 30_000, 0))
        r = await client.post("/api/internal/leaderboard/Ada/cleanup", headers=internal_token_header)
        assert r.status_code == 200
        assert r.json() == {"name": "Ada", "removed": 2}

        r = await client.get("/api/leaderboard")
        assert [e["score"] for e in r.json()] == [50_000]

    def test_minted_token_claims(self):
        token = create_internal_token()
        claims = jwt.decode(
            token, settings.internal_jwt_secret, algorithms=["HS256"], issuer=INTERNAL_TOKEN_ISSUER
        )
        assert claims["exp"] - claims["iat"] == settings.internal_jwt_expiry_seconds

    async def test_missing_token(self, client):
        r = await client.post("/api/internal/leaderboard/Ada/cleanup")
        assert r.status_code == 401

    async def test_expired_token(self, client, expired_token_header):
        r = await client.post("/api/internal/leaderboard/Ada/cleanup", headers=expired_token_header)
        assert r.status_code == 401
        assert "expired" in r.json()["detail"].lower()

    async def test_wrong_issuer(self, client, foreign_issuer_header):
        r = await client.post("/api/internal/leaderboard/Ada/cleanup", headers=foreign_issuer_header)
        assert r.status_code == 401

    async def test_garbage_token(self, client):
        r = await client.post(
            "/api/internal/leaderboard/Ada/cleanup",
            headers={"X-Internal-Token": "not.a.valid.jwt"},
        )
        assert r.status_code == 401


class TestHealthAndMetrics:
    async def test_health_healthy(self, client):
        async def _db_ok():
            return HealthStatus("database", True, latency_ms=1.0)

        with patch("dappyboard.monitoring.health_checks.check_database", _db_ok):
            r = await client.get("/api/health")
        assert r.status_code == 200
        body = r.json()
        assert body["status"] == "healthy"
        assert {c["component"] for c in body["components"]} == {"database", "redis"}

    async def test_health_degraded(self, client):
        async def _db_down():
            return HealthStatus("database", False, message="connection refused")

        with patch("dappyboard.monitoring.health_checks.check_database", _db_down):
            r = await client.get("/api/health")
        assert r.json()["status"] == "degraded"

    async def test_metrics(self, client):
        await client.post("/api/scores", json={"name": "A", "score": 500, "dappies": 0})
        r = await client.get("/api/metrics")
        assert r.status_code == 200
        assert "dappyboard_score_submissions_total" in r.text


class TestRateLimit:
    async def test_submission_rate_limited(self, client, mock_redis):
        # Pre-fill the counter for every plausible client IP
        for ip in ("127.0.0.1", "testclient", "unknown"):
            mock_redis.counters[f"ratelimit:{ip}:POST:/api/scores"] = 10

        r = await client.post("/api/scores", json={"name": "Ada", "score": 500, "dappies": 0})
        assert r.status_code == 429
        assert "Retry-After" in r.headers

    async def test_reads_not_limited_by_submission_counter(self, client, mock_redis):
        for ip in ("127.0.0.1", "testclient", "unknown"):
            mock_redis.counters[f"ratelimit:{ip}:POST:/api/scores"] = 10

        r = await client.get("/api/leaderboard")
        assert r.status_code == 200

    async def test_redis_down_allows_request(self, client, mock_redis):
        async def _fail(key):
            raise ConnectionError("redis down")

        mock_redis.incr = _fail
        r = await client.get("/api/leaderboard")
        assert r.status_code == 200
