"""Shared test fixtures.

The store runs against a throwaway SQLite file via aiosqlite (no external DB
needed) and Redis is replaced with an in-memory mock that also implements
pub/sub, so the Redis change feed can be exercised end to end.
"""
from __future__ import annotations

import asyncio
import os
import sqlite3
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

# Store credentials must exist before dappyboard.config is imported
os.environ.setdefault("STORE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("STORE_KEY", "test-key")

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dappyboard.api.middleware import INTERNAL_TOKEN_ISSUER, create_internal_token
from dappyboard.config import settings
from dappyboard.db.base import Base
from dappyboard.db.models import LeaderboardEntry  # noqa: F401
from dappyboard.errors import StoreError
from dappyboard.services.ledger import ScoreLedger
from dappyboard.store.base import ALL_CHANGES, DEFAULT_ORDER, LeaderboardStore, RowFilter
from dappyboard.store.change_feed import LocalChangeFeed
from dappyboard.store.sql import SqlLeaderboardStore


# ---------------------------------------------------------------------------
# Database: SQLite file per test via aiosqlite
# ---------------------------------------------------------------------------

@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "leaderboard.db"


@pytest.fixture
async def engine(db_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def concurrent_write(engine, db_path):
    """Commit ``sql`` from another connection just before the next UPDATE on leaderboard.

    Stands in for a second API worker writing between a lookup and an update.
    """
    armed: list[tuple[str, tuple]] = []

    def _before_execute(conn, cursor, statement, parameters, context, executemany):
        if armed and statement.lstrip().upper().startswith("UPDATE LEADERBOARD"):
            sql, params = armed.pop()
            other = sqlite3.connect(db_path, timeout=5)
            try:
                other.execute(sql, params)
                other.commit()
            finally:
                other.close()

    event.listen(engine.sync_engine, "before_cursor_execute", _before_execute)

    def _arm(sql: str, params: tuple = ()) -> None:
        armed.append((sql, params))

    yield _arm

    event.remove(engine.sync_engine, "before_cursor_execute", _before_execute)


@pytest.fixture
def feed() -> LocalChangeFeed:
    return LocalChangeFeed()


@pytest.fixture
def store(session_factory, feed) -> SqlLeaderboardStore:
    return SqlLeaderboardStore(session_factory, feed=feed)


@pytest.fixture
def ledger(store) -> ScoreLedger:
    return ScoreLedger(store)


@pytest.fixture
def insert_rows(store):
    """Insert raw rows straight into the store, bypassing ledger policy."""

    async def _insert(*rows: tuple[str, int, int]):
        inserted = []
        for name, score, dappies in rows:
            inserted.append(await store.insert({"name": name, "score": score, "dappies": dappies}))
        return inserted

    return _insert


# ---------------------------------------------------------------------------
# Failure injection
# ---------------------------------------------------------------------------

class FlakyStore(LeaderboardStore):
    """Delegates to a real store but raises StoreError for chosen operations.

    ``fail_on`` holds operation names (select, insert, update, delete,
    subscribe). ``fail_after`` lets an operation succeed that many times first.
    """

    def __init__(self, inner: LeaderboardStore) -> None:
        self.inner = inner
        self.fail_on: set[str] = set()
        self.fail_after: dict[str, int] = {}
        self.calls: dict[str, int] = defaultdict(int)

    def _maybe_fail(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation not in self.fail_on:
            return
        if self.calls[operation] > self.fail_after.get(operation, 0):
            raise StoreError(operation, ConnectionError("store unreachable"))

    async def select(self, row_filter=RowFilter(), order_by=DEFAULT_ORDER, limit=None):
        self._maybe_fail("select")
        return await self.inner.select(row_filter, order_by=order_by, limit=limit)

    async def insert(self, values):
        self._maybe_fail("insert")
        return await self.inner.insert(values)

    async def update(self, row_filter, patch):
        self._maybe_fail("update")
        return await self.inner.update(row_filter, patch)

    async def delete(self, row_filter):
        self._maybe_fail("delete")
        return await self.inner.delete(row_filter)

    async def subscribe(self, on_change, events=ALL_CHANGES):
        self._maybe_fail("subscribe")
        return await self.inner.subscribe(on_change, events=events)


@pytest.fixture
def flaky_store(store) -> FlakyStore:
    return FlakyStore(store)


@pytest.fixture
def flaky_ledger(flaky_store) -> ScoreLedger:
    return ScoreLedger(flaky_store)


# ---------------------------------------------------------------------------
# Mock external services
# ---------------------------------------------------------------------------

class FakePubSub:
    def __init__(self, channels: dict[str, list[asyncio.Queue]]) -> None:
        self._channels = channels
        self._queue: asyncio.Queue | None = None
        self._subscribed: list[str] = []
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        for ch in channels:
            self._channels[ch].append(self._queue)
            self._subscribed.append(ch)

    async def unsubscribe(self, *channels: str) -> None:
        for ch in channels or tuple(self._subscribed):
            if self._queue in self._channels.get(ch, []):
                self._channels[ch].remove(self._queue)

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        if self._queue is None:
            return None
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout or 0.01)
        except asyncio.TimeoutError:
            return None

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def mock_redis():
    """Replace redis_pool with an in-memory mock for all tests."""
    store: dict[str, int] = {}
    ttls: dict[str, int] = {}
    channels: dict[str, list[asyncio.Queue]] = defaultdict(list)
    published: list[tuple[str, str]] = []

    mock = MagicMock()

    async def _incr(key):
        val = int(store.get(key, 0)) + 1
        store[key] = val
        return val

    async def _expire(key, seconds):
        ttls[key] = seconds

    async def _ttl(key):
        return ttls.get(key, -1)

    async def _ping():
        return True

    async def _publish(channel, message):
        published.append((channel, message))
        data = message.encode() if isinstance(message, str) else message
        for q in list(channels.get(channel, [])):
            q.put_nowait({"type": "message", "channel": channel.encode(), "data": data})
        return len(channels.get(channel, []))

    def _pubsub():
        return FakePubSub(channels)

    mock.incr = _incr
    mock.expire = _expire
    mock.ttl = _ttl
    mock.ping = _ping
    mock.publish = _publish
    mock.pubsub = _pubsub
    mock.initialize = AsyncMock()
    mock.close = AsyncMock()
    mock.counters = store
    mock.published = published

    with patch("dappyboard.redis_client.redis_pool", mock), \
         patch("dappyboard.api.middleware.redis_pool", mock), \
         patch("dappyboard.store.change_feed.redis_pool", mock):
        yield mock


# ---------------------------------------------------------------------------
# FastAPI app + httpx client
# ---------------------------------------------------------------------------

@asynccontextmanager
async def _noop_lifespan(app):
    yield


@pytest.fixture
async def app(ledger):
    """FastAPI app wired to the test ledger, without the production lifespan."""
    from dappyboard.main import create_app

    application = create_app()
    application.router.lifespan_context = _noop_lifespan
    application.state.ledger = ledger
    yield application


@pytest.fixture
async def client(app) -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------

def _internal_token(expired: bool = False, issuer: str = INTERNAL_TOKEN_ISSUER) -> str:
    now = int(time.time())
    payload = {
        "iss": issuer,
        "iat": now,
        "exp": now + (-10 if expired else 300),
    }
    return jwt.encode(payload, settings.internal_jwt_secret, algorithm="HS256")


@pytest.fixture
def internal_token_header() -> dict[str, str]:
    return {"X-Internal-Token": create_internal_token()}


@pytest.fixture
def expired_token_header() -> dict[str, str]:
    return {"X-Internal-Token": _internal_token(expired=True)}


@pytest.fixture
def foreign_issuer_header() -> dict[str, str]:
    return {"X-Internal-Token": _internal_token(issuer="someone-else")}
