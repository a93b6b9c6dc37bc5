"""Publish/subscribe of table mutations.

``LocalChangeFeed`` fans events out inside one process. ``RedisChangeFeed``
relays them over a Redis pub/sub channel so every API worker (and every
browser tab connected to any of them) sees writes made anywhere.
"""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable

from dappyboard.redis_client import redis_pool
from dappyboard.store.base import (
    ALL_CHANGES,
    ChangeEvent,
    ChangeHandler,
    ChangeKind,
    FeedSubscription,
)

logger = logging.getLogger(__name__)

RECONNECT_BACKOFF_INITIAL = 1
RECONNECT_BACKOFF_MAX = 30
POLL_TIMEOUT = 1.0


class _Subscription(FeedSubscription):
    """Event filter plus handler; each delivery runs in its own task."""

    def __init__(
        self,
        handler: ChangeHandler,
        events: Iterable[ChangeKind],
        table: str | None,
        on_cancel: Callable[[_Subscription], Awaitable[None]],
    ) -> None:
        self._handler = handler
        self._events = frozenset(events)
        self._table = table
        self._on_cancel = on_cancel
        self._active = True
        self._inflight: set[asyncio.Task] = set()
        self.pump: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._active

    def wants(self, event: ChangeEvent) -> bool:
        if not self._active or event.kind not in self._events:
            return False
        return self._table is None or event.table == self._table

    def dispatch(self, event: ChangeEvent) -> None:
        if not self.wants(event):
            return
        task = asyncio.create_task(self._deliver(event))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _deliver(self, event: ChangeEvent) -> None:
        try:
            await self._handler(event)
        except Exception:
            logger.exception(
                "Change handler failed",
                extra={"kind": event.kind.value, "table": event.table},
            )

    async def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self.pump is not None and self.pump is not asyncio.current_task():
            self.pump.cancel()
            try:
                await self.pump
            except asyncio.CancelledError:
                pass
        await self._on_cancel(self)


class ChangeFeed(ABC):
    @abstractmethod
    async def publish(self, event: ChangeEvent) -> None: ...

    @abstractmethod
    async def subscribe(
        self,
        handler: ChangeHandler,
        events: Iterable[ChangeKind] = ALL_CHANGES,
        table: str | None = None,
    ) -> FeedSubscription: ...


class LocalChangeFeed(ChangeFeed):
    """In-process feed. Events published here reach only this event loop."""

    def __init__(self) -> None:
        self._subscriptions: list[_Subscription] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions):
            sub.dispatch(event)

    async def subscribe(
        self,
        handler: ChangeHandler,
        events: Iterable[ChangeKind] = ALL_CHANGES,
        table: str | None = None,
    ) -> FeedSubscription:
        sub = _Subscription(handler, events, table, self._remove)
        self._subscriptions.append(sub)
        return sub

    async def _remove(self, sub: _Subscription) -> None:
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)


def encode_event(event: ChangeEvent) -> str:
    return json.dumps({"kind": event.kind.value, "table": event.table})


def decode_event(data: bytes | str) -> ChangeEvent | None:
    try:
        payload = json.loads(data)
        return ChangeEvent(kind=ChangeKind(payload["kind"]), table=str(payload["table"]))
    except (ValueError, KeyError, TypeError):
        logger.warning("Ignoring malformed change notification", extra={"data": repr(data)[:200]})
        return None


class RedisChangeFeed(ChangeFeed):
    """Cross-process feed over a Redis pub/sub channel."""

    def __init__(self, channel: str) -> None:
        self.channel = channel

    async def publish(self, event: ChangeEvent) -> None:
        await redis_pool.publish(self.channel, encode_event(event))

    async def subscribe(
        self,
        handler: ChangeHandler,
        events: Iterable[ChangeKind] = ALL_CHANGES,
        table: str | None = None,
    ) -> FeedSubscription:
        pubsub = redis_pool.pubsub()
        try:
            await pubsub.subscribe(self.channel)
        except Exception:
            await pubsub.aclose()
            raise

        async def _close(_sub: _Subscription) -> None:
            try:
                await pubsub.unsubscribe(self.channel)
                await pubsub.aclose()
            except Exception:
                logger.warning("Failed to close pub/sub connection", exc_info=True)

        sub = _Subscription(handler, events, table, _close)
        sub.pump = asyncio.create_task(self._listen(pubsub, sub))
        return sub

    async def _listen(self, pubsub, sub: _Subscription) -> None:
        backoff = RECONNECT_BACKOFF_INITIAL
        while sub.active:
            try:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=POLL_TIMEOUT
                )
                backoff = RECONNECT_BACKOFF_INITIAL
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Change feed read failed, retrying in %ds", backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, RECONNECT_BACKOFF_MAX)
                continue

            if not message or message.get("type") != "message":
                continue
            event = decode_event(message["data"])
            if event is not None:
                sub.dispatch(event)
