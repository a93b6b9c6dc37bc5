from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from redis.exceptions import RedisError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dappyboard.db.models.leaderboard_entry import LeaderboardEntry
from dappyboard.errors import StoreError
from dappyboard.monitoring.metrics import store_errors_total
from dappyboard.store.base import (
    ALL_CHANGES,
    DEFAULT_ORDER,
    ChangeEvent,
    ChangeHandler,
    ChangeKind,
    FeedSubscription,
    LeaderboardRow,
    LeaderboardStore,
    RowFilter,
    check_writable,
    parse_order,
)
from dappyboard.store.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

# Driver-level failures that mean "store unavailable" rather than a bug here
_STORE_FAILURES = (SQLAlchemyError, OSError, TimeoutError)


def _to_row(entry: LeaderboardEntry) -> LeaderboardRow:
    return LeaderboardRow(
        id=entry.id,
        name=entry.name,
        score=entry.score,
        dappies=entry.dappies,
        created_at=entry.created_at,
    )


def _conditions(row_filter: RowFilter) -> list:
    conds = []
    if row_filter.name is not None:
        conds.append(LeaderboardEntry.name == row_filter.name)
    if row_filter.ids is not None:
        conds.append(LeaderboardEntry.id.in_(row_filter.ids))
    if row_filter.exclude_ids:
        conds.append(LeaderboardEntry.id.not_in(row_filter.exclude_ids))
    if row_filter.score_below is not None:
        conds.append(LeaderboardEntry.score < row_filter.score_below)
    return conds


class SqlLeaderboardStore(LeaderboardStore):
    """Leaderboard table behind SQLAlchemy asyncio (asyncpg in production)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
    ) -> None:
        self._session_factory = session_factory
        self._feed = feed

    def _fail(self, operation: str, exc: BaseException) -> StoreError:
        store_errors_total.labels(operation=operation).inc()
        logger.error(
            "Store operation failed",
            extra={"operation": operation, "table": self.table, "error": str(exc)},
        )
        return StoreError(operation, exc)

    async def _notify(self, kind: ChangeKind) -> None:
        try:
            await self._feed.publish(ChangeEvent(kind=kind, table=self.table))
        except Exception as e:
            # The write already committed; listeners catch up on the next change
            logger.warning(
                "Change notification failed",
                extra={"kind": kind.value, "table": self.table, "error": str(e)},
            )

    async def select(
        self,
        row_filter: RowFilter = RowFilter(),
        order_by: Sequence[str] = DEFAULT_ORDER,
        limit: int | None = None,
    ) -> list[LeaderboardRow]:
        query = select(LeaderboardEntry).where(*_conditions(row_filter))
        for column, descending in parse_order(order_by):
            attr = getattr(LeaderboardEntry, column)
            query = query.order_by(attr.desc() if descending else attr.asc())
        if limit is not None:
            query = query.limit(limit)

        try:
            async with self._session_factory() as db:
                result = await db.execute(query)
                return [_to_row(e) for e in result.scalars().all()]
        except _STORE_FAILURES as e:
            raise self._fail("select", e) from e

    async def insert(self, values: Mapping[str, Any]) -> LeaderboardRow:
        check_writable(values)
        try:
            async with self._session_factory() as db:
                entry = LeaderboardEntry(**values)
                db.add(entry)
                await db.flush()
                await db.refresh(entry)
                row = _to_row(entry)
                await db.commit()
        except _STORE_FAILURES as e:
            raise self._fail("insert", e) from e

        await self._notify(ChangeKind.INSERT)
        return row

    async def update(self, row_filter: RowFilter, patch: Mapping[str, Any]) -> list[LeaderboardRow]:
        check_writable(patch)
        try:
            async with self._session_factory() as db:
                # The filter, score_below included, is evaluated by the UPDATE itself.
                # created_at is refreshed by the column's onupdate.
                result = await db.execute(
                    update(LeaderboardEntry)
                    .where(*_conditions(row_filter))
                    .values(**patch)
                    .returning(LeaderboardEntry.id)
                    .execution_options(synchronize_session=False)
                )
                ids = list(result.scalars().all())
                await db.commit()
                if not ids:
                    return []
                result = await db.execute(
                    select(LeaderboardEntry)
                    .where(LeaderboardEntry.id.in_(ids))
                    .order_by(LeaderboardEntry.id)
                    .execution_options(populate_existing=True)
                )
                rows = [_to_row(e) for e in result.scalars().all()]
        except _STORE_FAILURES as e:
            raise self._fail("update", e) from e

        await self._notify(ChangeKind.UPDATE)
        return rows

    async def delete(self, row_filter: RowFilter) -> int:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    delete(LeaderboardEntry)
                    .where(*_conditions(row_filter))
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
                removed = result.rowcount or 0
        except _STORE_FAILURES as e:
            raise self._fail("delete", e) from e

        if removed:
            await self._notify(ChangeKind.DELETE)
        return removed

    async def subscribe(
        self,
        on_change: ChangeHandler,
        events: Iterable[ChangeKind] = ALL_CHANGES,
    ) -> FeedSubscription:
        try:
            return await self._feed.subscribe(on_change, events=events, table=self.table)
        except (RedisError, OSError) as e:
            raise self._fail("subscribe", e) from e
