"""Abstract persistent store for leaderboard rows.

A store is bound to one table and exposes filter-based CRUD plus a change
feed. Implementations must surface every driver or transport failure as
:class:`~dappyboard.errors.StoreError`.
"""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

ORDERABLE_COLUMNS = frozenset({"id", "name", "score", "dappies", "created_at"})
WRITABLE_COLUMNS = frozenset({"name", "score", "dappies"})
DEFAULT_ORDER: tuple[str, ...] = ("-score", "-id")


@dataclass(frozen=True)
class LeaderboardRow:
    id: int
    name: str
    score: int
    dappies: int
    created_at: datetime | None = None


@dataclass(frozen=True)
class RowFilter:
    """Conjunction of optional row conditions. An empty filter matches every row."""

    name: str | None = None
    ids: tuple[int, ...] | None = None
    exclude_ids: tuple[int, ...] = ()
    score_below: int | None = None


class ChangeKind(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ALL_CHANGES: frozenset[ChangeKind] = frozenset(ChangeKind)


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    table: str


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class FeedSubscription(ABC):
    @property
    @abstractmethod
    def active(self) -> bool: ...

    @abstractmethod
    async def cancel(self) -> None:
        """Stop delivering events. Handlers already running are not interrupted."""


def parse_order(order_by: Sequence[str]) -> list[tuple[str, bool]]:
    """Turn ``("-score", "id")`` into ``[("score", True), ("id", False)]``."""
    parsed = []
    for item in order_by:
        descending = item.startswith("-")
        column = item.lstrip("-")
        if column not in ORDERABLE_COLUMNS:
            raise ValueError(f"Cannot order by unknown column '{column}'")
        parsed.append((column, descending))
    return parsed


def check_writable(values: Mapping[str, Any]) -> None:
    unknown = set(values) - WRITABLE_COLUMNS
    if unknown:
        raise ValueError(f"Unknown or read-only columns: {sorted(unknown)}")


class LeaderboardStore(ABC):
    table: str = "leaderboard"

    @abstractmethod
    async def select(
        self,
        row_filter: RowFilter = RowFilter(),
        order_by: Sequence[str] = DEFAULT_ORDER,
        limit: int | None = None,
    ) -> list[LeaderboardRow]: ...

    @abstractmethod
    async def insert(self, values: Mapping[str, Any]) -> LeaderboardRow: ...

    @abstractmethod
    async def update(self, row_filter: RowFilter, patch: Mapping[str, Any]) -> list[LeaderboardRow]:
        """Apply ``patch`` to matching rows and return them as updated."""

    @abstractmethod
    async def delete(self, row_filter: RowFilter) -> int:
        """Delete matching rows and return how many were removed."""

    @abstractmethod
    async def subscribe(
        self,
        on_change: ChangeHandler,
        events: Iterable[ChangeKind] = ALL_CHANGES,
    ) -> FeedSubscription: ...
