"""Submit-if-better policy for the leaderboard.

The store does not enforce one row per player name, so the ledger does:
a submission only lands when it beats the player's stored best, and every
write is followed by a best-effort pass that collapses duplicate rows down
to the single best one. Two tabs racing for the same name can briefly leave
two rows; the next write or cleanup for that name heals it.

Reads fail open. If the lookup of the current best fails the submission is
treated as a first score and inserted; cleanup later keeps whichever row is
actually best. This trades strict consistency for availability on purpose.
"""
from __future__ import annotations

import enum
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal, Union

from dappyboard.errors import StoreError, SubmissionRejected
from dappyboard.monitoring.metrics import (
    duplicates_removed_total,
    leaderboard_subscriptions_active,
    score_submissions_total,
)
from dappyboard.services.validation import RejectionReason, ValidatedSubmission, validate_submission
from dappyboard.store.base import (
    ALL_CHANGES,
    ChangeEvent,
    FeedSubscription,
    LeaderboardRow,
    LeaderboardStore,
    RowFilter,
)

logger = logging.getLogger(__name__)

DEFAULT_TOP_LIMIT = 10

# Best row first; equal scores keep the most recently inserted row
BEST_FIRST = ("-score", "-id")
# Leaderboard display order; equal scores rank the earlier row higher
TOP_ORDER = ("-score", "id")

ReplaceStrategy = Literal["delete_insert", "conditional_update"]
LeaderboardCallback = Callable[[list[LeaderboardRow]], Union[Awaitable[None], None]]


class SubmitOutcome(str, enum.Enum):
    REJECTED = "rejected"
    CREATED = "created"
    UPDATED = "updated"
    NOT_BETTER = "not_better"
    STORE_ERROR = "store_error"


@dataclass(frozen=True)
class SubmitResult:
    outcome: SubmitOutcome
    entry: LeaderboardRow | None = None
    reason: RejectionReason | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome in (
            SubmitOutcome.CREATED,
            SubmitOutcome.UPDATED,
            SubmitOutcome.NOT_BETTER,
        )


class LeaderboardSubscription:
    """Handle returned by :meth:`ScoreLedger.subscribe_to_changes`.

    Notifications that arrive while a refresh is running are coalesced into
    a single follow-up refresh.
    """

    def __init__(self, ledger: ScoreLedger, callback: LeaderboardCallback, limit: int) -> None:
        self._ledger = ledger
        self._callback = callback
        self._limit = limit
        self._feed_sub: FeedSubscription | None = None
        self._refreshing = False
        self._dirty = False
        self._cancelled = False

    @property
    def active(self) -> bool:
        return not self._cancelled

    async def _on_change(self, _event: ChangeEvent) -> None:
        if self._refreshing:
            self._dirty = True
            return
        self._refreshing = True
        try:
            while True:
                self._dirty = False
                rows = await self._ledger.list_top(self._limit)
                if self._cancelled:
                    return
                try:
                    result = self._callback(rows)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Leaderboard subscriber callback failed")
                if not self._dirty or self._cancelled:
                    return
        finally:
            self._refreshing = False

    async def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        leaderboard_subscriptions_active.dec()
        if self._feed_sub is not None:
            await self._feed_sub.cancel()


class ScoreLedger:
    def __init__(
        self,
        store: LeaderboardStore,
        replace_strategy: ReplaceStrategy = "delete_insert",
    ) -> None:
        if replace_strategy not in ("delete_insert", "conditional_update"):
            raise ValueError(f"Unknown replace strategy: {replace_strategy!r}")
        self.store = store
        self.replace_strategy = replace_strategy

    # --- Reads ---

    async def get_best_score(self, name: str) -> LeaderboardRow | None:
        """Best row for ``name``, or None. Store failures also yield None."""
        try:
            rows = await self.store.select(RowFilter(name=name.strip()), order_by=BEST_FIRST, limit=1)
        except StoreError as e:
            logger.warning("Best score lookup failed", extra={"player": name, "error": str(e)})
            return None
        return rows[0] if rows else None

    async def list_top(self, limit: int = DEFAULT_TOP_LIMIT) -> list[LeaderboardRow]:
        """Snapshot of the top ``limit`` rows, best first."""
        if limit < 1:
            return []
        try:
            return await self.store.select(RowFilter(), order_by=TOP_ORDER, limit=limit)
        except StoreError as e:
            logger.error("Leaderboard fetch failed", extra={"error": str(e)})
            return []

    # --- Writes ---

    async def submit_score(self, name: str, score: int, dappies: int) -> SubmitResult:
        try:
            sub = validate_submission(name, score, dappies)
        except SubmissionRejected as e:
            logger.info(
                "Score rejected",
                extra={"reason": e.reason.value, "detail": e.detail},
            )
            return self._record(SubmitResult(SubmitOutcome.REJECTED, reason=e.reason, detail=e.detail))

        existing = await self._lookup_existing(sub.name)

        if existing is None:
            try:
                row = await self.store.insert(
                    {"name": sub.name, "score": sub.score, "dappies": sub.dappies}
                )
            except StoreError as e:
                return self._record(SubmitResult(SubmitOutcome.STORE_ERROR, detail=str(e)))
            await self.cleanup_duplicates(sub.name)
            logger.info("Score created", extra={"player": sub.name, "score": sub.score})
            return self._record(SubmitResult(SubmitOutcome.CREATED, entry=row))

        if sub.score <= existing.score:
            logger.info(
                "Score not better than stored best",
                extra={"player": sub.name, "score": sub.score, "best": existing.score},
            )
            return self._record(SubmitResult(SubmitOutcome.NOT_BETTER, entry=existing))

        if self.replace_strategy == "conditional_update":
            result = await self._replace_conditional(existing, sub)
        else:
            result = await self._replace_delete_insert(existing, sub)

        if result.outcome == SubmitOutcome.UPDATED:
            await self.cleanup_duplicates(sub.name)
            logger.info(
                "Score improved",
                extra={"player": sub.name, "score": sub.score, "previous": existing.score},
            )
        return self._record(result)

    async def cleanup_duplicates(self, name: str) -> int:
        """Delete every row for ``name`` except the best one. Never raises."""
        trimmed = name.strip()
        try:
            rows = await self.store.select(RowFilter(name=trimmed), order_by=BEST_FIRST)
        except StoreError as e:
            logger.warning("Duplicate scan failed", extra={"player": trimmed, "error": str(e)})
            return 0
        if len(rows) <= 1:
            return 0

        stale_ids = tuple(r.id for r in rows[1:])
        try:
            removed = await self.store.delete(RowFilter(name=trimmed, ids=stale_ids))
        except StoreError as e:
            logger.warning(
                "Could not delete duplicate rows",
                extra={"player": trimmed, "ids": list(stale_ids), "error": str(e)},
            )
            return 0

        duplicates_removed_total.inc(removed)
        logger.info(
            "Removed duplicate rows",
            extra={"player": trimmed, "kept_id": rows[0].id, "removed": removed},
        )
        return removed

    async def cleanup_all_duplicates(self) -> int:
        """Run :meth:`cleanup_duplicates` for every name holding more than one row."""
        try:
            rows = await self.store.select(RowFilter(), order_by=("name",))
        except StoreError as e:
            logger.warning("Duplicate sweep scan failed", extra={"error": str(e)})
            return 0

        counts: dict[str, int] = {}
        for row in rows:
            counts[row.name] = counts.get(row.name, 0) + 1

        removed = 0
        for name, count in counts.items():
            if count > 1:
                removed += await self.cleanup_duplicates(name)
        return removed

    # --- Live updates ---

    async def subscribe_to_changes(
        self,
        callback: LeaderboardCallback,
        limit: int = DEFAULT_TOP_LIMIT,
    ) -> LeaderboardSubscription:
        """Call ``callback`` with a fresh top list after every table change."""
        handle = LeaderboardSubscription(self, callback, limit)
        handle._feed_sub = await self.store.subscribe(handle._on_change, events=ALL_CHANGES)
        leaderboard_subscriptions_active.inc()
        return handle

    # --- Internals ---

    async def _lookup_existing(self, name: str) -> LeaderboardRow | None:
        try:
            rows = await self.store.select(RowFilter(name=name), order_by=BEST_FIRST, limit=1)
        except StoreError as e:
            logger.warning(
                "Existing score lookup failed, treating as new player",
                extra={"player": name, "error": str(e)},
            )
            return None
        return rows[0] if rows else None

    async def _replace_delete_insert(
        self, existing: LeaderboardRow, sub: ValidatedSubmission
    ) -> SubmitResult:
        try:
            await self.store.delete(RowFilter(ids=(existing.id,)))
        except StoreError as e:
            logger.warning(
                "Delete of previous best failed, falling back to in-place update",
                extra={"player": sub.name, "id": existing.id, "error": str(e)},
            )
            try:
                rows = await self._update_existing(existing, sub, guard=False)
            except StoreError as update_error:
                return SubmitResult(SubmitOutcome.STORE_ERROR, detail=str(update_error))
            if not rows:
                return SubmitResult(
                    SubmitOutcome.STORE_ERROR,
                    detail=f"Row {existing.id} vanished before it could be updated",
                )
            return SubmitResult(SubmitOutcome.UPDATED, entry=rows[0])

        try:
            row = await self.store.insert(
                {"name": sub.name, "score": sub.score, "dappies": sub.dappies}
            )
        except StoreError as e:
            # The old row is gone; the player's best is lost until the next submission
            logger.error(
                "Insert after delete failed",
                extra={"player": sub.name, "score": sub.score, "error": str(e)},
            )
            return SubmitResult(SubmitOutcome.STORE_ERROR, detail=str(e))
        return SubmitResult(SubmitOutcome.UPDATED, entry=row)

    async def _replace_conditional(
        self, existing: LeaderboardRow, sub: ValidatedSubmission
    ) -> SubmitResult:
        try:
            rows = await self._update_existing(existing, sub, guard=True)
        except StoreError as e:
            return SubmitResult(SubmitOutcome.STORE_ERROR, detail=str(e))
        if not rows:
            # Guard matched nothing: a concurrent write already stored an equal or better score
            best = await self._lookup_existing(sub.name)
            return SubmitResult(SubmitOutcome.NOT_BETTER, entry=best)
        return SubmitResult(SubmitOutcome.UPDATED, entry=rows[0])

    async def _update_existing(
        self, existing: LeaderboardRow, sub: ValidatedSubmission, guard: bool
    ) -> list[LeaderboardRow]:
        row_filter = RowFilter(ids=(existing.id,), score_below=sub.score if guard else None)
        return await self.store.update(row_filter, {"score": sub.score, "dappies": sub.dappies})

    @staticmethod
    def _record(result: SubmitResult) -> SubmitResult:
        score_submissions_total.labels(outcome=result.outcome.value).inc()
        return result
