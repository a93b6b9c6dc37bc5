from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from dappyboard.store.base import LeaderboardRow


class LeaderboardEntry(BaseModel):
    rank: int | None = None
    id: int
    name: str
    score: int
    dappies: int
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: LeaderboardRow, rank: int | None = None) -> LeaderboardEntry:
        return cls(
            rank=rank,
            id=row.id,
            name=row.name,
            score=row.score,
            dappies=row.dappies,
            created_at=row.created_at,
        )


def ranked(rows: list[LeaderboardRow]) -> list[LeaderboardEntry]:
    return [LeaderboardEntry.from_row(row, rank=i + 1) for i, row in enumerate(rows)]


class SubmitScoreRequest(BaseModel):
    # Range checks live in services.validation so rejections carry a reason
    name: str
    score: int
    dappies: int = 0


class SubmitScoreResponse(BaseModel):
    outcome: str  # rejected, created, updated, not_better, store_error
    ok: bool
    reason: str | None = None
    detail: str | None = None
    entry: LeaderboardEntry | None = None


class CleanupResponse(BaseModel):
    name: str
    removed: int
