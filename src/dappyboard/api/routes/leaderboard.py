from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query

from dappyboard.api.schemas.leaderboard import LeaderboardEntry, ranked
from dappyboard.config import settings
from dappyboard.dependencies import LedgerDep

router = APIRouter(tags=["leaderboard"])


@router.get("/leaderboard", response_model=list[LeaderboardEntry])
async def get_leaderboard(
    ledger: LedgerDep,
    limit: int = Query(settings.leaderboard_default_limit, ge=1, le=settings.leaderboard_max_limit),
):
    """Top scores, best first."""
    rows = await ledger.list_top(limit)
    return ranked(rows)


@router.get("/leaderboard/{name}", response_model=LeaderboardEntry)
async def get_player_best(ledger: LedgerDep, name: str):
    """A player's stored best score."""
    row = await ledger.get_best_score(name)
    if row is None:
        raise HTTPException(status_code=404, detail=f"No score recorded for '{name.strip()}'")
    return LeaderboardEntry.from_row(row)
