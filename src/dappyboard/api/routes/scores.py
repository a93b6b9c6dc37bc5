from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from dappyboard.api.schemas.leaderboard import LeaderboardEntry, SubmitScoreRequest, SubmitScoreResponse
from dappyboard.dependencies import LedgerDep
from dappyboard.services.ledger import SubmitOutcome

router = APIRouter(tags=["scores"])

_STATUS_BY_OUTCOME = {
    SubmitOutcome.CREATED: 201,
    SubmitOutcome.UPDATED: 200,
    SubmitOutcome.NOT_BETTER: 200,
    SubmitOutcome.REJECTED: 422,
    SubmitOutcome.STORE_ERROR: 503,
}


@router.post("/scores", response_model=SubmitScoreResponse)
async def submit_score(ledger: LedgerDep, body: SubmitScoreRequest):
    """Submit a finished run. Only a player's best score is kept."""
    result = await ledger.submit_score(body.name, body.score, body.dappies)
    response = SubmitScoreResponse(
        outcome=result.outcome.value,
        ok=result.ok,
        reason=result.reason.value if result.reason else None,
        detail=result.detail,
        entry=LeaderboardEntry.from_row(result.entry) if result.entry else None,
    )
    return JSONResponse(
        status_code=_STATUS_BY_OUTCOME[result.outcome],
        content=response.model_dump(mode="json"),
    )
