from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from dappyboard.services.ledger import ScoreLedger


def get_ledger(request: Request) -> ScoreLedger:
    return request.app.state.ledger


LedgerDep = Annotated[ScoreLedger, Depends(get_ledger)]
