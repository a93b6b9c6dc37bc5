from __future__ import annotations

from fastapi import APIRouter

from dappyboard.api.routes import internal, leaderboard, scores

api_router = APIRouter()

api_router.include_router(leaderboard.router)
api_router.include_router(scores.router)
api_router.include_router(internal.router)
