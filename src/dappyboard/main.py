from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dappyboard.config import settings
from dappyboard.monitoring.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_ledger():
    """ScoreLedger over the configured Postgres store and Redis change feed."""
    from dappyboard.db.session import get_session_factory
    from dappyboard.services.ledger import ScoreLedger
    from dappyboard.store.change_feed import RedisChangeFeed
    from dappyboard.store.sql import SqlLeaderboardStore

    store = SqlLeaderboardStore(
        get_session_factory(),
        feed=RedisChangeFeed(settings.change_channel),
    )
    return ScoreLedger(store, replace_strategy=settings.replace_strategy)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    setup_logging()
    from dappyboard.db.session import dispose_engine
    from dappyboard.redis_client import redis_pool

    await redis_pool.initialize()
    app.state.ledger = build_ledger()
    logger.info(
        "Ledger ready",
        extra={"replace_strategy": settings.replace_strategy, "channel": settings.change_channel},
    )

    yield

    await redis_pool.close()
    await dispose_engine()


def create_app() -> FastAPI:
    # Fail fast: nothing below is reachable without store credentials
    settings.require_store_credentials()

    app = FastAPI(
        title="Dappyboard",
        description="High-score ledger for the Dappy browser game",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from dappyboard.api.middleware import RateLimitMiddleware
    app.add_middleware(RateLimitMiddleware)

    from dappyboard.api.router import api_router
    from dappyboard.ws.broadcaster import ws_router

    app.include_router(api_router, prefix="/api")
    app.include_router(ws_router, prefix="/ws")

    return app
