from __future__ import annotations

import logging
from collections import defaultdict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from dappyboard.api.schemas.leaderboard import ranked
from dappyboard.config import settings
from dappyboard.errors import StoreError
from dappyboard.monitoring.metrics import ws_connections
from dappyboard.services.ledger import LeaderboardSubscription, ScoreLedger
from dappyboard.store.base import LeaderboardRow

logger = logging.getLogger(__name__)

ws_router = APIRouter()

CONNECTIONS_PER_IP = 5

_ip_connection_count: dict[str, int] = defaultdict(int)


def _get_client_ip(websocket: WebSocket) -> str:
    """Extract client IP from WebSocket connection."""
    forwarded = websocket.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    client = websocket.client
    return client.host if client else "unknown"


def leaderboard_message(rows: list[LeaderboardRow]) -> dict:
    return {
        "type": "leaderboard",
        "entries": [e.model_dump(mode="json") for e in ranked(rows)],
    }


@ws_router.websocket("/leaderboard")
async def leaderboard_channel(websocket: WebSocket, limit: int = 10) -> None:
    """Live leaderboard.

    Sends the current top list on connect and a fresh one after every
    insert, update or delete on the leaderboard table. Clients never need to
    send anything; the socket is read only to detect disconnects.
    Connection limit: 5 concurrent per IP.
    """
    limit = max(1, min(limit, settings.leaderboard_max_limit))
    client_ip = _get_client_ip(websocket)

    if _ip_connection_count[client_ip] >= CONNECTIONS_PER_IP:
        await websocket.close(code=4029, reason="Too many leaderboard connections")
        return

    await websocket.accept()
    _ip_connection_count[client_ip] += 1
    ws_connections.inc()
    logger.info("Leaderboard WebSocket connected", extra={"client_ip": client_ip})

    ledger: ScoreLedger = websocket.app.state.ledger
    subscription: LeaderboardSubscription | None = None

    async def _push(rows: list[LeaderboardRow]) -> None:
        await websocket.send_json(leaderboard_message(rows))

    try:
        await _push(await ledger.list_top(limit))
        try:
            subscription = await ledger.subscribe_to_changes(_push, limit=limit)
        except StoreError as e:
            logger.error("Could not subscribe to leaderboard changes", extra={"error": str(e)})
            await websocket.close(code=1011, reason="Live updates unavailable")
            return

        while True:
            msg = await websocket.receive()
            if msg["type"] == "websocket.disconnect":
                break
    except WebSocketDisconnect:
        pass
    finally:
        if subscription is not None:
            await subscription.cancel()
        _ip_connection_count[client_ip] -= 1
        if _ip_connection_count[client_ip] <= 0:
            _ip_connection_count.pop(client_ip, None)
        ws_connections.dec()
        logger.info("Leaderboard WebSocket disconnected", extra={"client_ip": client_ip})
