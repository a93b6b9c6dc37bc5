from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    component: str
    healthy: bool
    latency_ms: float | None = None
    message: str | None = None


async def check_database() -> HealthStatus:
    from sqlalchemy import text

    from dappyboard.db.session import get_engine

    start = time.monotonic()
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return HealthStatus("database", True, latency_ms=(time.monotonic() - start) * 1000)
    except Exception as e:
        return HealthStatus("database", False, message=str(e))


async def check_redis() -> HealthStatus:
    from dappyboard.redis_client import redis_pool

    start = time.monotonic()
    try:
        await redis_pool.ping()
        return HealthStatus("redis", True, latency_ms=(time.monotonic() - start) * 1000)
    except Exception as e:
        return HealthStatus("redis", False, message=str(e))


async def get_all_health() -> list[HealthStatus]:
    checks = await asyncio.gather(check_database(), check_redis())
    for check in checks:
        if not check.healthy:
            logger.warning(
                "Health check failed",
                extra={"component": check.component, "error": check.message},
            )
    return list(checks)
