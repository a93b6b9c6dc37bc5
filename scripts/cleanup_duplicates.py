"""Collapse duplicate leaderboard rows left behind by racing submissions.

Usage:
    python scripts/cleanup_duplicates.py            # every player
    python scripts/cleanup_duplicates.py NAME ...   # specific players
"""

import asyncio
import sys

sys.path.insert(0, "src")


async def main(names: list[str]) -> None:
    from dappyboard.config import settings
    from dappyboard.db.session import dispose_engine
    from dappyboard.main import build_ledger
    from dappyboard.monitoring.logging_config import setup_logging
    from dappyboard.redis_client import redis_pool

    settings.require_store_credentials()
    setup_logging(fmt="text")
    ledger = build_ledger()

    if names:
        removed = 0
        for name in names:
            removed += await ledger.cleanup_duplicates(name)
    else:
        removed = await ledger.cleanup_all_duplicates()

    print(f"Removed {removed} duplicate row(s)")

    await redis_pool.close()
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
