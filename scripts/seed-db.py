"""Seed the leaderboard with sample scores for development.

Goes through ScoreLedger so the usual validation and best-score policy apply.
"""

import asyncio
import random
import sys

sys.path.insert(0, "src")

PLAYERS = ["Ada", "Bo", "Cleo", "Dmitri", "Eun-ji", "Farah", "Gus", "Hiro", "Ines", "Jules"]


async def seed():
    from dappyboard.config import settings
    from dappyboard.db.session import dispose_engine
    from dappyboard.main import build_ledger
    from dappyboard.redis_client import redis_pool

    settings.require_store_credentials()
    ledger = build_ledger()
    outcomes: dict[str, int] = {}

    for name in PLAYERS:
        for _ in range(3):
            score = random.randint(5_000, 240_000)
            dappies = random.randint(0, score // 3000)
            result = await ledger.submit_score(name, score, min(dappies, 200))
            outcomes[result.outcome.value] = outcomes.get(result.outcome.value, 0) + 1

    print("Submission outcomes:", outcomes)
    print()
    for i, row in enumerate(await ledger.list_top(10), start=1):
        print(f"  {i:>2}. {row.name:<20} {row.score:>7} ms  {row.dappies:>3} dappies")

    await redis_pool.close()
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(seed())
