from dappyboard.store.base import (
    ALL_CHANGES,
    ChangeEvent,
    ChangeKind,
    FeedSubscription,
    LeaderboardRow,
    LeaderboardStore,
    RowFilter,
)
from dappyboard.store.change_feed import ChangeFeed, LocalChangeFeed, RedisChangeFeed
from dappyboard.store.sql import SqlLeaderboardStore

__all__ = [
    "ALL_CHANGES",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeKind",
    "FeedSubscription",
    "LeaderboardRow",
    "LeaderboardStore",
    "LocalChangeFeed",
    "RedisChangeFeed",
    "RowFilter",
    "SqlLeaderboardStore",
]
