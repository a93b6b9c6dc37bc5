from dappyboard.db.models.leaderboard_entry import LeaderboardEntry

__all__ = ["LeaderboardEntry"]
