from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Ledger metrics
score_submissions_total = Counter(
    "dappyboard_score_submissions_total", "Score submissions by outcome", ["outcome"]
)
duplicates_removed_total = Counter(
    "dappyboard_duplicates_removed_total", "Duplicate leaderboard rows removed by cleanup"
)
leaderboard_subscriptions_active = Gauge(
    "dappyboard_leaderboard_subscriptions_active", "Live leaderboard change subscriptions"
)

# Store metrics
store_errors_total = Counter(
    "dappyboard_store_errors_total", "Failed store operations", ["operation"]
)

# WebSocket metrics
ws_connections = Gauge("dappyboard_ws_connections", "Active leaderboard WebSocket connections")

# API metrics
api_request_duration_seconds = Histogram(
    "dappyboard_api_request_duration_seconds", "API request duration",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)
