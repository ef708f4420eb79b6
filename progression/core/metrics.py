"""Prometheus metrics for the progression engine.

Every metric the service exposes is declared here; the owning modules
import the one they need and update it at the point of action.

  RPC_CACHE_OPERATIONS    counter, how each ``execute`` was served
  RPC_CACHE_ENTRIES       gauge, entries currently memoized
  STATS_FETCHES           counter, snapshot pull outcomes
  REALTIME_EVENTS         counter, push notifications by stream
  STATS_LISTENERS         gauge, local snapshot listeners
  POINTS_AWARDED          histogram, final points of each calculation

Counters never go down, so tests assert on deltas (read, act, re-read).
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

RPC_CACHE_OPERATIONS = Counter(
    "rpc_cache_operations_total",
    "Remote-call cache lookups by result",
    ["result"],  # hit|miss|coalesced
)

RPC_CACHE_ENTRIES = Gauge(
    "rpc_cache_entries",
    "Remote-call results currently held in the cache",
)

STATS_FETCHES = Counter(
    "stats_fetches_total",
    "Gamification snapshot fetches by outcome",
    ["result"],  # ok|empty|error|discarded
)

REALTIME_EVENTS = Counter(
    "realtime_events_total",
    "Push notifications received by the stats manager",
    ["stream"],  # snapshot_changed|log_inserted
)

STATS_LISTENERS = Gauge(
    "stats_listeners",
    "Local listeners subscribed to gamification snapshots",
)

POINTS_AWARDED = Histogram(
    "quiz_points_awarded",
    "Final points produced by the score calculator",
    # tier 1..20 before multipliers, long tail for stacked bonuses
    buckets=[1, 2, 5, 10, 15, 20, 30, 50, 75, 100, 200],
)
