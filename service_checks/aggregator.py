from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from service_checks.db import SqliteCheckStore
from service_checks.models import STATUS_UP
from service_checks.settings import EngineSettings


LOGGER = logging.getLogger("service-checks")

DAY_SECONDS = 86400.0

PERIOD_SECONDS: dict[str, float] = {
    "24h": 1 * DAY_SECONDS,
    "7d": 7 * DAY_SECONDS,
    "30d": 30 * DAY_SECONDS,
    "12m": 365 * DAY_SECONDS,
}


@dataclass(frozen=True)
class UptimeWindow:
    total: int
    up: int
    uptime_percentage: float


@dataclass(frozen=True)
class ServiceAggregates:
    uptime: UptimeWindow
    avg_response_time: int


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; cached figures use half-up.
    return int(math.floor(float(value) + 0.5))


def uptime_percentage(up_count: int, total_count: int) -> float:
    """
    Two-decimal uptime percentage.

    An empty window floors the denominator to 1, which yields 0.0.
    """
    denominator = max(int(total_count), 1)
    return round_half_up(int(up_count) / denominator * 10000) / 100


def mean_response_time(values: list[int]) -> int:
    if not values:
        return 0
    return round_half_up(sum(int(v) for v in values) / len(values))


def uptime_since(store: SqliteCheckStore, service_id: str, *, since_ts: float) -> UptimeWindow:
    # Aggregate counts only: row-returning reads may be silently capped by the store.
    total = store.count_checks(service_id, since_ts=since_ts)
    up = store.count_checks(service_id, since_ts=since_ts, status=STATUS_UP) if total else 0
    return UptimeWindow(total=total, up=up, uptime_percentage=uptime_percentage(up, total))


def long_window_uptime(store: SqliteCheckStore, service_id: str, *, now_ts: float, window_days: int) -> UptimeWindow:
    since_ts = float(now_ts) - max(1, int(window_days)) * DAY_SECONDS
    return uptime_since(store, service_id, since_ts=since_ts)


def uptime_for_period(store: SqliteCheckStore, service_id: str, *, period: str, now_ts: float) -> UptimeWindow:
    seconds = PERIOD_SECONDS.get(period)
    if seconds is None:
        raise ValueError(f"Unknown uptime period {period!r}; expected one of {sorted(PERIOD_SECONDS)}")
    return uptime_since(store, service_id, since_ts=float(now_ts) - seconds)


def recent_avg_response_time(store: SqliteCheckStore, service_id: str, *, limit: int) -> int:
    # Up checks only, so timeouts and zero-latency failures never skew the figure.
    return mean_response_time(store.recent_up_response_times(service_id, max(1, int(limit))))


def compute_aggregates(
    store: SqliteCheckStore,
    service_id: str,
    *,
    settings: EngineSettings,
    now_ts: float,
) -> ServiceAggregates:
    return ServiceAggregates(
        uptime=long_window_uptime(store, service_id, now_ts=now_ts, window_days=settings.uptime_window_days),
        avg_response_time=recent_avg_response_time(store, service_id, limit=settings.latency_window_checks),
    )


def recompute_service_cache(
    store: SqliteCheckStore,
    service_id: str,
    *,
    settings: EngineSettings,
    now_ts: float,
) -> dict[str, object] | None:
    """
    Re-derive a service's cached fields from the check log alone and write them back.

    Idempotent; used to repair services after a tick was cut off between the check
    append and the service write. SSL fields are not derivable from checks and are
    left as they are. Returns the written fields, or None when the service has no checks.
    """
    latest = store.latest_check(service_id)
    if latest is None:
        return None

    aggregates = compute_aggregates(store, service_id, settings=settings, now_ts=now_ts)
    fields: dict[str, object] = {
        "status": latest.status,
        "last_check_ts": latest.checked_at_ts,
        "uptime_percentage": aggregates.uptime.uptime_percentage,
        "avg_response_time": aggregates.avg_response_time,
    }
    store.update_service(service_id, fields)
    LOGGER.info(
        "Recomputed service cache service_id=%s status=%s uptime=%s avg_ms=%s",
        service_id,
        latest.status,
        aggregates.uptime.uptime_percentage,
        aggregates.avg_response_time,
    )
    return fields
