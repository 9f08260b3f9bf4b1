from __future__ import annotations

import uuid

import pytest

from service_checks.aggregator import (
    DAY_SECONDS,
    compute_aggregates,
    mean_response_time,
    recompute_service_cache,
    round_half_up,
    uptime_for_period,
    uptime_percentage,
)
from service_checks.db import SqliteCheckStore
from service_checks.models import Check
from service_checks.settings import EngineSettings

from conftest import bulk_insert_checks


def _check(service_id: str, status: str, ts: float, *, response_time: int = 100) -> Check:
    return Check(
        id=str(uuid.uuid4()),
        service_id=service_id,
        status=status,
        response_time=response_time,
        checked_at_ts=ts,
        status_code=200 if status != "down" else None,
    )


def test_uptime_percentage_formula() -> None:
    assert uptime_percentage(1, 1) == 100.0
    assert uptime_percentage(2, 3) == 66.67
    assert uptime_percentage(1, 3) == 33.33
    assert uptime_percentage(999, 1000) == 99.9
    assert uptime_percentage(0, 5) == 0.0
    # Empty window: denominator floored to 1.
    assert uptime_percentage(0, 0) == 0.0


def test_round_half_up_and_mean() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2.49) == 2
    assert mean_response_time([]) == 0
    assert mean_response_time([100, 101]) == 101
    assert mean_response_time([10, 20, 30]) == 20


def test_uptime_is_exact_beyond_row_cap(store: SqliteCheckStore, settings: EngineSettings, clock) -> None:
    now = clock()
    n_total = 2600
    n_up = 0
    checks = []
    for i in range(n_total):
        status = "down" if i % 13 == 0 else ("degraded" if i % 17 == 0 else "up")
        n_up += status == "up"
        checks.append(_check("svc", status, now - (n_total - i) * 60.0))
    bulk_insert_checks(store, checks)

    # Row-returning reads are capped...
    assert len(store.list_checks("svc", limit=5000)) == settings.max_rows_per_query
    # ...but the aggregate is computed from counts over the full window.
    agg = compute_aggregates(store, "svc", settings=settings, now_ts=now)
    assert agg.uptime.total == n_total
    assert agg.uptime.up == n_up
    assert agg.uptime.uptime_percentage == round_half_up(n_up / n_total * 10000) / 100


def test_uptime_window_excludes_old_checks(store: SqliteCheckStore, settings: EngineSettings, clock) -> None:
    now = clock()
    bulk_insert_checks(
        store,
        [
            _check("svc", "down", now - 400 * DAY_SECONDS),
            _check("svc", "down", now - 366 * DAY_SECONDS),
            _check("svc", "up", now - 10 * DAY_SECONDS),
            _check("svc", "down", now - 2 * DAY_SECONDS),
            _check("svc", "up", now - 60),
            _check("other", "down", now - 60),
        ],
    )
    agg = compute_aggregates(store, "svc", settings=settings, now_ts=now)
    assert (agg.uptime.total, agg.uptime.up) == (3, 2)
    assert agg.uptime.uptime_percentage == 66.67

    assert uptime_for_period(store, "svc", period="24h", now_ts=now).uptime_percentage == 100.0
    week = uptime_for_period(store, "svc", period="7d", now_ts=now)
    assert (week.total, week.up) == (2, 1)
    assert uptime_for_period(store, "missing", period="30d", now_ts=now).uptime_percentage == 0.0
    with pytest.raises(ValueError):
        uptime_for_period(store, "svc", period="1h", now_ts=now)


def test_avg_response_time_uses_recent_up_checks_only(
    store: SqliteCheckStore, settings: EngineSettings, clock
) -> None:
    now = clock()
    checks = []
    # 25 up checks; only the 20 most recent (response_time 105..124) count.
    for i in range(25):
        checks.append(_check("svc", "up", now - (100 - i) * 60.0, response_time=100 + i))
    bulk_insert_checks(store, checks)
    before = compute_aggregates(store, "svc", settings=settings, now_ts=now).avg_response_time
    assert before == round_half_up(sum(range(105, 125)) / 20)

    # More recent non-up checks must not move the figure.
    bulk_insert_checks(
        store,
        [
            _check("svc", "down", now - 30.0, response_time=10000),
            _check("svc", "degraded", now - 20.0, response_time=0),
        ],
    )
    after = compute_aggregates(store, "svc", settings=settings, now_ts=now).avg_response_time
    assert after == before


def test_avg_response_time_zero_without_up_checks(store: SqliteCheckStore, settings: EngineSettings, clock) -> None:
    bulk_insert_checks(store, [_check("svc", "down", clock() - 60, response_time=10000)])
    assert compute_aggregates(store, "svc", settings=settings, now_ts=clock()).avg_response_time == 0


def test_recompute_service_cache_from_check_log(store: SqliteCheckStore, settings: EngineSettings, clock) -> None:
    svc = store.upsert_service(service_id="svc", name="Svc", url="https://svc.example")
    store.update_service("svc", {"ssl_issuer": "Example CA"})
    now = clock()
    assert recompute_service_cache(store, svc.id, settings=settings, now_ts=now) is None

    bulk_insert_checks(
        store,
        [
            _check("svc", "up", now - 180, response_time=200),
            _check("svc", "up", now - 120, response_time=300),
            _check("svc", "down", now - 60, response_time=0),
        ],
    )
    fields = recompute_service_cache(store, svc.id, settings=settings, now_ts=now)
    assert fields == {
        "status": "down",
        "last_check_ts": now - 60,
        "uptime_percentage": 66.67,
        "avg_response_time": 250,
    }

    repaired = store.get_service("svc")
    assert repaired is not None
    assert repaired.status == "down"
    assert repaired.last_check_ts == now - 60
    assert repaired.uptime_percentage == 66.67
    assert repaired.avg_response_time == 250
    assert repaired.ssl_issuer == "Example CA"

    # Idempotent.
    assert recompute_service_cache(store, svc.id, settings=settings, now_ts=now) == fields
