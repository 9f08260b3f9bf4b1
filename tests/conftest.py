"""Shared test fixtures."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable

import pytest

from service_checks.db import SqliteCheckStore
from service_checks.models import Check
from service_checks.settings import EngineSettings


@pytest.fixture
def settings(tmp_path: Path) -> EngineSettings:
    return EngineSettings(
        db_path=str(tmp_path / "uptime.db"),
        probe_timeout_seconds=10.0,
        tls_timeout_seconds=5.0,
        check_concurrency=1,
        tick_deadline_seconds=0.0,
        uptime_window_days=365,
        latency_window_checks=20,
        alert_scan_limit=10,
        max_rows_per_query=1000,
        check_region="test-region",
    )


@pytest.fixture
def store(settings: EngineSettings) -> SqliteCheckStore:
    s = SqliteCheckStore(settings)
    s.ensure_schema()
    return s


class FakeClock:
    def __init__(self, start_ts: float) -> None:
        self.now = float(start_ts)

    def __call__(self) -> float:
        return self.now

    def advance(self, *, minutes: float = 0.0, seconds: float = 0.0) -> float:
        self.now += minutes * 60.0 + seconds
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_760_000_000.0)


def bulk_insert_checks(store: SqliteCheckStore, checks: Iterable[Check]) -> None:
    """Fast path for large fixtures; goes straight to the checks table."""
    conn = sqlite3.connect(store.db_path)
    try:
        conn.executemany(
            """
            INSERT INTO checks (id, service_id, user_id, status, response_time, status_code,
                                error_message, ttfb, response_size, checked_at_ts, check_region)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    c.id,
                    c.service_id,
                    c.user_id,
                    c.status,
                    c.response_time,
                    c.status_code,
                    c.error_message,
                    c.ttfb,
                    c.response_size,
                    c.checked_at_ts,
                    c.check_region,
                )
                for c in checks
            ],
        )
        conn.commit()
    finally:
        conn.close()
