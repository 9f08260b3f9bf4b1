from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    s = str(raw).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _env_number(name: str, default: float, cast):
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return cast(default)
    try:
        return cast(raw)
    except ValueError:
        return cast(default)


def _env_int(name: str, default: int) -> int:
    return _env_number(name, default, int)


def _env_float(name: str, default: float) -> float:
    return _env_number(name, default, float)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _env_optional_str(name: str) -> str | None:
    s = str(os.getenv(name) or "").strip()
    return s or None


@dataclass(frozen=True)
class EngineSettings:
    db_path: str = field(default_factory=lambda: _env_str("UPTIME_DB_PATH", "/data/uptime.db"))
    # How long one store call waits on a locked database before failing with PersistenceError.
    db_busy_timeout_seconds: float = field(default_factory=lambda: _env_float("UPTIME_DB_BUSY_TIMEOUT_SECONDS", 5.0))

    # Probe + TLS bounds. The TLS handshake is bounded tighter than the HTTP probe.
    probe_timeout_seconds: float = field(default_factory=lambda: _env_float("UPTIME_PROBE_TIMEOUT_SECONDS", 10.0))
    tls_timeout_seconds: float = field(default_factory=lambda: _env_float("UPTIME_TLS_TIMEOUT_SECONDS", 5.0))
    tls_enabled: bool = field(default_factory=lambda: _env_bool("UPTIME_TLS_ENABLED", True))
    user_agent: str = field(default_factory=lambda: _env_str("UPTIME_USER_AGENT", "service-checks/0.1"))

    # 1 = sequential baseline.
    check_concurrency: int = field(default_factory=lambda: _env_int("UPTIME_CHECK_CONCURRENCY", 1))
    # Wall-clock ceiling for one tick; 0 disables it.
    tick_deadline_seconds: float = field(default_factory=lambda: _env_float("UPTIME_TICK_DEADLINE_SECONDS", 0.0))

    uptime_window_days: int = field(default_factory=lambda: _env_int("UPTIME_WINDOW_DAYS", 365))
    latency_window_checks: int = field(default_factory=lambda: _env_int("UPTIME_LATENCY_WINDOW_CHECKS", 20))
    alert_scan_limit: int = field(default_factory=lambda: _env_int("UPTIME_ALERT_SCAN_LIMIT", 10))
    # Row-returning reads are capped at this size; aggregate counts never are.
    max_rows_per_query: int = field(default_factory=lambda: _env_int("UPTIME_MAX_ROWS_PER_QUERY", 1000))

    check_region: str | None = field(default_factory=lambda: _env_optional_str("UPTIME_CHECK_REGION"))
