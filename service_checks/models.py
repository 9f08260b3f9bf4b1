from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


STATUS_UP = "up"
STATUS_DOWN = "down"
STATUS_DEGRADED = "degraded"
# Initial status of a service that has never been probed.
STATUS_PENDING = "pending"

CHECK_STATUSES = (STATUS_UP, STATUS_DOWN, STATUS_DEGRADED)

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"

ALERT_TYPE_DOWNTIME = "downtime"
INTEGRATION_TYPE_SERVICE = "service"


def ts_to_iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).isoformat()


def iso_to_ts(value: Any) -> float | None:
    """
    Parse an ISO-8601 timestamp (as stored in alert metadata) back to unix seconds.
    Naive values are treated as UTC; unparseable values return None.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


@dataclass(frozen=True)
class Service:
    id: str
    name: str
    url: str
    check_interval: int = 5  # minutes
    is_paused: bool = False
    content_keyword: str | None = None
    user_id: str | None = None

    # Materialized view over the check log; never authoritative.
    status: str = STATUS_PENDING
    last_check_ts: float | None = None
    uptime_percentage: float | None = None
    avg_response_time: int | None = None
    ssl_expiry_date: str | None = None
    ssl_issuer: str | None = None

    def is_due(self, now_ts: float, *, force: bool = False) -> bool:
        if force or self.last_check_ts is None:
            return True
        elapsed_minutes = (float(now_ts) - float(self.last_check_ts)) / 60.0
        return elapsed_minutes >= float(self.check_interval)


@dataclass(frozen=True)
class ProbeResult:
    status: str
    response_time: int
    status_code: int | None
    error_message: str | None
    ttfb: int | None
    response_size: int | None
    body: str = field(default="", repr=False)


@dataclass(frozen=True)
class Check:
    service_id: str
    status: str
    response_time: int
    checked_at_ts: float
    status_code: int | None = None
    error_message: str | None = None
    ttfb: int | None = None
    response_size: int | None = None
    check_region: str | None = None
    user_id: str | None = None
    id: str | None = None


@dataclass(frozen=True)
class Alert:
    id: str
    severity: str
    alert_type: str
    title: str
    description: str
    is_dismissed: bool
    created_at_ts: float
    metadata: dict[str, Any]
    user_id: str | None = None
    integration_type: str | None = None
    is_read: bool = False

    @property
    def service_id(self) -> str | None:
        sid = self.metadata.get("service_id")
        return str(sid) if sid is not None else None

    @property
    def is_resolved(self) -> bool:
        return self.metadata.get("resolved_at") is not None


@dataclass(frozen=True)
class ServiceTickResult:
    service_id: str
    status: str
    response_time: int

    def to_dict(self) -> dict[str, Any]:
        return {"service_id": self.service_id, "status": self.status, "response_time": self.response_time}


@dataclass(frozen=True)
class TickResult:
    checked: int
    results: list[ServiceTickResult]
    skipped: int = 0
    failed: int = 0
    unfinished: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"checked": self.checked, "results": [r.to_dict() for r in self.results]}
