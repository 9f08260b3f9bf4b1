from __future__ import annotations

import dataclasses
import json
import sqlite3
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from service_checks.errors import PersistenceError
from service_checks.models import STATUS_PENDING, STATUS_UP, ALERT_TYPE_DOWNTIME, Alert, Check, Service
from service_checks.settings import EngineSettings


SCHEMA_VERSION = 1

# Columns the engine is allowed to write back onto a service row.
SERVICE_CACHE_COLUMNS = frozenset(
    {
        "status",
        "last_check_ts",
        "uptime_percentage",
        "avg_response_time",
        "ssl_expiry_date",
        "ssl_issuer",
    }
)
ALERT_MUTABLE_COLUMNS = frozenset({"is_dismissed", "is_read", "metadata", "description"})


def _utc_ts() -> float:
    return float(time.time())


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True)


def _json_loads(s: Any) -> Any:
    if s is None:
        return None
    if isinstance(s, (dict, list)):
        return s
    try:
        return json.loads(str(s))
    except ValueError:
        return None


def _connect(path: str, *, busy_timeout_seconds: float) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    if p != ":memory:":
        Path(p).parent.mkdir(parents=True, exist_ok=True)
    # Calls arrive from worker threads (asyncio.to_thread), one connection each.
    conn = sqlite3.connect(p, timeout=max(0.0, float(busy_timeout_seconds)), isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS services (
          id TEXT PRIMARY KEY,
          name TEXT NOT NULL,
          url TEXT NOT NULL,
          check_interval INTEGER NOT NULL DEFAULT 5,
          is_paused INTEGER NOT NULL DEFAULT 0,
          content_keyword TEXT,
          user_id TEXT,
          status TEXT NOT NULL DEFAULT 'pending',
          last_check_ts REAL,
          uptime_percentage REAL,
          avg_response_time INTEGER,
          ssl_expiry_date TEXT,
          ssl_issuer TEXT,
          created_at_ts REAL NOT NULL,
          updated_at_ts REAL NOT NULL
        );
        """
    )
    # Append-only audit log. service_id is deliberately not a foreign key: checks outlive services.
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS checks (
          id TEXT PRIMARY KEY,
          service_id TEXT NOT NULL,
          user_id TEXT,
          status TEXT NOT NULL,
          response_time INTEGER NOT NULL DEFAULT 0,
          status_code INTEGER,
          error_message TEXT,
          ttfb INTEGER,
          response_size INTEGER,
          checked_at_ts REAL NOT NULL,
          check_region TEXT
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_checks_service_time ON checks(service_id, checked_at_ts);")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_checks_service_status_time ON checks(service_id, status, checked_at_ts);"
    )
    # Alerts reference services only through metadata.service_id.
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS alerts (
          id TEXT PRIMARY KEY,
          user_id TEXT,
          severity TEXT NOT NULL,
          alert_type TEXT NOT NULL,
          title TEXT NOT NULL,
          description TEXT NOT NULL,
          integration_type TEXT,
          is_dismissed INTEGER NOT NULL DEFAULT 0,
          is_read INTEGER NOT NULL DEFAULT 0,
          metadata_json TEXT NOT NULL DEFAULT '{}',
          created_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_alerts_open ON alerts(alert_type, is_dismissed, created_at_ts);"
    )


def _row_to_service(row: sqlite3.Row) -> Service:
    return Service(
        id=str(row["id"]),
        name=str(row["name"]),
        url=str(row["url"]),
        check_interval=int(row["check_interval"]),
        is_paused=bool(row["is_paused"]),
        content_keyword=row["content_keyword"],
        user_id=row["user_id"],
        status=str(row["status"] or STATUS_PENDING),
        last_check_ts=float(row["last_check_ts"]) if row["last_check_ts"] is not None else None,
        uptime_percentage=float(row["uptime_percentage"]) if row["uptime_percentage"] is not None else None,
        avg_response_time=int(row["avg_response_time"]) if row["avg_response_time"] is not None else None,
        ssl_expiry_date=row["ssl_expiry_date"],
        ssl_issuer=row["ssl_issuer"],
    )


def _row_to_check(row: sqlite3.Row) -> Check:
    return Check(
        id=str(row["id"]),
        service_id=str(row["service_id"]),
        user_id=row["user_id"],
        status=str(row["status"]),
        response_time=int(row["response_time"] or 0),
        status_code=row["status_code"],
        error_message=row["error_message"],
        ttfb=row["ttfb"],
        response_size=row["response_size"],
        checked_at_ts=float(row["checked_at_ts"]),
        check_region=row["check_region"],
    )


def _row_to_alert(row: sqlite3.Row) -> Alert:
    metadata = _json_loads(row["metadata_json"])
    return Alert(
        id=str(row["id"]),
        user_id=row["user_id"],
        severity=str(row["severity"]),
        alert_type=str(row["alert_type"]),
        title=str(row["title"]),
        description=str(row["description"]),
        integration_type=row["integration_type"],
        is_dismissed=bool(row["is_dismissed"]),
        is_read=bool(row["is_read"]),
        metadata=metadata if isinstance(metadata, dict) else {},
        created_at_ts=float(row["created_at_ts"]),
    )


class SqliteCheckStore:
    """
    Service directory + check log + alert feed backed by a single SQLite file.

    Every call opens its own short-lived connection. Row-returning reads are
    capped at `max_rows_per_query`; COUNT aggregates are not.
    """

    def __init__(self, settings: EngineSettings) -> None:
        self.settings = settings
        self.db_path = settings.db_path
        self.max_rows = max(1, int(settings.max_rows_per_query))

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = _connect(self.db_path, busy_timeout_seconds=self.settings.db_busy_timeout_seconds)
        except sqlite3.Error as exc:
            raise PersistenceError(f"connect failed: {exc}") from exc
        try:
            _ensure_schema_conn(conn)
            yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(f"{type(exc).__name__}: {exc}") from exc
        finally:
            conn.close()

    def _cap(self, limit: int) -> int:
        return max(1, min(int(limit), self.max_rows))

    def ensure_schema(self) -> None:
        with self._session():
            pass

    # Services

    def list_active_services(self) -> list[Service]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM services WHERE is_paused=0 ORDER BY created_at_ts ASC, id ASC"
            ).fetchall()
        return [_row_to_service(r) for r in rows]

    def list_services(self) -> list[Service]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM services ORDER BY created_at_ts ASC, id ASC").fetchall()
        return [_row_to_service(r) for r in rows]

    def get_service(self, service_id: str) -> Service | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM services WHERE id=?", (service_id,)).fetchone()
        return _row_to_service(row) if row else None

    def upsert_service(
        self,
        *,
        service_id: str | None,
        name: str,
        url: str,
        check_interval: int = 5,
        is_paused: bool = False,
        content_keyword: str | None = None,
        user_id: str | None = None,
    ) -> Service:
        """Insert or update a service's configuration. Cached derived fields are left alone."""
        sid = service_id or str(uuid.uuid4())
        now = _utc_ts()
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO services (
                  id, name, url, check_interval, is_paused, content_keyword, user_id,
                  status, created_at_ts, updated_at_ts
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  name=excluded.name,
                  url=excluded.url,
                  check_interval=excluded.check_interval,
                  is_paused=excluded.is_paused,
                  content_keyword=excluded.content_keyword,
                  user_id=excluded.user_id,
                  updated_at_ts=excluded.updated_at_ts
                """,
                (
                    sid,
                    name,
                    url,
                    max(1, int(check_interval)),
                    1 if is_paused else 0,
                    content_keyword,
                    user_id,
                    STATUS_PENDING,
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM services WHERE id=?", (sid,)).fetchone()
        return _row_to_service(row)

    def update_service(self, service_id: str, fields: dict[str, Any]) -> bool:
        unknown = set(fields) - SERVICE_CACHE_COLUMNS
        if unknown:
            raise ValueError(f"Refusing to update non-cache service columns: {sorted(unknown)}")
        if not fields:
            return False
        cols = sorted(fields)
        assignments = ", ".join(f"{c}=?" for c in cols)
        params = [fields[c] for c in cols] + [_utc_ts(), service_id]
        with self._session() as conn:
            res = conn.execute(f"UPDATE services SET {assignments}, updated_at_ts=? WHERE id=?", params)
            return int(res.rowcount or 0) > 0

    # Check log

    def append_check(self, check: Check) -> Check:
        """Append one immutable check. Re-appending the same id is a no-op."""
        cid = check.id or str(uuid.uuid4())
        with self._session() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO checks (
                  id, service_id, user_id, status, response_time, status_code, error_message,
                  ttfb, response_size, checked_at_ts, check_region
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    cid,
                    check.service_id,
                    check.user_id,
                    check.status,
                    int(check.response_time),
                    check.status_code,
                    check.error_message,
                    check.ttfb,
                    check.response_size,
                    float(check.checked_at_ts),
                    check.check_region,
                ),
            )
        if check.id == cid:
            return check
        return dataclasses.replace(check, id=cid)

    def count_checks(self, service_id: str, *, since_ts: float, status: str | None = None) -> int:
        sql = "SELECT COUNT(*) AS n FROM checks WHERE service_id=? AND checked_at_ts>=?"
        params: list[Any] = [service_id, float(since_ts)]
        if status is not None:
            sql += " AND status=?"
            params.append(status)
        with self._session() as conn:
            row = conn.execute(sql, params).fetchone()
        return int(row["n"] or 0) if row else 0

    def recent_up_response_times(self, service_id: str, limit: int) -> list[int]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT response_time FROM checks
                WHERE service_id=? AND status=?
                ORDER BY checked_at_ts DESC
                LIMIT ?
                """,
                (service_id, STATUS_UP, self._cap(limit)),
            ).fetchall()
        return [int(r["response_time"] or 0) for r in rows]

    def latest_check(self, service_id: str) -> Check | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM checks WHERE service_id=? ORDER BY checked_at_ts DESC LIMIT 1",
                (service_id,),
            ).fetchone()
        return _row_to_check(row) if row else None

    def list_checks(self, service_id: str, *, limit: int = 100) -> list[Check]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM checks WHERE service_id=? ORDER BY checked_at_ts DESC LIMIT ?",
                (service_id, self._cap(limit)),
            ).fetchall()
        return [_row_to_check(r) for r in rows]

    # Alerts

    def find_open_down_alert(self, service_id: str, *, scan_limit: int = 10) -> Alert | None:
        """
        Most recent open, unresolved downtime alert for `service_id`.

        Candidates are the open downtime alerts whose metadata names the service, newest
        first, capped at `scan_limit`. Ownership is not part of the match, so a service
        that changes owner still resolves its own alert.
        """
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM alerts
                WHERE alert_type=? AND is_dismissed=0
                  AND json_extract(metadata_json, '$.service_id') = ?
                ORDER BY created_at_ts DESC
                LIMIT ?
                """,
                (ALERT_TYPE_DOWNTIME, str(service_id), self._cap(scan_limit)),
            ).fetchall()
        for row in rows:
            alert = _row_to_alert(row)
            if alert.service_id == str(service_id) and not alert.is_resolved:
                return alert
        return None

    def create_alert(self, alert: Alert) -> Alert:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO alerts (
                  id, user_id, severity, alert_type, title, description, integration_type,
                  is_dismissed, is_read, metadata_json, created_at_ts
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    alert.id,
                    alert.user_id,
                    alert.severity,
                    alert.alert_type,
                    alert.title,
                    alert.description,
                    alert.integration_type,
                    1 if alert.is_dismissed else 0,
                    1 if alert.is_read else 0,
                    _json_dumps(alert.metadata or {}),
                    float(alert.created_at_ts),
                ),
            )
        return alert

    def update_alert(self, alert_id: str, fields: dict[str, Any]) -> bool:
        unknown = set(fields) - ALERT_MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Refusing to update alert columns: {sorted(unknown)}")
        if not fields:
            return False
        assignments: list[str] = []
        params: list[Any] = []
        for key in sorted(fields):
            value = fields[key]
            if key == "metadata":
                assignments.append("metadata_json=?")
                params.append(_json_dumps(value or {}))
            elif key in {"is_dismissed", "is_read"}:
                assignments.append(f"{key}=?")
                params.append(1 if value else 0)
            else:
                assignments.append(f"{key}=?")
                params.append(value)
        params.append(alert_id)
        with self._session() as conn:
            res = conn.execute(f"UPDATE alerts SET {', '.join(assignments)} WHERE id=?", params)
            return int(res.rowcount or 0) > 0

    def get_alert(self, alert_id: str) -> Alert | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM alerts WHERE id=?", (alert_id,)).fetchone()
        return _row_to_alert(row) if row else None

    def list_alerts(self, *, limit: int = 50, service_id: str | None = None) -> list[Alert]:
        where = ""
        params: list[Any] = []
        if service_id is not None:
            where = "WHERE json_extract(metadata_json, '$.service_id') = ?"
            params.append(str(service_id))
        params.append(self._cap(limit))
        with self._session() as conn:
            rows = conn.execute(
                f"SELECT * FROM alerts {where} ORDER BY created_at_ts DESC LIMIT ?",
                params,
            ).fetchall()
        return [_row_to_alert(r) for r in rows]
