from __future__ import annotations

import dataclasses
import itertools
import logging
import uuid
from typing import Any

from service_checks.aggregator import round_half_up
from service_checks.db import SqliteCheckStore
from service_checks.models import (
    ALERT_TYPE_DOWNTIME,
    CHECK_STATUSES,
    INTEGRATION_TYPE_SERVICE,
    SEVERITY_CRITICAL,
    STATUS_DOWN,
    STATUS_UP,
    Alert,
    Check,
    Service,
    iso_to_ts,
    ts_to_iso,
)


LOGGER = logging.getLogger("service-checks")

ACTION_NOOP = "noop"
ACTION_OPEN_ALERT = "open_alert"
ACTION_CLOSE_ALERT = "close_alert"


def _build_transition_table() -> dict[tuple[str, str], str]:
    table = {edge: ACTION_NOOP for edge in itertools.product(CHECK_STATUSES, CHECK_STATUSES)}
    table[(STATUS_UP, STATUS_DOWN)] = ACTION_OPEN_ALERT
    table[(STATUS_DOWN, STATUS_UP)] = ACTION_CLOSE_ALERT
    return table


# (previous status, new status) -> action. Edges into or out of degraded are no-ops here.
TRANSITIONS: dict[tuple[str, str], str] = _build_transition_table()


def transition_action(previous_status: str | None, new_status: str) -> str:
    # Statuses outside the table (e.g. a never-probed "pending" service) never alert.
    return TRANSITIONS.get((str(previous_status or ""), str(new_status)), ACTION_NOOP)


def downtime_minutes(*, down_since_ts: float, resolved_ts: float) -> int:
    return max(round_half_up((float(resolved_ts) - float(down_since_ts)) / 60.0), 1)


def _build_down_alert_description(check: Check) -> str:
    if check.error_message:
        return f"Error: {check.error_message}"
    return f"HTTP {check.status_code} - Service is not responding"


def open_downtime_alert(store: SqliteCheckStore, service: Service, check: Check, *, scan_limit: int) -> Alert | None:
    """
    Create the critical downtime alert for an up -> down edge.

    Lookup-before-create keeps at most one open downtime alert per service; if one
    is already open, nothing is created.
    """
    existing = store.find_open_down_alert(service.id, scan_limit=scan_limit)
    if existing is not None:
        LOGGER.info("Downtime alert already open service_id=%s alert_id=%s", service.id, existing.id)
        return None

    alert = Alert(
        id=str(uuid.uuid4()),
        severity=SEVERITY_CRITICAL,
        alert_type=ALERT_TYPE_DOWNTIME,
        title=f"{service.name}: Service is down",
        description=_build_down_alert_description(check),
        is_dismissed=False,
        created_at_ts=check.checked_at_ts,
        metadata={
            "service_id": service.id,
            "url": service.url,
            "down_since": ts_to_iso(check.checked_at_ts),
        },
        user_id=service.user_id,
        integration_type=INTEGRATION_TYPE_SERVICE,
    )
    store.create_alert(alert)
    LOGGER.warning("Downtime alert opened service_id=%s alert_id=%s url=%s", service.id, alert.id, service.url)
    return alert


def close_downtime_alert(
    store: SqliteCheckStore,
    service: Service,
    *,
    resolved_ts: float,
    scan_limit: int,
) -> Alert | None:
    """Dismiss and enrich the open downtime alert on the matching down -> up edge."""
    alert = store.find_open_down_alert(service.id, scan_limit=scan_limit)
    if alert is None:
        LOGGER.info("No open downtime alert to resolve service_id=%s", service.id)
        return None

    down_since_ts = iso_to_ts(alert.metadata.get("down_since"))
    if down_since_ts is None:
        down_since_ts = alert.created_at_ts
    metadata: dict[str, Any] = {
        **alert.metadata,
        "resolved_at": ts_to_iso(resolved_ts),
        "downtime_minutes": downtime_minutes(down_since_ts=down_since_ts, resolved_ts=resolved_ts),
    }
    store.update_alert(alert.id, {"is_dismissed": True, "metadata": metadata})
    LOGGER.info(
        "Downtime alert resolved service_id=%s alert_id=%s downtime_minutes=%s",
        service.id,
        alert.id,
        metadata["downtime_minutes"],
    )
    return dataclasses.replace(alert, is_dismissed=True, metadata=metadata)


def apply_transition(
    store: SqliteCheckStore,
    service: Service,
    check: Check,
    *,
    scan_limit: int = 10,
) -> tuple[str, Alert | None]:
    """
    Run the alert side effect for `service.status` (read before this tick's write) -> `check.status`.
    """
    action = transition_action(service.status, check.status)
    if action == ACTION_OPEN_ALERT:
        return action, open_downtime_alert(store, service, check, scan_limit=scan_limit)
    if action == ACTION_CLOSE_ALERT:
        return action, close_downtime_alert(store, service, resolved_ts=check.checked_at_ts, scan_limit=scan_limit)
    return action, None
