from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable

import httpx

from service_checks.aggregator import compute_aggregates
from service_checks.classify import classify
from service_checks.db import SqliteCheckStore
from service_checks.errors import PersistenceError
from service_checks.incidents import apply_transition
from service_checks.models import STATUS_UP, Check, Service, ServiceTickResult, TickResult
from service_checks.probe import probe_url
from service_checks.settings import EngineSettings
from service_checks.tls_inspector import TlsCertificateInfo, inspect_certificate


LOGGER = logging.getLogger("service-checks")

TlsInspector = Callable[..., Awaitable[TlsCertificateInfo | None]]


def next_checked_at(now_ts: float, last_check_ts: float | None) -> float:
    # Keep a service's check timestamps strictly increasing even across a clock step back.
    if last_check_ts is not None and float(now_ts) <= float(last_check_ts):
        return float(last_check_ts) + 0.001
    return float(now_ts)


def select_due(services: list[Service], *, now_ts: float, force: bool) -> list[Service]:
    return [s for s in services if not s.is_paused and s.is_due(now_ts, force=force)]


async def check_service(
    service: Service,
    *,
    store: SqliteCheckStore,
    settings: EngineSettings,
    client: httpx.AsyncClient,
    now_fn: Callable[[], float] = time.time,
    tls_inspector: TlsInspector = inspect_certificate,
) -> ServiceTickResult | None:
    """
    Probe one service and run its strictly ordered pipeline:
    probe -> validate -> tls -> append check -> aggregate -> transition -> service write.

    The check is appended before anything status-dependent. A persistence failure after
    that point skips the remaining steps for this service only; the next tick (or a cache
    recompute) repairs the derived fields from the check log.
    Returns None when not even the check could be recorded.
    """
    probe = await probe_url(client, service.url, timeout_seconds=settings.probe_timeout_seconds)
    outcome = classify(probe, content_keyword=service.content_keyword)

    tls: TlsCertificateInfo | None = None
    if settings.tls_enabled and service.url.lower().startswith("https://"):
        try:
            tls = await tls_inspector(service.url, timeout_seconds=settings.tls_timeout_seconds)
        except Exception as exc:
            LOGGER.warning(
                "TLS inspection crashed; ssl fields left as-is service_id=%s error=%s: %s",
                service.id,
                type(exc).__name__,
                exc,
            )
            tls = None

    check = Check(
        id=str(uuid.uuid4()),
        service_id=service.id,
        user_id=service.user_id,
        status=outcome.status,
        response_time=outcome.response_time,
        status_code=outcome.status_code,
        error_message=outcome.error_message,
        ttfb=outcome.ttfb,
        response_size=outcome.response_size,
        checked_at_ts=next_checked_at(now_fn(), service.last_check_ts),
        check_region=settings.check_region,
    )
    try:
        await asyncio.to_thread(store.append_check, check)
    except PersistenceError:
        LOGGER.exception("Check append failed; skipping service for this tick service_id=%s", service.id)
        return None

    level = logging.INFO if check.status == STATUS_UP else logging.WARNING
    LOGGER.log(
        level,
        "Service checked service_id=%s status=%s status_code=%s response_ms=%s ttfb_ms=%s error=%s",
        service.id,
        check.status,
        check.status_code,
        check.response_time,
        check.ttfb,
        check.error_message,
    )
    result = ServiceTickResult(service_id=service.id, status=check.status, response_time=check.response_time)

    try:
        aggregates = await asyncio.to_thread(
            compute_aggregates, store, service.id, settings=settings, now_ts=check.checked_at_ts
        )
        # `service.status` is still the previous tick's status here.
        await asyncio.to_thread(apply_transition, store, service, check, scan_limit=settings.alert_scan_limit)

        fields: dict[str, Any] = {
            "status": check.status,
            "last_check_ts": check.checked_at_ts,
            "uptime_percentage": aggregates.uptime.uptime_percentage,
            "avg_response_time": aggregates.avg_response_time,
        }
        if tls is not None:
            fields["ssl_expiry_date"] = tls.expiry_iso
            fields["ssl_issuer"] = tls.issuer
        await asyncio.to_thread(store.update_service, service.id, fields)
    except PersistenceError:
        LOGGER.exception(
            "Persistence failed after check append; remaining steps skipped service_id=%s check_id=%s",
            service.id,
            check.id,
        )
    return result


async def run_tick(
    store: SqliteCheckStore,
    settings: EngineSettings,
    *,
    force: bool = False,
    client: httpx.AsyncClient | None = None,
    now_fn: Callable[[], float] = time.time,
    tls_inspector: TlsInspector = inspect_certificate,
) -> TickResult:
    """
    One pass over the roster.

    Listing the roster is the only fatal step. Services are probed with at most
    `check_concurrency` in flight; when `tick_deadline_seconds` elapses, unfinished
    services are cancelled and simply stay due for the next tick.
    """
    services = await asyncio.to_thread(store.list_active_services)
    tick_started = now_fn()
    due = select_due(services, now_ts=tick_started, force=force)
    skipped = len(services) - len(due)
    if not due:
        LOGGER.info("No services due services=%s force=%s", len(services), force)
        return TickResult(checked=0, results=[], skipped=skipped)

    LOGGER.info("Running check tick due=%s skipped=%s force=%s", len(due), skipped, force)

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(headers={"User-Agent": settings.user_agent})

    semaphore = asyncio.Semaphore(max(1, int(settings.check_concurrency)))

    async def _safe_check(service: Service) -> ServiceTickResult | None:
        async with semaphore:
            try:
                return await check_service(
                    service,
                    store=store,
                    settings=settings,
                    client=client,
                    now_fn=now_fn,
                    tls_inspector=tls_inspector,
                )
            except Exception as exc:
                LOGGER.exception("Service check crashed service_id=%s error=%s: %s", service.id, type(exc).__name__, exc)
                return None

    try:
        tasks = [asyncio.create_task(_safe_check(s)) for s in due]
        deadline = float(settings.tick_deadline_seconds)
        if deadline > 0:
            _done, pending = await asyncio.wait(tasks, timeout=deadline)
        else:
            await asyncio.wait(tasks)
            pending = set()

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            LOGGER.warning("Tick deadline reached; unfinished services left due unfinished=%s", len(pending))
    finally:
        if owns_client:
            await client.aclose()

    results: list[ServiceTickResult] = []
    failed = 0
    for task in tasks:
        if task.cancelled():
            continue
        outcome = task.result()
        if outcome is None:
            failed += 1
        else:
            results.append(outcome)

    LOGGER.info(
        "Check tick finished checked=%s failed=%s unfinished=%s elapsed_s=%s",
        len(results),
        failed,
        len(pending),
        round(now_fn() - tick_started, 3),
    )
    return TickResult(checked=len(results), results=results, skipped=skipped, failed=failed, unfinished=len(pending))
