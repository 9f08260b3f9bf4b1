from __future__ import annotations

import logging
import time

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from service_checks.aggregator import PERIOD_SECONDS, uptime_for_period
from service_checks.db import SqliteCheckStore
from service_checks.errors import PersistenceError
from service_checks.models import ts_to_iso
from service_checks.scheduler import TlsInspector, run_tick
from service_checks.schema import (
    AlertOut,
    CheckOut,
    CheckServicesRequest,
    CheckServicesResponse,
    ErrorResponse,
    ServiceResult,
    UptimeResponse,
)
from service_checks.settings import EngineSettings
from service_checks.tls_inspector import inspect_certificate


LOGGER = logging.getLogger("service-checks")

INTERNAL_ERROR_BODY = {"error": "An error occurred processing your request", "code": "INTERNAL_ERROR"}


def create_app(
    settings: EngineSettings | None = None,
    *,
    store: SqliteCheckStore | None = None,
    client: httpx.AsyncClient | None = None,
    tls_inspector: TlsInspector = inspect_certificate,
) -> FastAPI:
    app = FastAPI(title="Service Checks", version="0.1.0")
    app.state.settings = settings or EngineSettings()
    app.state.store = store or SqliteCheckStore(app.state.settings)

    @app.get("/healthz")
    def healthz() -> dict[str, bool]:
        return {"ok": True}

    @app.post(
        "/check-services",
        response_model=CheckServicesResponse,
        response_model_exclude_none=True,
        responses={500: {"model": ErrorResponse}},
    )
    async def check_services(payload: CheckServicesRequest | None = None):
        force = bool(payload.force) if payload is not None else False
        try:
            tick = await run_tick(
                app.state.store,
                app.state.settings,
                force=force,
                client=client,
                tls_inspector=tls_inspector,
            )
        except PersistenceError as exc:
            LOGGER.error("check-services error: %s", exc)
            return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)

        if tick.checked == 0 and tick.skipped == 0 and tick.failed == 0 and tick.unfinished == 0:
            return CheckServicesResponse(checked=0, results=[], message="No active services to check")
        return CheckServicesResponse(
            checked=tick.checked,
            results=[ServiceResult(**r.to_dict()) for r in tick.results],
        )

    @app.get("/services/{service_id}/uptime", response_model=UptimeResponse)
    def service_uptime(service_id: str, period: str = Query("24h")) -> UptimeResponse:
        if period not in PERIOD_SECONDS:
            raise HTTPException(status_code=400, detail=f"invalid_period: expected one of {sorted(PERIOD_SECONDS)}")
        store: SqliteCheckStore = app.state.store
        if store.get_service(service_id) is None:
            raise HTTPException(status_code=404, detail="service_not_found")
        window = uptime_for_period(store, service_id, period=period, now_ts=time.time())
        return UptimeResponse(
            service_id=service_id,
            period=period,
            uptime_percentage=window.uptime_percentage,
            total=window.total,
            up=window.up,
        )

    @app.get("/services/{service_id}/checks", response_model=list[CheckOut])
    def service_checks(service_id: str, limit: int = Query(30, ge=1, le=1000)) -> list[CheckOut]:
        store: SqliteCheckStore = app.state.store
        return [
            CheckOut(
                id=str(c.id),
                service_id=c.service_id,
                status=c.status,
                response_time=c.response_time,
                status_code=c.status_code,
                error_message=c.error_message,
                ttfb=c.ttfb,
                response_size=c.response_size,
                checked_at=ts_to_iso(c.checked_at_ts) or "",
                check_region=c.check_region,
            )
            for c in store.list_checks(service_id, limit=limit)
        ]

    @app.get("/alerts", response_model=list[AlertOut])
    def alerts(limit: int = Query(50, ge=1, le=1000), service_id: str | None = None) -> list[AlertOut]:
        store: SqliteCheckStore = app.state.store
        return [
            AlertOut(
                id=a.id,
                severity=a.severity,
                alert_type=a.alert_type,
                title=a.title,
                description=a.description,
                is_dismissed=a.is_dismissed,
                created_at=ts_to_iso(a.created_at_ts) or "",
                metadata=a.metadata,
            )
            for a in store.list_alerts(limit=limit, service_id=service_id)
        ]

    return app
