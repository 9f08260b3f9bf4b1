from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CheckServicesRequest(BaseModel):
    force: bool = False


class ServiceResult(BaseModel):
    service_id: str
    status: str
    response_time: int


class CheckServicesResponse(BaseModel):
    checked: int
    results: list[ServiceResult] = Field(default_factory=list)
    message: str | None = None


class ErrorResponse(BaseModel):
    error: str
    code: str


class UptimeResponse(BaseModel):
    service_id: str
    period: str
    uptime_percentage: float
    total: int
    up: int


class CheckOut(BaseModel):
    id: str
    service_id: str
    status: str
    response_time: int
    status_code: int | None = None
    error_message: str | None = None
    ttfb: int | None = None
    response_size: int | None = None
    checked_at: str
    check_region: str | None = None


class AlertOut(BaseModel):
    id: str
    severity: str
    alert_type: str
    title: str
    description: str
    is_dismissed: bool
    created_at: str
    metadata: dict[str, Any] = Field(default_factory=dict)
