from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

import httpx

from service_checks.errors import NetworkError
from service_checks.models import STATUS_DOWN, STATUS_UP, ProbeResult


@dataclass(frozen=True)
class _RawResponse:
    status_code: int
    body: str
    response_size: int
    ttfb_ms: float
    total_ms: float


def timeout_message(timeout_seconds: float) -> str:
    return f"Request timeout (>{float(timeout_seconds):g}s)"


def _transport_error_message(exc: BaseException) -> str:
    text = str(exc or "").strip()
    if text:
        return f"{type(exc).__name__}: {text}"[:500]
    return type(exc).__name__


def classify_status_code(status_code: int | None) -> str:
    # 4xx is intentionally "up": the server answered.
    if status_code is not None and 200 <= int(status_code) < 500:
        return STATUS_UP
    return STATUS_DOWN


async def _fetch(client: httpx.AsyncClient, url: str, *, timeout_seconds: float) -> _RawResponse:
    started = time.perf_counter()

    async def _get() -> _RawResponse:
        async with client.stream("GET", url, follow_redirects=True, timeout=timeout_seconds) as resp:
            ttfb_ms = (time.perf_counter() - started) * 1000.0
            raw = await resp.aread()
            total_ms = (time.perf_counter() - started) * 1000.0
            return _RawResponse(
                status_code=resp.status_code,
                body=resp.text or "",
                response_size=len(raw),
                ttfb_ms=ttfb_ms,
                total_ms=total_ms,
            )

    # httpx timeouts apply per network operation; wait_for caps the whole exchange,
    # including a slowly-drained body.
    try:
        return await asyncio.wait_for(_get(), timeout=float(timeout_seconds))
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise NetworkError(timeout_message(timeout_seconds)) from exc
    except httpx.RequestError as exc:
        raise NetworkError(_transport_error_message(exc)) from exc
    except Exception as exc:
        # Invalid URLs, out-of-range ports and socket-level surprises still yield a down check.
        raise NetworkError(_transport_error_message(exc)) from exc


async def probe_url(client: httpx.AsyncClient, url: str, *, timeout_seconds: float = 10.0) -> ProbeResult:
    """
    One bounded GET against `url`, following redirects.

    response_time is the time to fully drain the body; ttfb is the time until
    response headers arrived. Transport failures never raise: they come back as
    a `down` result carrying the normalized error message.
    """
    started = time.perf_counter()
    try:
        raw = await _fetch(client, url, timeout_seconds=timeout_seconds)
    except NetworkError as exc:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        return ProbeResult(
            status=STATUS_DOWN,
            response_time=int(round(elapsed_ms)),
            status_code=None,
            error_message=str(exc),
            ttfb=None,
            response_size=None,
        )

    return ProbeResult(
        status=classify_status_code(raw.status_code),
        response_time=int(round(raw.total_ms)),
        status_code=raw.status_code,
        error_message=None,
        ttfb=int(round(raw.ttfb_ms)),
        response_size=raw.response_size,
        body=raw.body,
    )
