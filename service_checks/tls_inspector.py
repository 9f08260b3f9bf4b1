from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

from service_checks.errors import SSLInspectionError


LOGGER = logging.getLogger("service-checks")


@dataclass(frozen=True)
class TlsCertificateInfo:
    host: str
    port: int
    expiry_iso: str
    days_remaining: float
    issuer: str | None


def tls_host_port_from_url(url: str) -> tuple[str, int] | None:
    try:
        parts = urlsplit(str(url or "").strip())
        port = int(parts.port or 443)
    except ValueError:
        return None
    if (parts.scheme or "").lower() != "https":
        return None
    host = (parts.hostname or "").strip()
    if not host:
        return None
    return host, port


def parse_cert_not_after(cert: dict[str, Any]) -> datetime | None:
    # ssl.getpeercert() returns e.g. "Feb  6 12:00:00 2026 GMT"
    s = cert.get("notAfter")
    if not isinstance(s, str) or not s.strip():
        return None
    try:
        dt = datetime.strptime(s.strip(), "%b %d %H:%M:%S %Y %Z")
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_cert_issuer(cert: dict[str, Any]) -> str | None:
    # issuer is a tuple of RDNs: ((("countryName", "US"),), (("organizationName", "Let's Encrypt"),), ...)
    fields: dict[str, str] = {}
    for rdn in cert.get("issuer") or ():
        for item in rdn:
            if isinstance(item, (tuple, list)) and len(item) == 2:
                fields.setdefault(str(item[0]), str(item[1]))
    return fields.get("organizationName") or fields.get("commonName")


async def _fetch_peer_certificate(host: str, port: int, *, timeout_seconds: float) -> dict[str, Any]:
    ctx = ssl.create_default_context()
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED

    writer = None
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port, ssl=ctx, server_hostname=host),
            timeout=max(0.5, float(timeout_seconds)),
        )
        sslobj = writer.get_extra_info("ssl_object")
        cert = sslobj.getpeercert() if sslobj else None
    except (OSError, ValueError, asyncio.TimeoutError) as exc:
        raise SSLInspectionError(f"{type(exc).__name__}: {exc}") from exc
    finally:
        if writer is not None:
            try:
                writer.close()
                await writer.wait_closed()
            except Exception:
                pass

    if not isinstance(cert, dict) or not cert:
        raise SSLInspectionError("empty_peer_certificate")
    return cert


async def inspect_certificate(url: str, *, timeout_seconds: float = 5.0) -> TlsCertificateInfo | None:
    """
    Open an independent TLS connection to an https target and read its certificate.

    Purely informational: any failure is swallowed and None is returned, so the
    caller leaves its cached SSL fields untouched for this tick.
    """
    target = tls_host_port_from_url(url)
    if target is None:
        return None
    host, port = target

    try:
        cert = await _fetch_peer_certificate(host, port, timeout_seconds=timeout_seconds)
        not_after = parse_cert_not_after(cert)
        if not_after is None:
            raise SSLInspectionError("missing_notAfter")
    except SSLInspectionError as exc:
        LOGGER.debug("TLS inspection failed host=%s port=%s error=%s", host, port, exc)
        return None

    days_remaining = (not_after - datetime.now(timezone.utc)).total_seconds() / 86400.0
    return TlsCertificateInfo(
        host=host,
        port=int(port),
        expiry_iso=not_after.isoformat(),
        days_remaining=days_remaining,
        issuer=parse_cert_issuer(cert),
    )
