from __future__ import annotations

import asyncio
import ssl
from pathlib import Path

import pytest
import pytest_asyncio

from service_checks.errors import SSLInspectionError
from service_checks.tls_inspector import (
    inspect_certificate,
    parse_cert_issuer,
    parse_cert_not_after,
    tls_host_port_from_url,
)


def test_tls_helpers_parse_and_host_port() -> None:
    assert tls_host_port_from_url("http://example.com") is None
    assert tls_host_port_from_url("https://example.com") == ("example.com", 443)
    assert tls_host_port_from_url("https://example.com:444/path?q=1") == ("example.com", 444)
    assert tls_host_port_from_url("https://") is None

    dt = parse_cert_not_after({"notAfter": "Feb  6 12:00:00 2026 GMT"})
    assert dt is not None
    assert dt.tzinfo is not None
    assert (dt.year, dt.month, dt.day) == (2026, 2, 6)
    assert parse_cert_not_after({"notAfter": "garbage"}) is None
    assert parse_cert_not_after({}) is None


def test_parse_cert_issuer_prefers_organization() -> None:
    cert = {
        "issuer": (
            (("countryName", "US"),),
            (("organizationName", "Let's Encrypt"),),
            (("commonName", "R11"),),
        )
    }
    assert parse_cert_issuer(cert) == "Let's Encrypt"
    assert parse_cert_issuer({"issuer": ((("commonName", "Internal CA"),),)}) == "Internal CA"
    assert parse_cert_issuer({}) is None


@pytest.mark.asyncio
async def test_inspect_certificate_skips_plain_http(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fail(*args, **kwargs):
        raise AssertionError("must not connect for http targets")

    monkeypatch.setattr("service_checks.tls_inspector._fetch_peer_certificate", fail)
    assert await inspect_certificate("http://example.com") is None


@pytest.mark.asyncio
async def test_inspect_certificate_swallows_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_fetch(host: str, port: int, *, timeout_seconds: float):
        raise SSLInspectionError("SSLCertVerificationError: certificate has expired")

    monkeypatch.setattr("service_checks.tls_inspector._fetch_peer_certificate", fake_fetch)
    assert await inspect_certificate("https://expired.example", timeout_seconds=1.0) is None


@pytest.mark.asyncio
async def test_inspect_certificate_missing_not_after_is_swallowed(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_fetch(host: str, port: int, *, timeout_seconds: float):
        return {"subject": ((("commonName", host),),)}

    monkeypatch.setattr("service_checks.tls_inspector._fetch_peer_certificate", fake_fetch)
    assert await inspect_certificate("https://odd.example") is None


@pytest.mark.asyncio
async def test_inspect_certificate_extracts_expiry_and_issuer(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: dict[str, object] = {}

    async def fake_fetch(host: str, port: int, *, timeout_seconds: float):
        seen.update(host=host, port=port, timeout=timeout_seconds)
        return {
            "notAfter": "Jan  1 00:00:00 2099 GMT",
            "issuer": ((("organizationName", "Example CA"),),),
        }

    monkeypatch.setattr("service_checks.tls_inspector._fetch_peer_certificate", fake_fetch)
    info = await inspect_certificate("https://svc.example:8443/health", timeout_seconds=3.0)
    assert info is not None
    assert seen == {"host": "svc.example", "port": 8443, "timeout": 3.0}
    assert info.issuer == "Example CA"
    assert info.expiry_iso.startswith("2099-01-01T00:00:00")
    assert info.days_remaining > 365


DATA_DIR = Path(__file__).resolve().parent / "data"


@pytest_asyncio.fixture
async def tls_server():
    server_ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    server_ctx.load_cert_chain(DATA_DIR / "server.pem", DATA_DIR / "server.key")

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            await reader.read()
        except (OSError, ssl.SSLError):
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(handle, host="127.0.0.1", port=0, ssl=server_ctx)
    port = server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_inspect_certificate_reads_real_handshake(tls_server: int, monkeypatch: pytest.MonkeyPatch) -> None:
    real_default_context = ssl.create_default_context

    def trusting_test_ca(*args, **kwargs):
        return real_default_context(cafile=str(DATA_DIR / "ca.pem"))

    monkeypatch.setattr(ssl, "create_default_context", trusting_test_ca)
    info = await inspect_certificate(f"https://127.0.0.1:{tls_server}/health", timeout_seconds=5.0)
    assert info is not None
    assert (info.host, info.port) == ("127.0.0.1", tls_server)
    assert info.issuer == "Service Checks Test CA"
    assert info.expiry_iso.startswith("2056-")
    assert info.days_remaining > 365


@pytest.mark.asyncio
async def test_inspect_certificate_untrusted_chain_returns_none(tls_server: int) -> None:
    assert await inspect_certificate(f"https://127.0.0.1:{tls_server}/", timeout_seconds=5.0) is None


@pytest.mark.asyncio
async def test_inspect_certificate_refused_connection_returns_none() -> None:
    # Port 9 (discard) is closed on test hosts.
    assert await inspect_certificate("https://127.0.0.1:9/", timeout_seconds=2.0) is None
