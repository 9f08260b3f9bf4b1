from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from service_checks.db import SqliteCheckStore
from service_checks.models import Service


LOGGER = logging.getLogger("service-checks")


@dataclass(frozen=True)
class ServiceEntryConfig:
    id: str | None
    name: str
    url: str
    check_interval: int = 5
    is_paused: bool = False
    content_keyword: str | None = None
    user_id: str | None = None


def load_config(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError("Config YAML must be a mapping")
    return data


def _validate_url(url: str, *, where: str) -> str:
    s = str(url or "").strip()
    parts = urlsplit(s)
    if parts.scheme.lower() not in {"http", "https"} or not parts.hostname:
        raise ValueError(f"{where} must be an absolute http(s) URL, got {s!r}")
    try:
        parts.port  # raises ValueError for out-of-range or non-numeric ports
    except ValueError as exc:
        raise ValueError(f"{where} has an invalid port, got {s!r}") from exc
    return s


def normalize_service_entries(services_cfg: list[Any]) -> list[ServiceEntryConfig]:
    entries: list[ServiceEntryConfig] = []
    for idx, entry in enumerate(services_cfg):
        if isinstance(entry, str):
            url = _validate_url(entry, where=f"services[{idx}]")
            entries.append(ServiceEntryConfig(id=None, name=urlsplit(url).hostname or url, url=url))
            continue

        if not isinstance(entry, dict):
            raise ValueError(f"services[{idx}] must be a string or mapping, got {type(entry).__name__}")

        raw_url = str(entry.get("url") or "").strip()
        if not raw_url:
            raise ValueError(f"services[{idx}].url is required")
        url = _validate_url(raw_url, where=f"services[{idx}].url")

        try:
            interval = int(entry.get("check_interval", 5))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"services[{idx}].check_interval must be an integer number of minutes") from exc
        if interval < 1:
            raise ValueError(f"services[{idx}].check_interval must be >= 1")

        keyword = str(entry.get("content_keyword") or "").strip() or None
        sid = str(entry.get("id") or "").strip() or None
        user_id = str(entry.get("user_id") or "").strip() or None
        name = str(entry.get("name") or "").strip() or (urlsplit(url).hostname or url)

        entries.append(
            ServiceEntryConfig(
                id=sid,
                name=name,
                url=url,
                check_interval=interval,
                is_paused=bool(entry.get("is_paused")) or (entry.get("enabled") is False),
                content_keyword=keyword,
                user_id=user_id,
            )
        )
    return entries


def seed_roster(store: SqliteCheckStore, config: dict[str, Any]) -> list[Service]:
    """
    Upsert every configured service into the store.

    Entries without an explicit `id` are matched to an existing service by URL so that
    re-seeding the same file is idempotent.
    """
    services_cfg = config.get("services", [])
    if not isinstance(services_cfg, list) or not services_cfg:
        raise ValueError("Config must contain a non-empty 'services' list")

    entries = normalize_service_entries(services_cfg)
    existing_by_url = {s.url: s.id for s in store.list_services()}
    seeded: list[Service] = []
    for entry in entries:
        service = store.upsert_service(
            service_id=entry.id or existing_by_url.get(entry.url),
            name=entry.name,
            url=entry.url,
            check_interval=entry.check_interval,
            is_paused=entry.is_paused,
            content_keyword=entry.content_keyword,
            user_id=entry.user_id,
        )
        seeded.append(service)
    LOGGER.info("Seeded roster services=%s paused=%s", len(seeded), sum(1 for s in seeded if s.is_paused))
    return seeded
