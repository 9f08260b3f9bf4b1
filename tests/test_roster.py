from __future__ import annotations

from pathlib import Path

import pytest

from service_checks.db import SqliteCheckStore
from service_checks.roster import load_config, normalize_service_entries, seed_roster


def test_example_roster_loads() -> None:
    config_path = Path(__file__).resolve().parents[1] / "service_checks" / "roster.example.yaml"
    config = load_config(config_path)
    entries = normalize_service_entries(config["services"])
    assert entries
    for entry in entries:
        assert entry.url.startswith(("http://", "https://"))
        assert entry.check_interval >= 1


def test_normalize_service_entries_shapes() -> None:
    entries = normalize_service_entries(
        [
            "https://a.example/health",
            {"id": "b", "name": "B", "url": "https://b.example", "check_interval": 2, "content_keyword": " OK "},
            {"url": "http://c.example", "enabled": False, "user_id": "u1"},
        ]
    )
    a, b, c = entries
    assert (a.id, a.name, a.check_interval, a.is_paused) == (None, "a.example", 5, False)
    assert (b.id, b.name, b.check_interval, b.content_keyword) == ("b", "B", 2, "OK")
    assert (c.is_paused, c.user_id) == (True, "u1")


@pytest.mark.parametrize(
    ("entry", "message"),
    [
        ({"name": "x"}, "services[0].url is required"),
        ({"url": "ftp://x.example"}, "must be an absolute http(s) URL"),
        ({"url": "http://127.0.0.1:99999/"}, "services[0].url has an invalid port"),
        ("https://x.example:0x50/", "services[0] has an invalid port"),
        ({"url": "https://x.example", "check_interval": 0}, "check_interval must be >= 1"),
        ({"url": "https://x.example", "check_interval": "soon"}, "check_interval must be an integer"),
        (42, "must be a string or mapping"),
    ],
)
def test_normalize_service_entries_rejects_invalid(entry, message: str) -> None:
    with pytest.raises(ValueError) as excinfo:
        normalize_service_entries([entry])
    assert message in str(excinfo.value)


def test_load_config_requires_mapping(tmp_path: Path) -> None:
    p = tmp_path / "roster.yaml"
    p.write_text("- https://a.example\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(p)


def test_seed_roster_is_idempotent_and_keeps_cached_fields(store: SqliteCheckStore) -> None:
    config = {"services": ["https://a.example", {"id": "b", "url": "https://b.example", "check_interval": 3}]}
    first = seed_roster(store, config)
    assert [s.status for s in first] == ["pending", "pending"]

    store.update_service(first[0].id, {"status": "up", "uptime_percentage": 99.5, "last_check_ts": 123.0})

    config["services"][1]["check_interval"] = 7
    second = seed_roster(store, config)
    assert [s.id for s in second] == [s.id for s in first]
    assert len(store.list_services()) == 2

    a = store.get_service(first[0].id)
    assert (a.status, a.uptime_percentage, a.last_check_ts) == ("up", 99.5, 123.0)
    assert store.get_service("b").check_interval == 7


def test_seed_roster_requires_services(store: SqliteCheckStore) -> None:
    with pytest.raises(ValueError):
        seed_roster(store, {"services": []})
