from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import time
from pathlib import Path

from service_checks.aggregator import recompute_service_cache
from service_checks.db import SqliteCheckStore
from service_checks.errors import PersistenceError
from service_checks.roster import load_config, seed_roster
from service_checks.scheduler import run_tick
from service_checks.settings import EngineSettings


LOGGER = logging.getLogger("service-checks")


def recompute_all(store: SqliteCheckStore, settings: EngineSettings) -> int:
    now_ts = time.time()
    repaired = 0
    for service in store.list_services():
        try:
            if recompute_service_cache(store, service.id, settings=settings, now_ts=now_ts) is not None:
                repaired += 1
        except PersistenceError:
            LOGGER.exception("Cache recompute failed service_id=%s", service.id)
    return repaired


def run_once(*, settings: EngineSettings, force: bool, roster_path: Path | None, recompute: bool) -> int:
    store = SqliteCheckStore(settings)

    if roster_path is not None:
        seed_roster(store, load_config(roster_path))

    if recompute:
        repaired = recompute_all(store, settings)
        print(json.dumps({"recomputed": repaired}))
        return 0

    try:
        tick = asyncio.run(run_tick(store, settings, force=force))
    except PersistenceError as exc:
        LOGGER.error("Failed to read service roster error=%s", exc)
        return 1
    print(json.dumps(tick.to_dict(), ensure_ascii=False))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run one service health-check tick")
    parser.add_argument("--force", action="store_true", help="Check every active service regardless of interval")
    parser.add_argument("--roster", default=None, help="YAML roster to upsert into the store before the tick")
    parser.add_argument(
        "--recompute",
        action="store_true",
        help="Rebuild cached service fields from the check log instead of probing",
    )
    parser.add_argument("--db-path", default=None, help="SQLite path (overrides UPTIME_DB_PATH)")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (INFO, WARNING, ...)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    settings = EngineSettings()
    if args.db_path:
        settings = EngineSettings(db_path=str(args.db_path))

    return run_once(
        settings=settings,
        force=bool(args.force),
        roster_path=Path(args.roster) if args.roster else None,
        recompute=bool(args.recompute),
    )


if __name__ == "__main__":
    raise SystemExit(main())
