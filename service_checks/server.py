from __future__ import annotations

import os

import uvicorn

from service_checks.app import create_app
from service_checks.settings import EngineSettings


def main() -> None:
    host = os.getenv("UPTIME_HOST", "0.0.0.0").strip() or "0.0.0.0"
    port = int(os.getenv("UPTIME_PORT", "8120"))
    settings = EngineSettings()
    app = create_app(settings)
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
