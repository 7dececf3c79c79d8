"""Run the Smart Receipts API with uvicorn."""

from __future__ import annotations

import os
from dataclasses import dataclass

import uvicorn

from smart_receipts.config import get_settings

APP_FACTORY = "smart_receipts.server.app:create_app"


@dataclass(frozen=True)
class ServerOptions:
    host: str = "127.0.0.1"
    port: int = 8000
    reload: bool = False
    workers: int = 1

    @classmethod
    def from_env(cls) -> "ServerOptions":
        try:
            port = int(os.environ.get("SMART_RECEIPTS_SERVER_PORT", "8000"))
            workers = int(os.environ.get("SMART_RECEIPTS_SERVER_WORKERS", "1"))
        except ValueError as exc:
            raise SystemExit(f"Invalid server port/worker setting: {exc}") from exc
        reload_enabled = os.environ.get("RELOAD") == "1"
        if reload_enabled and workers > 1:
            raise SystemExit("Use a single worker when RELOAD=1.")
        return cls(
            host=os.environ.get("SMART_RECEIPTS_SERVER_HOST", "127.0.0.1"),
            port=port,
            reload=reload_enabled,
            workers=max(workers, 1),
        )


def main() -> None:
    """Entry point for the `smart-receipts-server` script."""

    options = ServerOptions.from_env()
    settings = get_settings()
    # create_app installs its own handlers; keep uvicorn from replacing them.
    uvicorn.run(
        APP_FACTORY,
        factory=True,
        host=options.host,
        port=options.port,
        reload=options.reload,
        workers=options.workers,
        log_config=None,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
