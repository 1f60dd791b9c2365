"""Run the backend with uvicorn using environment settings."""

from __future__ import annotations

import logging

import uvicorn

from .api import create_app
from .config import load_settings
from .logconfig import configure_logging

logger = logging.getLogger(__name__)


def main() -> int:
    settings = load_settings()
    configure_logging(settings.log_level)
    app = create_app(settings=settings)
    logger.info(
        "Starting on %s:%d (store=%s, combat shared=%s)",
        settings.host,
        settings.port,
        app.state.store.backend_name,
        settings.combat_shared,
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
