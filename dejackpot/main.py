"""Helper worker entry point."""

from __future__ import annotations

import asyncio

import structlog
from pydantic import ValidationError

from dejackpot.config import get_settings
from dejackpot.errors import ConfigError, StartupError
from dejackpot.logging_setup import configure_logging
from dejackpot.worker import Worker

logger = structlog.get_logger()


async def _run() -> int:
    worker = Worker(get_settings())
    try:
        await worker.run()
    except (ConfigError, StartupError) as exc:
        logger.critical("worker.startup_failed", code=exc.code, error=str(exc))
        return 1
    return 1 if worker.stopped_on_error else 0


def main() -> int:
    try:
        settings = get_settings()
    except (ConfigError, ValidationError) as exc:
        logger.critical("config.invalid", error=str(exc))
        return 1

    configure_logging(settings.log)
    return asyncio.run(_run())


if __name__ == "__main__":
    raise SystemExit(main())
