"""Temporal worker entry point for production use."""

from __future__ import annotations

import asyncio
import logging
import sys

from clinic_access.core.config import get_settings
from clinic_access.core.logging import configure_logging
from clinic_access.workflow_orchestration.worker import run_worker


def main() -> None:
    """Run the Temporal worker with the service logging configuration."""

    configure_logging(get_settings())
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        logging.info("temporal_worker_stopped")
    except Exception:
        logging.exception("temporal_worker_failed")
        sys.exit(1)


if __name__ == "__main__":
    main()
