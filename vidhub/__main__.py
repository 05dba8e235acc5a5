"""Process entry point — `python -m vidhub` / `vidhub` console script.

Runs the Primary: configures logging, supervises the worker fleet,
and exits with the code the coordinator resolved.
"""

import asyncio
import logging
import sys

from vidhub.config import get_settings
from vidhub.cluster.primary import PrimaryCoordinator
from vidhub.infrastructure.observability import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format, settings.log_dir)
    coordinator = PrimaryCoordinator(settings)
    sys.exit(asyncio.run(coordinator.run()))


if __name__ == "__main__":
    main()
