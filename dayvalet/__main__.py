"""Command line entry point: ``python -m dayvalet config.yaml``."""

import argparse
import asyncio
import logging
import sys

from .app import DayValet
from .errors import ConfigError

logger = logging.getLogger("dayvalet")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="dayvalet", description="Run the DayValet auto-message engine.")
    parser.add_argument("config", help="Path to the YAML configuration file")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    args = parser.parse_args(argv)

    try:
        app = DayValet(args.config)
    except ConfigError as e:
        logging.basicConfig(level=logging.ERROR)
        logger.error(f"Configuration error: {e}")
        return 2

    logging.basicConfig(
        level=(args.log_level or app.config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":
    sys.exit(main())
