"""Command line entry point."""

import asyncio
import logging
import sys
from typing import List, Optional

from jenkins_spot_terminator.config.parser import ConfigError, parse_cli_config
from jenkins_spot_terminator.daemon import EXIT_FATAL, TerminatorDaemon

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def configure_logging(level_name: str) -> logging.Logger:
    """Configure console logging on stderr and return the daemon's logger."""
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        stream=sys.stderr,
    )
    return logging.getLogger("jenkins_spot_terminator")


def main(argv: Optional[List[str]] = None) -> int:
    """Parse the configuration and run the daemon. Returns the exit code."""
    try:
        config = parse_cli_config(argv)
    except ConfigError as e:
        configure_logging("INFO").critical("Failed to parse cli args: %s", e)
        return EXIT_FATAL

    logger = configure_logging(config.log_level)
    return asyncio.run(TerminatorDaemon(config, logger=logger).run_async())


if __name__ == "__main__":
    sys.exit(main())
