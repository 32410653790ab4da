"""
Logging configuration for the guardian CLI.

Log records go to stderr so `--json` output on stdout stays parseable.
The level comes from `observability.logging.level` unless the operator
passed --debug or --quiet.

Usage:
    import logging_config
    logging_config.setup_from_config(config.observability, debug=args.debug)
"""

import logging
import sys
from typing import Union

# Loggers that get their own level on top of the root one
GUARDIAN_LOGGER = "pool_guardian"
ACCESS_LOGGER = "aiohttp.access"


def parse_level(level: Union[int, str]) -> int:
    """Numeric level for an int or a name such as "info" or "WARNING"."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def setup(
    level: Union[int, str] = logging.INFO,
    access_level: Union[int, str] = logging.WARNING,
):
    """
    Configure root logging with one stderr handler.

    Both the root and the pool_guardian loggers get `level`; metrics
    server access logs get `access_level`. Calling it again replaces the
    handler, so the level can be changed once the config is loaded.
    """
    level = parse_level(level)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root.addHandler(handler)

    logging.getLogger(GUARDIAN_LOGGER).setLevel(level)
    logging.getLogger(ACCESS_LOGGER).setLevel(parse_level(access_level))


def setup_minimal():
    """Only warnings and errors."""
    setup(level=logging.WARNING)


def setup_debug():
    """
    Verbose logging for debugging.
    Includes rejected sandwich candidates and metrics HTTP requests.
    """
    setup(level=logging.DEBUG, access_level=logging.INFO)


def setup_from_config(observability, debug: bool = False, quiet: bool = False):
    """Apply the configured log level; --debug wins over --quiet, both win over the file."""
    if debug:
        setup_debug()
    elif quiet:
        setup_minimal()
    else:
        setup(level=observability.log_level)
