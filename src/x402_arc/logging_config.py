"""
Logging configuration for X402
"""

import logging
import sys
from typing import TextIO

from x402_arc.exceptions import ConfigurationError

LOG_FORMAT = "%(asctime)s - %(levelname)-8s %(name)s %(filename)s:%(lineno)d %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("web3", "httpx", "urllib3")


def resolve_level(level: int | str) -> int:
    """Turn a level name such as ``"debug"`` into its numeric value"""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ConfigurationError(f"Unknown log level: {level!r}")
    return value


def setup_logging(level: int | str = logging.INFO, stream: TextIO | None = None) -> None:
    """
    Install a single console handler on the root logger.

    Calling it again replaces the handler rather than stacking another one.

    Args:
        level: numeric level or level name (default: INFO)
        stream: output stream (default: stdout)
    """
    numeric = resolve_level(level)
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))
