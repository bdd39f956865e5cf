"""Console logging setup for the command line tool."""
from __future__ import annotations

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _resolve_level(level: Optional[str]) -> int:
    if not level:
        return logging.WARNING
    return getattr(logging, level.upper(), logging.WARNING)


def setup_logging(level: Optional[str] = None, *, force: bool = False, logger: Optional[logging.Logger] = None) -> None:
    """Attach a stderr handler to *logger* (the root logger by default).

    A no-op when the logger already has handlers, unless ``force`` is set.
    Output goes to stderr so JSON reports on stdout stay machine readable.
    """

    target = logger or logging.getLogger()
    if target.handlers and not force:
        return

    if force:
        for handler in list(target.handlers):
            target.removeHandler(handler)

    target.setLevel(_resolve_level(level))
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    target.addHandler(handler)

    # botocore logs every request at DEBUG.
    for name in ("botocore", "boto3", "urllib3"):
        logging.getLogger(name).setLevel(max(target.level, logging.WARNING))


__all__ = ["DATE_FORMAT", "LOG_FORMAT", "setup_logging"]
