from __future__ import annotations

import logging
import sys
from typing import Optional, Union


LOG_FORMAT = "[%(levelname)s][%(asctime)s][%(filename)s:%(lineno)d] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_HANDLER_NAME = "quote-sync"


def configure_logging(level: Union[int, str, None] = None) -> logging.Logger:
    """Install a single stream handler on the root logger.

    Safe to call repeatedly (e.g. from each Lambda invocation): the handler is
    added once and only the level is updated afterwards.
    """
    root = logging.getLogger()
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        level = resolved
    root.setLevel(level if level is not None else logging.INFO)

    if not any(getattr(h, "name", None) == _HANDLER_NAME for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)
    return root


__all__ = ["configure_logging", "LOG_FORMAT", "DATE_FORMAT"]
