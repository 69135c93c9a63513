from __future__ import annotations

import logging
import sys
from typing import List, Optional, TextIO

_CONSOLE_FORMAT = "[%(asctime)s] %(levelname)s %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_console_logging(
    *,
    verbose: bool = False,
    stream: Optional[TextIO] = None,
    name: str = "tierbackup",
) -> logging.Logger:
    """Attach a single timestamped console handler to the ``tierbackup`` logger."""

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    target = stream or sys.stdout
    stale: List[logging.Handler] = [
        handler for handler in logger.handlers if getattr(handler, "_tierbackup_console", False)
    ]
    for handler in stale:
        logger.removeHandler(handler)
    handler = logging.StreamHandler(target)
    handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, _DATE_FORMAT))
    handler._tierbackup_console = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False
    return logger


__all__ = ["configure_console_logging"]
