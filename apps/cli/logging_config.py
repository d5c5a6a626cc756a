"""Console logging for the CLI."""
from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(verbosity: int = 0, console: Optional[Console] = None) -> logging.Logger:
    """Route library logging through rich; `verbosity >= 1` enables DEBUG."""

    level = logging.DEBUG if verbosity >= 1 else logging.INFO
    root = logging.getLogger("packages")
    root.setLevel(level)
    root.handlers.clear()

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=True,
        show_path=verbosity >= 1,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.propagate = False

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if verbosity >= 1 else logging.WARNING)
    return root
