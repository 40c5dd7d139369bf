"""
Logging setup for operator scripts.

Library modules only create module-level loggers
(`logging.getLogger(__name__)`) and never install handlers themselves.
"""

from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the root logger at `level`."""

    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    root.setLevel(numeric)

    # supabase's HTTP stack is chatty at INFO
    logging.getLogger("httpx").setLevel(max(numeric, logging.WARNING))
