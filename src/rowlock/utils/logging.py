"""Logger factory for rowlock components.

Component loggers are children of ``rowlock`` and propagate to it; the single
handler lives on that parent, so an application can reroute or silence lock
chatter in one place. ``ROWLOCK_LOG_LEVEL`` sets the level and
``ROWLOCK_RICH_LOGS=0`` swaps the rich console handler for plain stderr lines,
which log collectors ingest without ANSI noise.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

from rich.logging import RichHandler

from .env import get_bool_env


ROOT_LOGGER = "rowlock"


def _configure_root(level: Union[int, str], rich: bool) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    root.setLevel(level)
    if rich:
        handler: logging.Handler = RichHandler(
            markup=False,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
    root.addHandler(handler)
    root.propagate = False
    return root


def get_logger(
    name: str,
    level: Optional[Union[int, str]] = None,
    *,
    rich: Optional[bool] = None,
) -> logging.Logger:
    """Return the ``rowlock.<name>`` logger, configuring the shared parent on first use."""
    if level is None:
        level = os.getenv("ROWLOCK_LOG_LEVEL", "INFO").upper()
    if rich is None:
        rich = get_bool_env("ROWLOCK_RICH_LOGS", default=True)
    _configure_root(level, rich)
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
