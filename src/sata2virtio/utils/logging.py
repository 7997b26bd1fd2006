"""Console logging for sata2virtio.

A single rich handler sits on the ``sata2virtio`` logger; module loggers
carry no handler or level of their own and inherit both from it.
"""

from __future__ import annotations

import logging

from rich.logging import RichHandler

ROOT_LOGGER = "sata2virtio"


def _root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = RichHandler(show_time=True, show_path=False, markup=True, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
    return root


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, routed through the package console handler."""
    _root()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def set_log_level(level: str) -> None:
    """Set the level (DEBUG, INFO, WARNING, ERROR) for every sata2virtio logger."""
    _root().setLevel(getattr(logging, level.upper(), logging.INFO))
