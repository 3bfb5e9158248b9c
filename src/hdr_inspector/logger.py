"""Package logging: one console handler on the ``hdr_inspector`` logger.

Worker tasks tag their records with a ``task_id``; records without one are
shown with ``task=-``.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

_PACKAGE = "hdr_inspector"
_FORMAT = "[%(asctime)s] [%(levelname)s] %(module)s task=%(task_id)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


class _TaskIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "task_id"):
            record.task_id = "-"
        return True


def _package_logger() -> logging.Logger:
    base = logging.getLogger(_PACKAGE)
    if base.handlers:
        return base
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
    console.addFilter(_TaskIdFilter())
    base.addHandler(console)
    base.setLevel(logging.INFO)
    base.propagate = False
    return base


def get_logger(name: str) -> logging.Logger:
    """Return the package logger's child for ``name`` (typically ``__name__``)."""
    _package_logger()
    if name == _PACKAGE or name.startswith(_PACKAGE + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_PACKAGE}.{name}")


def set_level(level: Union[int, str]) -> None:
    """Set the level of the package logger and of every handler on it."""
    base = _package_logger()
    base.setLevel(level)
    for handler in base.handlers:
        handler.setLevel(level)


def attach_handler(handler: Optional[logging.Handler]) -> None:
    """Route package records to an extra handler, e.g. a front-end log view."""
    if handler is None:
        return
    base = _package_logger()
    if handler in base.handlers:
        return
    handler.addFilter(_TaskIdFilter())
    base.addHandler(handler)


def task_logger(logger: logging.Logger, task_id: str) -> logging.LoggerAdapter:
    """Return ``logger`` with ``task_id`` attached to every record."""
    return logging.LoggerAdapter(logger, {"task_id": task_id})
