"""forum_rag.common.logging_utils

Logging setup helpers.

Modules log through the standard library (``logging.getLogger(__name__)``)
and attach structured context with the ``extra`` keyword. This module only
decides how those records are rendered: as plain text for local runs or as
one JSON object per line for log shippers.

Classes
-------
JSONFormatter
    Formatter emitting one JSON document per record.

Functions
---------
configure_logging
    Install a stream handler on the root logger.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents.

    The output carries ``timestamp``, ``level``, ``logger`` and ``message``
    keys, an ``exception`` key when exception info is attached, and every
    field passed through ``extra``.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            log_data[key] = value

        return json.dumps(log_data, default=str, ensure_ascii=False)


def configure_logging(
        level: str | int = "INFO",
        *,
        json_format: bool = False,
    ) -> None:
    """Configure the root logger with a single stream handler.

    Calling this function again replaces the handler installed by a previous
    call, so it is safe to invoke from both the API startup hook and scripts.

    Parameters
    ----------
    level : str or int, optional
        Log level name (e.g. ``"DEBUG"``) or numeric level. Defaults to ``"INFO"``.
    json_format : bool, optional
        Emit JSON lines via :class:`JSONFormatter` instead of plain text.

    Raises
    ------
    ValueError
        If ``level`` is not a known log level name.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        level = resolved

    handler = logging.StreamHandler()
    handler.set_name("forum_rag")
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(DEFAULT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == "forum_rag":
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)


def configure_logging_from_config(section: Mapping[str, Any] | None) -> None:
    """Configure logging from a ``logging`` configuration mapping.

    Parameters
    ----------
    section : Mapping[str, Any] or None
        Mapping with optional ``level`` and ``json`` keys.
    """
    section = section or {}
    configure_logging(
        section.get("level", "INFO"),
        json_format=bool(section.get("json", False)),
    )


__all__ = ["JSONFormatter", "configure_logging", "configure_logging_from_config"]
