"""
Diagnostic sink helpers.

The client logs through anything that offers the five leveled methods of
:class:`logging.Logger`. Structured context travels in ``extra={"mpesa": ...}``
so handlers and formatters can pick it up.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Protocol

from .errors import ConfigError

__all__ = [
    "LOG_LEVELS",
    "DiagnosticSink",
    "NullLogger",
    "build_logger",
    "context",
]

LOGGER_NAME = "mpesa_payments"

LOG_LEVELS = {
    "none": None,
    "error": logging.ERROR,
    "verbose": logging.DEBUG,
}


class DiagnosticSink(Protocol):
    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None: ...

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None: ...


class NullLogger:
    """Discards everything."""

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        pass


def build_logger(log_level: str) -> DiagnosticSink:
    """
    Map the ``none``/``error``/``verbose`` switch onto a sink.

    Each switch value gets its own child of the ``mpesa_payments`` logger
    (``mpesa_payments.error``, ``mpesa_payments.verbose``) with a fixed level,
    so clients configured differently never change each other's threshold.
    Records still propagate to handlers attached to ``mpesa_payments``.
    """
    try:
        level = LOG_LEVELS[log_level]
    except KeyError as exc:
        raise ConfigError(
            f"log level must be one of {', '.join(LOG_LEVELS)}, got '{log_level}'"
        ) from exc
    if level is None:
        return NullLogger()
    logger = logging.getLogger(f"{LOGGER_NAME}.{log_level}")
    logger.setLevel(level)
    return logger


def context(
    values: Optional[Mapping[str, Any]] = None, **extra: Any
) -> dict[str, Any]:
    merged = dict(values or {})
    merged.update(extra)
    return {"extra": {"mpesa": merged}}
