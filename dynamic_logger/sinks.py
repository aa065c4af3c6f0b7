from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping, Protocol, TextIO

import structlog


class Severity(str, Enum):
    """Levels understood by the request logger.

    ``FATAL`` is a first-class level: it filters as ``logging.CRITICAL`` and is
    rendered with the label ``"fatal"``, so no sink needs a custom handler for it.
    """

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    FATAL = "fatal"

    @classmethod
    def _missing_(cls, value: object) -> Severity | None:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "warning":
                normalized = "warn"
            if normalized == "critical":
                normalized = "fatal"
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def stdlib_level(self) -> int:
        return _STDLIB_LEVELS[self]


_STDLIB_LEVELS = {
    Severity.DEBUG: logging.DEBUG,
    Severity.INFO: logging.INFO,
    Severity.WARN: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.FATAL: logging.CRITICAL,
}

# structlog proxies numeric levels to these method names.
_LABELS_BY_METHOD = {
    "debug": Severity.DEBUG.value,
    "info": Severity.INFO.value,
    "warning": Severity.WARN.value,
    "error": Severity.ERROR.value,
    "critical": Severity.FATAL.value,
}


class LogSink(Protocol):
    def emit(self, severity: Severity, message: str, meta: Mapping[str, Any]) -> None: ...


def _add_severity(_logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict["level"] = _LABELS_BY_METHOD.get(method_name, method_name)
    return event_dict


class StructlogSink:
    """One independent structlog pipeline: own minimum level, own renderer."""

    def __init__(
        self,
        min_level: Severity = Severity.DEBUG,
        *,
        pretty: bool = True,
        file: TextIO | None = None,
    ) -> None:
        self.min_level = Severity(min_level)
        self.pretty = pretty

        renderer: Any
        if pretty:
            renderer = structlog.dev.ConsoleRenderer(colors=True)
        else:
            renderer = structlog.processors.JSONRenderer()

        self._logger = structlog.wrap_logger(
            structlog.PrintLogger(file=file),
            processors=[
                _add_severity,
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                renderer,
            ],
            wrapper_class=structlog.make_filtering_bound_logger(self.min_level.stdlib_level),
            context_class=dict,
            cache_logger_on_first_use=True,
        )

    def emit(self, severity: Severity, message: str, meta: Mapping[str, Any]) -> None:
        # Bind first so caller metadata may carry keys such as "event".
        self._logger.bind(**meta).log(severity.stdlib_level, message)
