from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, Mapping

from pydantic_settings import BaseSettings, SettingsConfigDict

from dynamic_logger.sinks import Severity


class LoggerConfig(BaseSettings):
    """Resolved middleware options.

    Explicit options win over ``DYNAMIC_LOGGER_*`` environment variables, which
    win over the defaults below. Instances are frozen.
    """

    model_config = SettingsConfigDict(env_prefix="DYNAMIC_LOGGER_", frozen=True, extra="ignore")

    level: Severity = Severity.INFO
    pretty_print: bool = True
    skip_paths: tuple[str, ...] = ("/health", "/favicon.ico")
    request_id_header: str = "x-request-id"
    auto_generate_request_id: bool = True
    redact: tuple[str, ...] = ("authorization",)
    deep_headers: bool = True
    max_logged_body: int = 64 * 1024

    log_prefix: str = ""
    status_prefix_100: str = ""
    status_prefix_200: str = ""
    status_prefix_300: str = ""
    status_prefix_400: str = ""
    status_prefix_500: str = ""
    level_prefix_debug: str = ""
    level_prefix_info: str = ""
    level_prefix_warn: str = ""
    level_prefix_error: str = ""
    level_prefix_fatal: str = ""

    print_auto_logs: bool = True
    print_manual_logs: bool = True
    skip_preflight: bool = False

    def status_prefix(self, category: int) -> str:
        prefixes = {
            100: self.status_prefix_100,
            200: self.status_prefix_200,
            300: self.status_prefix_300,
            400: self.status_prefix_400,
            500: self.status_prefix_500,
        }
        return prefixes.get(category, "")

    def level_prefix(self, severity: Severity) -> str:
        prefixes = {
            Severity.DEBUG: self.level_prefix_debug,
            Severity.INFO: self.level_prefix_info,
            Severity.WARN: self.level_prefix_warn,
            Severity.ERROR: self.level_prefix_error,
            Severity.FATAL: self.level_prefix_fatal,
        }
        return prefixes.get(severity, "")

    def should_skip(self, path: str, method: str) -> bool:
        if path in self.skip_paths:
            return True
        return self.skip_preflight and method.upper() == "OPTIONS"


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z0-9])")


def option_name(key: str) -> str:
    """``skipPaths`` -> ``skip_paths``, ``statusPrefix400`` -> ``status_prefix_400``; snake_case is unchanged."""

    return _CAMEL_BOUNDARY.sub("_", key).lower()


def resolve_config(
    options: Mapping[str, Any] | LoggerConfig | None = None,
    **overrides: Any,
) -> LoggerConfig:
    """Overlay caller options onto the defaults (shallow, field by field)."""

    if isinstance(options, LoggerConfig):
        if not overrides:
            return options
        base: dict[str, Any] = options.model_dump()
    else:
        base = dict(options or {})
    values = {option_name(key): value for key, value in {**base, **overrides}.items()}
    return LoggerConfig(**values)


@lru_cache(maxsize=1)
def get_settings() -> LoggerConfig:
    return LoggerConfig()
