"""Per-request logging middleware for Starlette / FastAPI.

Logs each request on arrival ([INI]), once when its response body is sent
([END]) and again when it finished with a 404 ([NOT_FOUND]). Handlers get a
request-scoped logger on ``request.state.log``.
"""

from dynamic_logger.config import LoggerConfig, get_settings, resolve_config
from dynamic_logger.dependencies import get_request_log
from dynamic_logger.middleware import DynamicLoggerMiddleware, RequestContext, RequestLog, dynamic_logger
from dynamic_logger.sinks import LogSink, Severity, StructlogSink

__all__ = [
    "DynamicLoggerMiddleware",
    "LogSink",
    "LoggerConfig",
    "RequestContext",
    "RequestLog",
    "Severity",
    "StructlogSink",
    "dynamic_logger",
    "get_request_log",
    "get_settings",
    "resolve_config",
]
