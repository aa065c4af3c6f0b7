from __future__ import annotations

from starlette.requests import Request

from dynamic_logger.middleware import RequestLog


def get_request_log(request: Request) -> RequestLog:
    """FastAPI dependency for the request-scoped logger.

    Skipped paths carry no logger; they get a muted one so handlers need no branching.
    """

    log = getattr(request.state, "log", None)
    if isinstance(log, RequestLog):
        return log
    return RequestLog.muted()
