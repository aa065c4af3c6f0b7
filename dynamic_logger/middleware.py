from __future__ import annotations

import functools
import uuid
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import Headers, MutableHeaders, QueryParams
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from dynamic_logger.config import LoggerConfig, get_settings, resolve_config
from dynamic_logger.logging import get_fallback_logger
from dynamic_logger.prefixes import (
    END_MARKER,
    INI_MARKER,
    NOT_FOUND_MARKER,
    build_prefix,
    collapse_items,
    decode_body,
    is_textual,
    parse_body,
    sanitize_headers,
    status_category,
)
from dynamic_logger.sinks import LogSink, Severity, StructlogSink


_fallback = get_fallback_logger(__name__)


def _new_request_id() -> str:
    return str(uuid.uuid4())


class RequestLog:
    """Manual logging bound to one request: ``request.state.log.info("msg", k=v)``."""

    def __init__(self, request_id: str, config: LoggerConfig, sink: LogSink | None) -> None:
        self.request_id = request_id
        self._config = config
        self._sink = sink

    @classmethod
    def muted(cls, config: LoggerConfig | None = None) -> RequestLog:
        return cls(request_id="", config=config or get_settings(), sink=None)

    def debug(self, message: Any, **meta: Any) -> None:
        self._emit(Severity.DEBUG, message, meta)

    def info(self, message: Any, **meta: Any) -> None:
        self._emit(Severity.INFO, message, meta)

    def warn(self, message: Any, **meta: Any) -> None:
        self._emit(Severity.WARN, message, meta)

    warning = warn

    def error(self, message: Any, **meta: Any) -> None:
        self._emit(Severity.ERROR, message, meta)

    def fatal(self, message: Any, **meta: Any) -> None:
        self._emit(Severity.FATAL, message, meta)

    def _emit(self, severity: Severity, message: Any, meta: dict[str, Any]) -> None:
        if self._sink is None or not self._config.print_manual_logs:
            return
        try:
            prefix = build_prefix(self._config.log_prefix, self._config.level_prefix(severity))
            self._sink.emit(severity, f"{prefix}{message}", {"request_id": self.request_id, **meta})
        except Exception:
            _fallback.exception("manual log emission failed", extra={"request_id": self.request_id})


@dataclass
class RequestContext:
    """Per-request state threaded through the send wrapper and the finish hook."""

    request_id: str
    method: str
    url: str
    log: RequestLog
    started_at: float = field(default_factory=perf_counter)
    status_code: int | None = None
    completion_logged: bool = False
    capture_response: bool = True
    response_chunks: list[bytes] = field(default_factory=list)
    captured_bytes: int = 0
    response_bytes: int = 0
    response_truncated: bool = False

    def elapsed_ms(self) -> int:
        return int((perf_counter() - self.started_at) * 1000)


class ReplayReceive:
    """Wraps ``receive`` so messages read ahead of the app are handed back to it."""

    def __init__(self, receive: Receive) -> None:
        self._receive = receive
        self._buffered: list[Message] = []

    async def read_body(self, limit: int) -> tuple[bytes, bool]:
        """Read ahead until ``limit`` bytes are buffered.

        Returns the first ``limit`` bytes and whether the body goes on past them.
        The rest of the upload is left for the app to pull.
        """

        chunks: list[bytes] = []
        size = 0
        while size < limit:
            message = await self._receive()
            self._buffered.append(message)
            if message["type"] != "http.request":
                return b"".join(chunks), False
            body = message.get("body", b"")
            chunks.append(body)
            size += len(body)
            if not message.get("more_body", False):
                data = b"".join(chunks)
                return data[:limit], len(data) > limit
        return b"".join(chunks)[:limit], True

    async def __call__(self) -> Message:
        if self._buffered:
            return self._buffered.pop(0)
        return await self._receive()


def _has_body(headers: Headers) -> bool:
    if "transfer-encoding" in headers:
        return True
    try:
        return int(headers.get("content-length", "0")) > 0
    except ValueError:
        return False


def _original_url(scope: Scope) -> str:
    url = scope.get("root_path", "") + scope.get("path", "")
    query_string = scope.get("query_string", b"")
    if query_string:
        url += "?" + query_string.decode("latin-1")
    return url


class DynamicLoggerMiddleware:
    """Logs request start ([INI]), response end ([END]) and 404s ([NOT_FOUND]).

    Every instrumentation step runs inside a fault boundary: a failure is
    reported on the ``dynamic_logger`` stdlib logger and the request carries on
    without instrumentation. Exceptions raised by the wrapped app propagate as usual.
    """

    def __init__(
        self,
        app: ASGIApp,
        config: LoggerConfig | dict[str, Any] | None = None,
        *,
        auto_sink: LogSink | None = None,
        manual_sink: LogSink | None = None,
        id_factory: Callable[[], str] | None = None,
        **options: Any,
    ) -> None:
        self.app = app
        self.config = resolve_config(config, **options)
        self.auto_sink = auto_sink or StructlogSink(self.config.level, pretty=self.config.pretty_print)
        # Manual logs always print every level.
        self.manual_sink = manual_sink or StructlogSink(Severity.DEBUG, pretty=self.config.pretty_print)
        self.id_factory = id_factory or _new_request_id

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        replay = ReplayReceive(receive)
        context: RequestContext | None = None
        try:
            context = await self._start(scope, replay)
        except Exception:
            _fallback.exception("request instrumentation failed", extra={"path": scope.get("path")})

        if context is None:
            await self.app(scope, replay, send)
            return

        async def send_wrapper(message: Message) -> None:
            try:
                self._on_send(context, message)
            except Exception:
                _fallback.exception("response instrumentation failed", extra={"request_id": context.request_id})
            await send(message)

        try:
            with structlog.contextvars.bound_contextvars(request_id=context.request_id):
                await self.app(scope, replay, send_wrapper)
        finally:
            try:
                self._on_finish(context)
            except Exception:
                _fallback.exception("finish instrumentation failed", extra={"request_id": context.request_id})

    async def _start(self, scope: Scope, replay: ReplayReceive) -> RequestContext | None:
        config = self.config
        method = scope.get("method", "GET")
        if config.should_skip(scope.get("path", ""), method):
            return None

        headers = Headers(scope=scope)
        request_id = headers.get(config.request_id_header) or self.id_factory()

        context = RequestContext(
            request_id=request_id,
            method=method,
            url=_original_url(scope),
            log=RequestLog(request_id, config, self.manual_sink),
        )
        scope.setdefault("state", {})["log"] = context.log
        scope["state"]["request_id"] = request_id

        if config.print_auto_logs:
            meta: dict[str, Any] = {
                "request_id": request_id,
                "method": method,
                "url": context.url,
                "headers": sanitize_headers(
                    collapse_items(headers.items()),
                    deep=config.deep_headers,
                    redact=config.redact,
                ),
                "query": collapse_items(QueryParams(scope.get("query_string", b"")).multi_items()),
                "params": dict(scope.get("path_params") or {}),
                "body": None,
            }
            if (
                _has_body(headers)
                and config.max_logged_body > 0
                and is_textual(headers.get("content-type"), headers.get("content-encoding"))
            ):
                body, truncated = await replay.read_body(config.max_logged_body)
                meta["body"] = decode_body(body)
                if truncated:
                    meta["body_truncated"] = True
            self.auto_sink.emit(config.level, build_prefix(config.log_prefix, INI_MARKER), meta)
        return context

    def _on_send(self, context: RequestContext, message: Message) -> None:
        config = self.config
        if message["type"] == "http.response.start":
            context.status_code = int(message["status"])
            message.setdefault("headers", [])
            response_headers = MutableHeaders(scope=message)
            context.capture_response = config.max_logged_body > 0 and is_textual(
                response_headers.get("content-type"), response_headers.get("content-encoding")
            )
            if config.auto_generate_request_id:
                response_headers[config.request_id_header] = context.request_id
            return

        if message["type"] != "http.response.body" or context.completion_logged:
            return
        if not config.print_auto_logs:
            return

        body = message.get("body", b"")
        context.response_bytes += len(body)
        if context.capture_response:
            # Only the first max_logged_body bytes are kept; the rest is counted.
            remaining = max(config.max_logged_body - context.captured_bytes, 0)
            if remaining and body:
                chunk = body[:remaining]
                context.response_chunks.append(chunk)
                context.captured_bytes += len(chunk)
            if len(body) > remaining:
                context.response_truncated = True
        if message.get("more_body", False):
            return

        context.completion_logged = True
        status = context.status_code or 0
        meta: dict[str, Any] = {
            "request_id": context.request_id,
            "method": context.method,
            "url": context.url,
            "status": status,
            "duration_ms": context.elapsed_ms(),
            "response": None,
        }
        if context.capture_response:
            captured = b"".join(context.response_chunks)
            meta["response"] = decode_body(captured) if context.response_truncated else parse_body(captured)
        if context.response_truncated or not context.capture_response:
            meta["response_bytes"] = context.response_bytes
        if context.response_truncated:
            meta["response_truncated"] = True
        context.response_chunks.clear()
        self.auto_sink.emit(
            config.level,
            build_prefix(config.log_prefix, END_MARKER, config.status_prefix(status_category(status))),
            meta,
        )

    def _on_finish(self, context: RequestContext) -> None:
        if not self.config.print_auto_logs or context.status_code != 404:
            return
        self.auto_sink.emit(
            Severity.ERROR,
            build_prefix(self.config.log_prefix, NOT_FOUND_MARKER),
            {
                "request_id": context.request_id,
                "method": context.method,
                "url": context.url,
                "status": 404,
                "duration_ms": context.elapsed_ms(),
            },
        )


def dynamic_logger(
    config: LoggerConfig | dict[str, Any] | None = None,
    *,
    auto_sink: LogSink | None = None,
    manual_sink: LogSink | None = None,
    id_factory: Callable[[], str] | None = None,
    **options: Any,
) -> Callable[[ASGIApp], DynamicLoggerMiddleware]:
    """Resolve options once and return ``app -> middleware``.

    Usage: ``app = dynamic_logger(log_prefix="api")(app)``.
    """

    resolved = resolve_config(config, **options)
    return functools.partial(
        DynamicLoggerMiddleware,
        config=resolved,
        auto_sink=auto_sink,
        manual_sink=manual_sink,
        id_factory=id_factory,
    )
