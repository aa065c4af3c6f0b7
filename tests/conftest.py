from __future__ import annotations

import itertools
import logging
import os
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Mapping

import pytest
import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from httpx import ASGITransport, AsyncClient

from dynamic_logger import DynamicLoggerMiddleware, RequestLog, Severity, get_request_log, get_settings
from dynamic_logger import logging as request_logging


@dataclass
class LoggedEvent:
    severity: Severity
    message: str
    meta: dict[str, Any]


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[LoggedEvent] = []

    def emit(self, severity: Severity, message: str, meta: Mapping[str, Any]) -> None:
        self.events.append(LoggedEvent(severity, message, dict(meta)))

    @property
    def messages(self) -> list[str]:
        return [event.message for event in self.events]

    def with_marker(self, marker: str) -> list[LoggedEvent]:
        return [event for event in self.events if marker in event.message]


class FailingSink:
    def __init__(self) -> None:
        self.calls = 0

    def emit(self, severity: Severity, message: str, meta: Mapping[str, Any]) -> None:
        self.calls += 1
        raise OSError("log stream closed")


def build_app(**middleware_options: Any) -> FastAPI:
    app = FastAPI()

    @app.get("/items")
    async def items() -> dict:
        return {"ok": True}

    @app.get("/text")
    async def text() -> PlainTextResponse:
        return PlainTextResponse("hello")

    @app.post("/echo")
    async def echo(request: Request) -> dict:
        return {"received": await request.json()}

    @app.get("/health")
    async def health(log: RequestLog = Depends(get_request_log)) -> dict[str, str]:
        log.info("health check")
        return {"status": "ok"}

    @app.get("/manual")
    async def manual(request: Request) -> dict:
        request.state.log.info("hi", user="u1")
        request.state.log.fatal("db down")
        return {"ok": True}

    @app.get("/dependency")
    async def dependency(log: RequestLog = Depends(get_request_log)) -> dict:
        log.warn("careful", step=2)
        return {"request_id": log.request_id}

    @app.get("/items/{item_id}")
    async def item(item_id: str) -> dict:
        raise HTTPException(status_code=404, detail=f"item {item_id} not found")

    @app.post("/items", status_code=201)
    async def create_item() -> dict:
        return {"id": 1}

    @app.get("/unavailable")
    async def unavailable() -> JSONResponse:
        return JSONResponse({"detail": "maintenance"}, status_code=503)

    @app.get("/stream")
    async def stream() -> StreamingResponse:
        async def chunks() -> AsyncIterator[bytes]:
            yield b"part1-"
            yield b"part2"

        return StreamingResponse(chunks(), media_type="text/plain")

    @app.get("/context")
    async def context() -> dict:
        return {"bound": structlog.contextvars.get_contextvars().get("request_id")}

    app.add_middleware(DynamicLoggerMiddleware, **middleware_options)
    return app


def reset_fallback_logger() -> None:
    logger = request_logging.get_fallback_logger()
    logger.handlers = []
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    request_logging._CONFIGURED = False


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("DYNAMIC_LOGGER_"):
            monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()
    reset_fallback_logger()


@pytest.fixture
def auto_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def manual_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def id_factory() -> Callable[[], str]:
    counter = itertools.count(1)
    return lambda: f"rid-{next(counter)}"


@pytest.fixture
def client_for(auto_sink, manual_sink, id_factory) -> Callable[..., AsyncClient]:
    def _client(**options: Any) -> AsyncClient:
        options.setdefault("auto_sink", auto_sink)
        options.setdefault("manual_sink", manual_sink)
        options.setdefault("id_factory", id_factory)
        app = build_app(**options)
        return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")

    return _client


@pytest.fixture
async def api_client(client_for) -> AsyncIterator[AsyncClient]:
    async with client_for() as client:
        yield client
