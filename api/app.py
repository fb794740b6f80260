from __future__ import annotations

import asyncio
import json
import logging
from collections import deque

from fastapi import FastAPI, Request
from sse_starlette.sse import EventSourceResponse

from api.routers import pipeline_control, runs, stats, trends
from data.database import SessionScope, get_session

log = logging.getLogger(__name__)

SSE_PING_SECONDS = 30


class Broadcaster:
    """Fans pipeline events out to SSE listeners.

    The last few events are kept so a dashboard that connects between runs
    still sees the latest outcome.
    """

    def __init__(self, queue_size: int = 50, history: int = 5) -> None:
        self._queue_size = queue_size
        self._listeners: list[asyncio.Queue] = []
        self._recent: deque[dict] = deque(maxlen=history)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def broadcast(self, event: dict) -> None:
        self._recent.append(event)
        for q in list(self._listeners):
            try:
                q.put_nowait(event)
            except asyncio.QueueFull:
                log.debug("Listener queue full, dropping %s", event.get("event"))

    def subscribe(self, replay: bool = True) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        if replay:
            for event in self._recent:
                q.put_nowait(event)
        self._listeners.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._listeners:
            self._listeners.remove(q)


def create_app(session_scope: SessionScope = get_session) -> FastAPI:
    app = FastAPI(title="NicheScore", version="1.0.0")
    broadcaster = Broadcaster()
    app.state.broadcaster = broadcaster
    app.state.session_scope = session_scope

    app.include_router(stats.router)
    app.include_router(trends.router)
    app.include_router(runs.router)
    app.include_router(pipeline_control.router)

    @app.get("/api/events")
    async def pipeline_events(request: Request):
        q = broadcaster.subscribe()

        async def stream():
            try:
                while not await request.is_disconnected():
                    event = await q.get()
                    yield {"event": event.get("event", "message"), "data": json.dumps(event)}
            finally:
                broadcaster.unsubscribe(q)

        return EventSourceResponse(stream(), ping=SSE_PING_SECONDS)

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "nichescore", "version": app.version}

    return app
