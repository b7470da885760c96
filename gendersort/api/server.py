from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from typing import Any, AsyncIterator

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.responses import Response, StreamingResponse

from ..ai.types import GenderDetector
from ..pipeline.types import ImageItem
from .config_loader import AppConfig
from .factory import build_session
from .schemas import BatchAcceptedResponse, BatchRequest, SessionStatusResponse
from .session import Session, SessionState


logger = logging.getLogger(__name__)


_QUEUE_SHUTDOWN = "__shutdown__"


class ProgressHub:
    """Fan session events out to every connected progress stream."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._subscribers: set[asyncio.Queue[str]] = set()
        self._closing = False

    async def subscribe(self) -> asyncio.Queue[str]:
        queue: asyncio.Queue[str] = asyncio.Queue()
        async with self._lock:
            if self._closing:
                queue.put_nowait(_QUEUE_SHUTDOWN)
                return queue
            self._subscribers.add(queue)
        logger.debug("ProgressHub subscribed total=%d", len(self._subscribers))
        return queue

    async def unsubscribe(self, queue: asyncio.Queue[str]) -> None:
        async with self._lock:
            self._subscribers.discard(queue)
        logger.debug("ProgressHub unsubscribed remaining=%d", len(self._subscribers))

    def publish(self, message: dict[str, Any]) -> None:
        if self._closing:
            return
        payload = json.dumps(message)
        queues = list(self._subscribers)
        logger.debug(
            "Publishing session event subscribers=%d payload=%s", len(queues), payload
        )
        for queue in queues:
            queue.put_nowait(payload)

    async def close(self) -> None:
        async with self._lock:
            self._closing = True
            queues = list(self._subscribers)
            self._subscribers.clear()
        logger.info("ProgressHub closing queues=%d", len(queues))
        for queue in queues:
            queue.put_nowait(_QUEUE_SHUTDOWN)


def _decode_items(request: BatchRequest) -> list[ImageItem]:
    items: list[ImageItem] = []
    for entry in request.items:
        try:
            data = base64.b64decode(entry.image_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid base64 payload for {entry.filename}",
            ) from exc
        items.append(
            ImageItem(filename=entry.filename, data=data, media_type=entry.media_type)
        )
    return items


def create_app(
    detector: GenderDetector | None = None,
    config: AppConfig | None = None,
    session: Session | None = None,
) -> FastAPI:
    cfg = config or AppConfig()
    active_session = session or build_session(cfg, detector=detector)
    hub = ProgressHub()
    active_session.add_listener(hub.publish)

    app = FastAPI(title="Gender Sort API", version="0.1.0")
    app.state.config = cfg
    app.state.session = active_session
    app.state.progress_hub = hub

    logger.info(
        "API server initialised backend=%s archive=%s",
        cfg.detector.backend if detector is None and session is None else "custom",
        active_session.archive_filename,
    )

    @app.get("/health", response_model=dict[str, str])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/session", response_model=SessionStatusResponse)
    async def session_status() -> dict[str, Any]:
        return active_session.status()

    @app.post("/v1/batches", response_model=BatchAcceptedResponse, status_code=202)
    async def submit_batch(
        request: BatchRequest, background_tasks: BackgroundTasks
    ) -> BatchAcceptedResponse:
        if active_session.state is not SessionState.IDLE:
            raise HTTPException(
                status_code=409,
                detail=f"Session is {active_session.state.value}; reset before submitting a new batch",
            )
        items = _decode_items(request)
        logger.info("Batch upload received items=%d", len(items))
        result = active_session.submit(items)
        if not result.accepted:
            raise HTTPException(status_code=400, detail=result.message)
        background_tasks.add_task(active_session.process)
        return BatchAcceptedResponse(
            state=active_session.state.value,
            accepted=result.accepted_count,
            skipped=result.skipped_count,
        )

    @app.get("/v1/archive")
    async def download_archive() -> Response:
        archive = active_session.download()
        if archive is None:
            raise HTTPException(
                status_code=409,
                detail=f"No archive available while session is {active_session.state.value}",
            )
        return Response(
            content=archive.data,
            media_type=archive.media_type,
            headers={"Content-Disposition": f'attachment; filename="{archive.filename}"'},
        )

    @app.post("/v1/archive/retry", response_model=SessionStatusResponse)
    async def retry_archive() -> dict[str, Any]:
        if active_session.state is not SessionState.BUILD_FAILED:
            raise HTTPException(
                status_code=409,
                detail=f"Archive retry is not available while session is {active_session.state.value}",
            )
        await active_session.retry_build()
        return active_session.status()

    @app.post("/v1/reset", response_model=SessionStatusResponse)
    async def reset_session() -> dict[str, Any]:
        if not active_session.reset():
            raise HTTPException(
                status_code=409,
                detail=f"Reset is not available while session is {active_session.state.value}",
            )
        return active_session.status()

    @app.get("/v1/progress/stream")
    async def progress_stream(request: Request) -> StreamingResponse:
        queue = await hub.subscribe()
        logger.info("Progress stream connected")

        async def event_generator() -> AsyncIterator[str]:
            shutdown_event: asyncio.Event | None = getattr(
                app.state, "shutdown_event", None
            )
            try:
                initial = {"event": "connected", **active_session.status()}
                yield f"data: {json.dumps(initial)}\n\n"
                while True:
                    try:
                        message = (
                            await asyncio.wait_for(queue.get(), timeout=0.1)
                            if shutdown_event is not None
                            else await queue.get()
                        )
                    except asyncio.TimeoutError:
                        if shutdown_event is not None and shutdown_event.is_set():
                            break
                        if await request.is_disconnected():
                            break
                        continue
                    if message == _QUEUE_SHUTDOWN:
                        break
                    yield f"data: {message}\n\n"
            except asyncio.CancelledError:
                logger.debug("Progress stream task cancelled")
            finally:
                await hub.unsubscribe(queue)
                logger.info("Progress stream disconnected")

        return StreamingResponse(event_generator(), media_type="text/event-stream")

    @app.on_event("startup")
    async def _initialise_session() -> None:
        if getattr(app.state, "shutdown_event", None) is None:
            app.state.shutdown_event = asyncio.Event()
        await active_session.initialize()

    @app.on_event("shutdown")
    async def _shutdown_streams() -> None:
        shutdown_event: asyncio.Event | None = getattr(
            app.state, "shutdown_event", None
        )
        if shutdown_event is not None:
            shutdown_event.set()
        await hub.close()
        active_session.close()

    return app


__all__ = ["ProgressHub", "create_app"]
