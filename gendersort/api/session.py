"""Session lifecycle for one sorting run at a time.

The session owns every piece of mutable state: the submitted batch, the result
buckets, the progress tracker, per-item diagnostics and the built archive.
Transitions are driven by :func:`transition`, a pure lookup over the table
below; the :class:`Session` methods apply the side effects that go with each
transition and notify listeners.

    loading --loaded--> idle --submit--> processing --completed--> ready
    ready --download--> ready          ready --reset--> idle
    processing --build_failed--> build_failed --retry_build--> processing
    build_failed --reset--> idle       processing --aborted--> idle
    loading --load_failed--> error     (terminal)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from ..ai.adapter import DetectionAdapter
from ..archive.builder import Archive, ArchiveBuilder
from ..pipeline.classifier import ClassifierPipeline
from ..pipeline.progress import ProgressTracker
from ..pipeline.types import ImageItem, ProgressSnapshot, ResultBuckets


logger = logging.getLogger(__name__)

VALIDATION_MESSAGE = "Please upload valid image files (JPG, PNG)."


class SessionState(str, Enum):
    LOADING = "loading"
    IDLE = "idle"
    PROCESSING = "processing"
    READY = "ready"
    BUILD_FAILED = "build_failed"
    ERROR = "error"


class SessionEvent(str, Enum):
    LOADED = "loaded"
    LOAD_FAILED = "load_failed"
    SUBMIT = "submit"
    COMPLETED = "completed"
    BUILD_FAILED = "build_failed"
    ABORTED = "aborted"
    RETRY_BUILD = "retry_build"
    DOWNLOAD = "download"
    RESET = "reset"


_TRANSITIONS: Dict[Tuple[SessionState, SessionEvent], SessionState] = {
    (SessionState.LOADING, SessionEvent.LOADED): SessionState.IDLE,
    (SessionState.LOADING, SessionEvent.LOAD_FAILED): SessionState.ERROR,
    (SessionState.IDLE, SessionEvent.SUBMIT): SessionState.PROCESSING,
    (SessionState.PROCESSING, SessionEvent.COMPLETED): SessionState.READY,
    (SessionState.PROCESSING, SessionEvent.BUILD_FAILED): SessionState.BUILD_FAILED,
    (SessionState.PROCESSING, SessionEvent.ABORTED): SessionState.IDLE,
    (SessionState.READY, SessionEvent.DOWNLOAD): SessionState.READY,
    (SessionState.READY, SessionEvent.RESET): SessionState.IDLE,
    (SessionState.BUILD_FAILED, SessionEvent.RETRY_BUILD): SessionState.PROCESSING,
    (SessionState.BUILD_FAILED, SessionEvent.RESET): SessionState.IDLE,
}


def transition(state: SessionState, event: SessionEvent) -> Optional[SessionState]:
    """Return the state reached from ``state`` on ``event``, or None if not allowed."""
    return _TRANSITIONS.get((SessionState(state), SessionEvent(event)))


SessionListener = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class SubmitResult:
    accepted: bool
    message: str | None = None
    accepted_count: int = 0
    skipped_count: int = 0


class Session:
    def __init__(
        self,
        adapter: DetectionAdapter,
        builder: ArchiveBuilder | None = None,
        *,
        build_timeout: float | None = None,
    ) -> None:
        self._adapter = adapter
        self._pipeline = ClassifierPipeline(adapter)
        self._builder = builder or ArchiveBuilder()
        self._build_timeout = build_timeout
        self._state = SessionState.LOADING
        self._items: List[ImageItem] = []
        self._buckets: ResultBuckets | None = None
        self._tracker = ProgressTracker()
        self._diagnostics: Dict[str, str] = {}
        self._archive: Archive | None = None
        self._message: str | None = None
        self._listeners: List[SessionListener] = []
        self._listener_tasks: Set[asyncio.Task] = set()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def message(self) -> str | None:
        return self._message

    @property
    def items(self) -> Tuple[ImageItem, ...]:
        return tuple(self._items)

    @property
    def buckets(self) -> ResultBuckets | None:
        return self._buckets

    @property
    def diagnostics(self) -> Dict[str, str]:
        return dict(self._diagnostics)

    @property
    def archive_filename(self) -> str:
        return self._builder.filename

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self) -> ProgressSnapshot:
        return self._tracker.snapshot()

    def status(self) -> Dict[str, Any]:
        archive = self._archive
        return {
            "state": self._state.value,
            "message": self._message,
            "progress": self.snapshot().to_dict(),
            "archive": {
                "available": archive is not None,
                "filename": archive.filename if archive else None,
                "size": archive.size if archive else None,
                "entries": len(archive.entries) if archive else 0,
            },
            "diagnostics": dict(self._diagnostics),
        }

    async def initialize(self) -> None:
        if self._state is not SessionState.LOADING:
            logger.debug("Initialize ignored state=%s", self._state.value)
            return
        try:
            await self._adapter.initialize()
        except Exception as exc:
            logger.error("Failed to load detection models: %s", exc)
            self._message = f"Failed to load detection models: {exc}"
            self._apply(SessionEvent.LOAD_FAILED)
            await self._drain_listeners()
            return
        self._message = None
        self._apply(SessionEvent.LOADED)
        await self._drain_listeners()

    def submit(self, items: Iterable[ImageItem]) -> SubmitResult:
        if transition(self._state, SessionEvent.SUBMIT) is None:
            logger.info("Rejected submit in state=%s", self._state.value)
            return SubmitResult(
                accepted=False,
                message=f"Cannot submit a batch while the session is {self._state.value}.",
            )

        batch = list(items)
        images = [item for item in batch if item.is_image]
        skipped = len(batch) - len(images)
        if not images:
            logger.info("Rejected batch with no image files submitted=%d", len(batch))
            return SubmitResult(
                accepted=False, message=VALIDATION_MESSAGE, skipped_count=skipped
            )

        self._discard_results()
        self._items = images
        self._message = None
        self._tracker.start(len(images))
        self._apply(SessionEvent.SUBMIT)
        logger.info("Batch accepted images=%d skipped=%d", len(images), skipped)
        return SubmitResult(accepted=True, accepted_count=len(images), skipped_count=skipped)

    async def process(self) -> None:
        if self._state is not SessionState.PROCESSING or self._buckets is not None:
            logger.debug("Process ignored state=%s", self._state.value)
            return
        try:
            result = await self._pipeline.run(
                self._items, tracker=self._tracker, observer=self._publish_progress
            )
        except Exception as exc:
            logger.exception("Classification aborted: %s", exc)
            self._discard_results()
            self._tracker.reset()
            self._message = f"Classification aborted: {exc}"
            self._apply(SessionEvent.ABORTED)
            await self._drain_listeners()
            return

        self._buckets = result.buckets
        self._diagnostics = result.diagnostics
        await self._build_archive()
        await self._drain_listeners()

    async def run(self, items: Iterable[ImageItem]) -> SubmitResult:
        result = self.submit(items)
        if result.accepted:
            await self.process()
        return result

    async def retry_build(self) -> bool:
        if transition(self._state, SessionEvent.RETRY_BUILD) is None:
            logger.info("Rejected archive retry in state=%s", self._state.value)
            return False
        self._message = None
        self._apply(SessionEvent.RETRY_BUILD)
        await self._build_archive()
        await self._drain_listeners()
        return self._state is SessionState.READY

    def download(self) -> Archive | None:
        if transition(self._state, SessionEvent.DOWNLOAD) is None or self._archive is None:
            logger.info("Rejected download in state=%s", self._state.value)
            return None
        logger.info(
            "Serving archive filename=%s bytes=%d", self._archive.filename, self._archive.size
        )
        return self._archive

    def reset(self) -> bool:
        if transition(self._state, SessionEvent.RESET) is None:
            logger.info("Rejected reset in state=%s", self._state.value)
            return False
        self._discard_results()
        self._tracker.reset()
        self._message = None
        self._apply(SessionEvent.RESET)
        return True

    def close(self) -> None:
        self._adapter.shutdown()

    async def _build_archive(self) -> None:
        buckets = self._buckets or ResultBuckets()
        try:
            if self._build_timeout is not None and self._build_timeout > 0:
                archive = await asyncio.wait_for(
                    self._builder.build(buckets), timeout=self._build_timeout
                )
            else:
                archive = await self._builder.build(buckets)
        except asyncio.TimeoutError:
            logger.error("Archive build timed out after %.1fs", self._build_timeout)
            self._message = f"Archive build timed out after {self._build_timeout:.1f}s"
            self._apply(SessionEvent.BUILD_FAILED)
            return
        except Exception as exc:
            logger.exception("Archive build failed: %s", exc)
            self._message = f"Archive build failed: {exc}"
            self._apply(SessionEvent.BUILD_FAILED)
            return
        self._archive = archive
        self._apply(SessionEvent.COMPLETED)

    def _discard_results(self) -> None:
        self._items = []
        self._buckets = None
        self._diagnostics = {}
        self._archive = None

    def _apply(self, event: SessionEvent) -> None:
        target = transition(self._state, event)
        if target is None:  # pragma: no cover - guarded by callers
            raise RuntimeError(f"Invalid transition {self._state.value} --{event.value}-->")
        previous = self._state
        self._state = target
        logger.info(
            "Session transition %s --%s--> %s", previous.value, event.value, target.value
        )
        self._notify(
            {
                "event": "state",
                "state": target.value,
                "previous": previous.value,
                "trigger": event.value,
                "message": self._message,
            }
        )

    async def _publish_progress(self, snapshot: ProgressSnapshot) -> None:
        self._notify({"event": "progress", **snapshot.to_dict()})
        await self._drain_listeners()

    def _notify(self, message: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(message)
            except Exception:
                logger.exception("Session listener failed event=%s", message.get("event"))
                continue
            if inspect.isawaitable(outcome):
                self._schedule_listener(outcome, message)

    def _schedule_listener(self, outcome: Awaitable[None], message: Dict[str, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Called from synchronous code with no loop; run the listener to completion here.
            asyncio.run(_guard_listener(outcome, message))
            return
        task = loop.create_task(_guard_listener(outcome, message))
        self._listener_tasks.add(task)
        task.add_done_callback(self._listener_tasks.discard)

    async def _drain_listeners(self) -> None:
        # Scheduled async listeners finish before the caller moves on.
        while self._listener_tasks:
            pending = list(self._listener_tasks)
            self._listener_tasks.difference_update(pending)
            await asyncio.gather(*pending)


async def _guard_listener(outcome: Awaitable[None], message: Dict[str, Any]) -> None:
    try:
        await outcome
    except Exception:
        logger.exception("Session listener failed event=%s", message.get("event"))


__all__ = [
    "Session",
    "SessionEvent",
    "SessionListener",
    "SessionState",
    "SubmitResult",
    "VALIDATION_MESSAGE",
    "transition",
]
