from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Sequence, Union

from ..ai.adapter import DetectionAdapter
from ..ai.types import Outcome
from .progress import ProgressTracker
from .types import BatchResult, ImageItem, ItemResult, ProgressSnapshot, ResultBuckets


logger = logging.getLogger(__name__)

ProgressObserver = Callable[[ProgressSnapshot], Union[None, Awaitable[None]]]


@dataclass
class ClassifierPipeline:
    """Classify a batch one item at a time and route each item into a bucket."""

    adapter: DetectionAdapter

    async def stream(
        self,
        batch: Sequence[ImageItem],
        tracker: ProgressTracker,
    ) -> AsyncIterator[ItemResult]:
        tracker.start(len(batch))
        for index, item in enumerate(batch):
            result = await self.adapter.classify_detailed(item.data)
            snapshot = tracker.record(result.outcome)
            logger.debug(
                "Classified item=%s outcome=%s confidence=%.2f progress=%d/%d",
                item.filename,
                result.outcome.value,
                result.confidence,
                snapshot.processed,
                snapshot.total,
            )
            yield ItemResult(index=index, item=item, result=result, snapshot=snapshot)

    async def run(
        self,
        batch: Sequence[ImageItem],
        tracker: ProgressTracker | None = None,
        observer: ProgressObserver | None = None,
    ) -> BatchResult:
        tracker = tracker or ProgressTracker()
        buckets = ResultBuckets()
        diagnostics: dict[str, str] = {}

        async for item_result in self.stream(batch, tracker):
            buckets.add(item_result.outcome, item_result.item)
            if item_result.outcome is Outcome.UNKNOWN and item_result.result.reason:
                key = item_result.item.filename
                if key in diagnostics:
                    key = f"{key} (#{item_result.index + 1})"
                diagnostics[key] = item_result.result.reason
            if observer is not None:
                outcome = observer(item_result.snapshot)
                if inspect.isawaitable(outcome):
                    await outcome

        snapshot = tracker.snapshot()
        logger.info(
            "Batch classified total=%d male=%d female=%d unknown=%d",
            snapshot.total,
            snapshot.counts[Outcome.MALE.value],
            snapshot.counts[Outcome.FEMALE.value],
            snapshot.counts[Outcome.UNKNOWN.value],
        )
        return BatchResult(buckets=buckets, snapshot=snapshot, diagnostics=diagnostics)


__all__ = ["ClassifierPipeline", "ProgressObserver"]
