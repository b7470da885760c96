from __future__ import annotations

import asyncio
import io
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from PIL import Image, ImageOps, UnidentifiedImageError

from .types import (
    CONFIDENCE_THRESHOLD,
    ClassificationResult,
    Detection,
    GenderDetector,
    Outcome,
)


logger = logging.getLogger(__name__)

_LABELS = {"male": Outcome.MALE, "female": Outcome.FEMALE}


@dataclass
class DetectionAdapter:
    """Turn raw image bytes into an outcome, folding every failure into UNKNOWN."""

    detector: GenderDetector
    threshold: float = CONFIDENCE_THRESHOLD
    timeout: float | None = None
    max_dimension: int | None = 1024
    _executor: ThreadPoolExecutor = field(
        init=False,
        repr=False,
        default_factory=lambda: ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="gendersort-detect"
        ),
    )

    async def initialize(self) -> None:
        # Model load failures propagate; the session decides what they mean.
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self.detector.load)
        logger.info("Detector ready backend=%s", self.detector.__class__.__name__)

    async def classify(self, image_bytes: bytes) -> Outcome:
        result = await self.classify_detailed(image_bytes)
        return result.outcome

    async def classify_detailed(self, image_bytes: bytes) -> ClassificationResult:
        loop = asyncio.get_running_loop()
        started = loop.create_future()

        def _run() -> ClassificationResult:
            loop.call_soon_threadsafe(_mark_started, started)
            return self._classify_sync(image_bytes)

        future = loop.run_in_executor(self._executor, _run)
        try:
            if self.timeout is not None and self.timeout > 0:
                # The timeout covers this item's own detection, not time spent
                # queued behind an earlier call that is still running.
                await asyncio.wait({started, future}, return_when=asyncio.FIRST_COMPLETED)
                return await asyncio.wait_for(future, timeout=self.timeout)
            return await future
        except asyncio.TimeoutError:
            logger.warning("Detection timed out after %.1fs", self.timeout)
            return ClassificationResult(
                outcome=Outcome.UNKNOWN,
                reason=f"Detection timed out after {self.timeout:.1f}s",
            )
        except Exception as exc:
            logger.warning("Detection worker failed: %s", exc)
            return ClassificationResult(outcome=Outcome.UNKNOWN, reason=str(exc))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    def _classify_sync(self, image_bytes: bytes) -> ClassificationResult:
        try:
            image = self._decode(image_bytes)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            logger.warning("Failed to decode image bytes=%d: %s", len(image_bytes), exc)
            return ClassificationResult(
                outcome=Outcome.UNKNOWN, reason=f"Unreadable image: {exc}"
            )

        try:
            detection = self.detector.detect(image)
        except Exception as exc:
            logger.warning("Detector raised %s: %s", exc.__class__.__name__, exc)
            return ClassificationResult(
                outcome=Outcome.UNKNOWN, reason=f"Detection failed: {exc}"
            )

        return self._interpret(detection)

    def _decode(self, image_bytes: bytes) -> Image.Image:
        if not image_bytes:
            raise ValueError("empty payload")
        image = Image.open(io.BytesIO(image_bytes))
        image.seek(0)
        image = ImageOps.exif_transpose(image).convert("RGB")
        if self.max_dimension and max(image.size) > self.max_dimension:
            image.thumbnail(
                (self.max_dimension, self.max_dimension), Image.Resampling.LANCZOS
            )
        return image

    def _interpret(self, detection: Detection | None) -> ClassificationResult:
        if detection is None:
            return ClassificationResult(outcome=Outcome.UNKNOWN, reason="No face detected")

        confidence = float(detection.confidence)
        if not math.isfinite(confidence):
            return ClassificationResult(
                outcome=Outcome.UNKNOWN,
                reason=f"Non-finite confidence {confidence!r}",
            )
        outcome = _LABELS.get(str(detection.gender).strip().lower())
        if outcome is None:
            return ClassificationResult(
                outcome=Outcome.UNKNOWN,
                confidence=confidence,
                reason=f"Unrecognised gender label {detection.gender!r}",
            )
        if confidence < self.threshold:
            return ClassificationResult(
                outcome=Outcome.UNKNOWN,
                confidence=confidence,
                reason=f"Confidence {confidence:.2f} below threshold {self.threshold:.2f}",
            )
        return ClassificationResult(outcome=outcome, confidence=confidence)


def _mark_started(started: asyncio.Future) -> None:
    if not started.done():
        started.set_result(None)


__all__ = ["DetectionAdapter"]
