from __future__ import annotations

from .types import (
    CONFIDENCE_THRESHOLD,
    ClassificationResult,
    Detection,
    GenderDetector,
    Outcome,
)

__all__ = [
    "CONFIDENCE_THRESHOLD",
    "ClassificationResult",
    "Detection",
    "GenderDetector",
    "Outcome",
    "DetectionAdapter",
    "HashGenderDetector",
    "RemoteFaceDetector",
]


def __getattr__(name: str):
    if name == "DetectionAdapter":
        from .adapter import DetectionAdapter

        return DetectionAdapter
    if name == "HashGenderDetector":
        from .stub import HashGenderDetector

        return HashGenderDetector
    if name == "RemoteFaceDetector":
        from .remote import RemoteFaceDetector

        return RemoteFaceDetector
    raise AttributeError(f"module 'gendersort.ai' has no attribute {name!r}")
