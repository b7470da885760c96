from __future__ import annotations

from .classifier import ClassifierPipeline, ProgressObserver
from .progress import ProgressTracker
from .types import BatchResult, ImageItem, ItemResult, ProgressSnapshot, ResultBuckets

__all__ = [
    "BatchResult",
    "ClassifierPipeline",
    "ImageItem",
    "ItemResult",
    "ProgressObserver",
    "ProgressSnapshot",
    "ProgressTracker",
    "ResultBuckets",
]
