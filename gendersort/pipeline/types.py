from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Tuple

from ..ai.types import ClassificationResult, Outcome


@dataclass(frozen=True)
class ImageItem:
    """A named binary payload submitted as part of a batch."""

    filename: str
    data: bytes = field(repr=False)
    media_type: str = "application/octet-stream"

    @property
    def is_image(self) -> bool:
        return str(self.media_type or "").strip().lower().startswith("image/")

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ResultBuckets:
    male: List[ImageItem] = field(default_factory=list)
    female: List[ImageItem] = field(default_factory=list)
    unknown: List[ImageItem] = field(default_factory=list)

    def get(self, outcome: Outcome) -> List[ImageItem]:
        return getattr(self, Outcome(outcome).value)

    def add(self, outcome: Outcome, item: ImageItem) -> None:
        self.get(outcome).append(item)

    def counts(self) -> Dict[str, int]:
        return {outcome.value: len(self.get(outcome)) for outcome in Outcome}

    @property
    def total(self) -> int:
        return len(self.male) + len(self.female) + len(self.unknown)

    def __iter__(self) -> Iterator[Tuple[Outcome, List[ImageItem]]]:
        for outcome in Outcome:
            yield outcome, self.get(outcome)


@dataclass(frozen=True)
class ProgressSnapshot:
    processed: int
    total: int
    counts: Dict[str, int]

    @classmethod
    def empty(cls) -> "ProgressSnapshot":
        return cls(processed=0, total=0, counts={outcome.value: 0 for outcome in Outcome})

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 0
        return round(self.processed / self.total * 100)

    @property
    def complete(self) -> bool:
        return self.processed == self.total

    def to_dict(self) -> Dict[str, object]:
        return {
            "processed": self.processed,
            "total": self.total,
            "percent": self.percent,
            "counts": dict(self.counts),
        }


@dataclass(frozen=True)
class ItemResult:
    index: int
    item: ImageItem
    result: ClassificationResult
    snapshot: ProgressSnapshot

    @property
    def outcome(self) -> Outcome:
        return self.result.outcome


@dataclass
class BatchResult:
    buckets: ResultBuckets
    snapshot: ProgressSnapshot
    diagnostics: Dict[str, str] = field(default_factory=dict)


__all__ = [
    "BatchResult",
    "ImageItem",
    "ItemResult",
    "ProgressSnapshot",
    "ResultBuckets",
]
