from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from ..ai.types import Outcome
from .types import ProgressSnapshot


def _zero_counts() -> Dict[str, int]:
    return {outcome.value: 0 for outcome in Outcome}


@dataclass
class ProgressTracker:
    """Processed/total counters fed by the classifier pipeline."""

    total: int = 0
    processed: int = 0
    counts: Dict[str, int] = field(default_factory=_zero_counts)

    def start(self, total: int) -> None:
        self.total = max(0, int(total))
        self.processed = 0
        self.counts = _zero_counts()

    def record(self, outcome: Outcome) -> ProgressSnapshot:
        self.counts[Outcome(outcome).value] += 1
        self.processed += 1
        return self.snapshot()

    def reset(self) -> None:
        self.start(0)

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            processed=self.processed,
            total=self.total,
            counts=dict(self.counts),
        )


__all__ = ["ProgressTracker"]
