from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from PIL import Image

# Detections with a gender confidence below this threshold are left unsorted.
CONFIDENCE_THRESHOLD: float = 0.6


class Outcome(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Detection:
    gender: str
    confidence: float
    age: float | None = None


class GenderDetector(Protocol):
    def load(self) -> None: ...

    def detect(self, image: Image.Image) -> Optional[Detection]: ...


@dataclass(frozen=True)
class ClassificationResult:
    outcome: Outcome
    confidence: float = 0.0
    reason: str | None = None


__all__ = [
    "CONFIDENCE_THRESHOLD",
    "ClassificationResult",
    "Detection",
    "GenderDetector",
    "Outcome",
]
