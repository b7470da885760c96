from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from .types import Detection, GenderDetector


@dataclass
class HashGenderDetector(GenderDetector):
    """Deterministic offline detector keyed on pixel content.

    The same image always yields the same detection, which keeps demos and
    end-to-end runs reproducible without a model. Images smaller than
    ``min_face_size`` on either side are treated as containing no face.
    """

    min_face_size: int = 64

    def load(self) -> None:
        return None

    def detect(self, image: Image.Image) -> Optional[Detection]:
        width, height = image.size
        if width < self.min_face_size or height < self.min_face_size:
            return None
        digest = int(hashlib.sha256(image.tobytes()).hexdigest(), 16)
        gender = "male" if digest % 2 == 0 else "female"
        confidence = 0.5 + ((digest >> 1) % 50) / 100.0
        return Detection(gender=gender, confidence=confidence)


__all__ = ["HashGenderDetector"]
