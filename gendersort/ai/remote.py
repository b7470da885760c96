from __future__ import annotations

import base64
import io
import math
from dataclasses import dataclass, field
from typing import Any, Optional

import requests
from PIL import Image

from .types import Detection, GenderDetector


@dataclass
class RemoteFaceDetector(GenderDetector):
    """Detect a face and estimate its gender through an HTTP face analysis service."""

    base_url: str
    api_key: str | None = None
    timeout: float = 30.0
    detector_model: str = "tiny_face_detector"
    gender_model: str = "age_gender_net"
    jpeg_quality: int = 90
    session: requests.Session = field(default_factory=requests.Session)

    def load(self) -> None:
        data = self._request("GET", "/v1/models")
        models = data.get("models") if isinstance(data, dict) else None
        if not isinstance(models, list):
            raise RuntimeError("Unexpected response format from face analysis models endpoint")
        available = {
            str(entry.get("name") if isinstance(entry, dict) else entry).strip()
            for entry in models
        }
        missing = [
            name for name in (self.detector_model, self.gender_model) if name not in available
        ]
        if missing:
            raise RuntimeError(f"Face analysis service is missing models: {', '.join(missing)}")

    def detect(self, image: Image.Image) -> Optional[Detection]:
        payload = self._build_payload(image)
        data = self._request("POST", "/v1/detect", json=payload)
        return self._parse_faces(data)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        url = f"{self.base_url.rstrip('/')}{path}"
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
            return response.json()
        except requests.Timeout as exc:
            raise RuntimeError("Timed out waiting for face analysis service") from exc
        except requests.RequestException as exc:
            raise RuntimeError(f"Failed to reach face analysis service: {exc}") from exc
        except ValueError as exc:
            raise RuntimeError("Face analysis response was not valid JSON") from exc

    def _build_payload(self, image: Image.Image) -> dict[str, Any]:
        buffer = io.BytesIO()
        image.convert("RGB").save(buffer, format="JPEG", quality=self.jpeg_quality)
        return {
            "detector": self.detector_model,
            "attributes": ["age", "gender"],
            "single_face": True,
            "image": {
                "mime_type": "image/jpeg",
                "data": base64.b64encode(buffer.getvalue()).decode("ascii"),
            },
        }

    def _parse_faces(self, data: Any) -> Optional[Detection]:
        try:
            faces = data["faces"]
        except (KeyError, TypeError) as exc:
            raise RuntimeError("Unexpected response format from face analysis service") from exc
        if not isinstance(faces, list):
            raise RuntimeError("Unexpected response format from face analysis service")
        candidates = [face for face in faces if isinstance(face, dict)]
        if not candidates:
            return None

        best = max(candidates, key=lambda face: _as_float(face.get("score"), 0.0))
        gender = best.get("gender")
        if not gender:
            raise RuntimeError("Face analysis response did not include a gender")

        confidence = _as_float(
            best.get("gender_probability", best.get("confidence")), 0.0
        )
        if not math.isfinite(confidence):
            confidence = 0.0
        confidence = max(0.0, min(1.0, confidence))
        age_value = best.get("age")
        age = _as_float(age_value, None) if age_value is not None else None
        return Detection(gender=str(gender).strip().lower(), confidence=confidence, age=age)


def _as_float(value: Any, default: float | None) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


__all__ = ["RemoteFaceDetector"]
