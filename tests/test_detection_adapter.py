import asyncio
import io
import time
import unittest

from PIL import Image

from gendersort.ai.adapter import DetectionAdapter
from gendersort.ai.types import CONFIDENCE_THRESHOLD, Detection, Outcome


def _png_bytes(size=(96, 96), color=(200, 120, 80)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


class _StaticDetector:
    def __init__(self, detection=None, error: Exception | None = None, delay: float = 0.0) -> None:
        self._detection = detection
        self._error = error
        self._delay = delay
        self.calls = 0
        self.last_size = None

    def load(self) -> None:
        if self._error is not None:
            raise self._error

    def detect(self, image):
        self.calls += 1
        self.last_size = image.size
        if self._delay:
            time.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._detection


class _SlowFirstDetector:
    def __init__(self, delay: float) -> None:
        self._delay = delay
        self.calls = 0

    def load(self) -> None:
        pass

    def detect(self, image):
        self.calls += 1
        if self.calls == 1:
            time.sleep(self._delay)
        return Detection(gender="female", confidence=0.9)


class DetectionAdapterTests(unittest.TestCase):
    def _classify(self, adapter: DetectionAdapter, payload: bytes):
        try:
            return asyncio.run(adapter.classify_detailed(payload))
        finally:
            adapter.shutdown()

    def test_threshold_is_inclusive_on_accept_side(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(Detection(gender="male", confidence=0.6)))
        self.assertEqual(self._classify(adapter, _png_bytes()).outcome, Outcome.MALE)

    def test_confidence_just_below_threshold_is_unknown(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(Detection(gender="female", confidence=0.599999)))
        result = self._classify(adapter, _png_bytes())
        self.assertEqual(result.outcome, Outcome.UNKNOWN)
        self.assertIn(f"{CONFIDENCE_THRESHOLD:.2f}", result.reason)

    def test_label_is_normalised(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(Detection(gender=" Female ", confidence=0.8)))
        result = self._classify(adapter, _png_bytes())
        self.assertEqual(result.outcome, Outcome.FEMALE)
        self.assertAlmostEqual(result.confidence, 0.8)
        self.assertIsNone(result.reason)

    def test_unrecognised_label_is_unknown(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(Detection(gender="robot", confidence=0.99)))
        self.assertEqual(self._classify(adapter, _png_bytes()).outcome, Outcome.UNKNOWN)

    def test_no_face_is_unknown(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(None))
        result = self._classify(adapter, _png_bytes())
        self.assertEqual(result.outcome, Outcome.UNKNOWN)
        self.assertEqual(result.reason, "No face detected")

    def test_undecodable_bytes_skip_detector(self) -> None:
        detector = _StaticDetector(Detection(gender="male", confidence=0.9))
        adapter = DetectionAdapter(detector)
        result = self._classify(adapter, b"definitely not an image")
        self.assertEqual(result.outcome, Outcome.UNKNOWN)
        self.assertTrue(result.reason.startswith("Unreadable image"))
        self.assertEqual(detector.calls, 0)

    def test_empty_payload_is_unknown(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(Detection(gender="male", confidence=0.9)))
        self.assertEqual(self._classify(adapter, b"").outcome, Outcome.UNKNOWN)

    def test_detector_error_is_absorbed(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(error=RuntimeError("model crashed")))
        result = self._classify(adapter, _png_bytes())
        self.assertEqual(result.outcome, Outcome.UNKNOWN)
        self.assertIn("model crashed", result.reason)

    def test_timeout_is_unknown(self) -> None:
        detector = _StaticDetector(Detection(gender="male", confidence=0.9), delay=0.5)
        adapter = DetectionAdapter(detector, timeout=0.05)
        result = self._classify(adapter, _png_bytes())
        self.assertEqual(result.outcome, Outcome.UNKNOWN)
        self.assertIn("timed out", result.reason)

    def test_nan_confidence_is_unknown(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(Detection(gender="male", confidence=float("nan"))))
        result = self._classify(adapter, _png_bytes())
        self.assertEqual(result.outcome, Outcome.UNKNOWN)
        self.assertIn("Non-finite", result.reason)

    def test_timeout_starts_when_item_reaches_worker(self) -> None:
        detector = _SlowFirstDetector(delay=0.6)
        adapter = DetectionAdapter(detector, timeout=0.2)

        async def classify_two():
            first = await adapter.classify_detailed(_png_bytes())
            second = await adapter.classify_detailed(_png_bytes())
            return first, second

        try:
            first, second = asyncio.run(classify_two())
        finally:
            adapter.shutdown()

        self.assertEqual(first.outcome, Outcome.UNKNOWN)
        self.assertIn("timed out", first.reason)
        self.assertEqual(second.outcome, Outcome.FEMALE)
        self.assertEqual(detector.calls, 2)

    def test_large_images_are_downscaled(self) -> None:
        detector = _StaticDetector(Detection(gender="male", confidence=0.9))
        adapter = DetectionAdapter(detector, max_dimension=256)
        self._classify(adapter, _png_bytes(size=(1000, 500)))
        self.assertLessEqual(max(detector.last_size), 256)

    def test_classify_returns_outcome_only(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(Detection(gender="female", confidence=0.7)))
        try:
            outcome = asyncio.run(adapter.classify(_png_bytes()))
        finally:
            adapter.shutdown()
        self.assertIs(outcome, Outcome.FEMALE)

    def test_initialize_propagates_load_failure(self) -> None:
        adapter = DetectionAdapter(_StaticDetector(error=RuntimeError("models unavailable")))
        try:
            with self.assertRaises(RuntimeError):
                asyncio.run(adapter.initialize())
        finally:
            adapter.shutdown()


if __name__ == "__main__":
    unittest.main()
