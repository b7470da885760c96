from __future__ import annotations

import logging
import os

from ..ai.adapter import DetectionAdapter
from ..ai.remote import RemoteFaceDetector
from ..ai.stub import HashGenderDetector
from ..ai.types import GenderDetector
from ..archive.builder import ArchiveBuilder
from .config_loader import AppConfig
from .session import Session

logger = logging.getLogger(__name__)


def build_detector(cfg: AppConfig) -> GenderDetector:
    settings = cfg.detector
    if settings.backend == "remote":
        remote = settings.remote
        api_key = os.environ.get(remote.api_key_env) or None
        if api_key is None:
            logger.warning(
                "Environment variable %s is not set; calling face analysis service without credentials",
                remote.api_key_env,
            )
        return RemoteFaceDetector(
            base_url=remote.base_url,
            api_key=api_key,
            timeout=remote.timeout,
            detector_model=remote.detector_model,
            gender_model=remote.gender_model,
        )
    return HashGenderDetector(min_face_size=settings.min_face_size)


def build_session(cfg: AppConfig, detector: GenderDetector | None = None) -> Session:
    selected = detector or build_detector(cfg)
    adapter = DetectionAdapter(
        detector=selected,
        threshold=cfg.detector.confidence_threshold,
        timeout=cfg.detector.item_timeout,
        max_dimension=cfg.detector.max_dimension,
    )
    builder = ArchiveBuilder(
        filename=cfg.archive.filename,
        compression=cfg.archive.compression,
    )
    logger.info(
        "Session configured detector=%s threshold=%.2f item_timeout=%s archive=%s",
        selected.__class__.__name__,
        adapter.threshold,
        adapter.timeout,
        builder.filename,
    )
    return Session(adapter, builder, build_timeout=cfg.archive.build_timeout)


__all__ = ["build_detector", "build_session"]
