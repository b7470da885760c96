"""JSON configuration for the sorting service.

Settings are read from ``config/gendersort.json`` (see
``config/gendersort.example.json``). Every section is optional; missing or
invalid values fall back to the defaults declared on the dataclasses below.
Secrets are never stored in the file: the remote detector key is read from the
environment variable named by ``detector.remote.api_key_env``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..ai.types import CONFIDENCE_THRESHOLD
from ..archive.builder import DEFAULT_ARCHIVE_NAME

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/gendersort.json")

_DETECTOR_BACKENDS = {"stub", "remote"}
_COMPRESSIONS = {"deflated", "stored"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


@dataclass
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class RemoteDetectorSettings:
    base_url: str = "http://localhost:8500"
    api_key_env: str = "GENDERSORT_FACE_API_KEY"
    timeout: float = 30.0
    detector_model: str = "tiny_face_detector"
    gender_model: str = "age_gender_net"


@dataclass
class DetectorSettings:
    backend: str = "stub"
    confidence_threshold: float = CONFIDENCE_THRESHOLD
    item_timeout: float | None = None
    max_dimension: int | None = 1024
    min_face_size: int = 64
    remote: RemoteDetectorSettings = field(default_factory=RemoteDetectorSettings)


@dataclass
class ArchiveSettings:
    filename: str = DEFAULT_ARCHIVE_NAME
    compression: str = "deflated"
    build_timeout: float | None = None


@dataclass
class LoggingSettings:
    level: str = "INFO"


@dataclass
class AppConfig:
    server: ServerSettings = field(default_factory=ServerSettings)
    detector: DetectorSettings = field(default_factory=DetectorSettings)
    archive: ArchiveSettings = field(default_factory=ArchiveSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        server_data = _section(data, "server")
        detector_data = _section(data, "detector")
        remote_data = _section(detector_data, "remote")
        archive_data = _section(data, "archive")
        logging_data = _section(data, "logging")

        defaults = cls()
        server = ServerSettings(
            host=_string(server_data.get("host"), defaults.server.host),
            port=_port(server_data.get("port"), defaults.server.port),
        )
        remote_defaults = defaults.detector.remote
        remote = RemoteDetectorSettings(
            base_url=_string(remote_data.get("base_url"), remote_defaults.base_url),
            api_key_env=_string(remote_data.get("api_key_env"), remote_defaults.api_key_env),
            timeout=_positive_float(remote_data.get("timeout"), remote_defaults.timeout),
            detector_model=_string(
                remote_data.get("detector_model"), remote_defaults.detector_model
            ),
            gender_model=_string(remote_data.get("gender_model"), remote_defaults.gender_model),
        )
        backend = _string(detector_data.get("backend"), defaults.detector.backend).lower()
        if backend not in _DETECTOR_BACKENDS:
            logger.warning("Unknown detector backend %r; using %s", backend, defaults.detector.backend)
            backend = defaults.detector.backend
        detector = DetectorSettings(
            backend=backend,
            confidence_threshold=_threshold(
                detector_data.get("confidence_threshold"), defaults.detector.confidence_threshold
            ),
            item_timeout=_optional_positive_float(detector_data.get("item_timeout")),
            max_dimension=_optional_positive_int(
                detector_data.get("max_dimension", defaults.detector.max_dimension)
            ),
            min_face_size=_optional_positive_int(detector_data.get("min_face_size"))
            or defaults.detector.min_face_size,
            remote=remote,
        )
        compression = _string(archive_data.get("compression"), defaults.archive.compression).lower()
        if compression not in _COMPRESSIONS:
            logger.warning("Unknown archive compression %r; using %s", compression, defaults.archive.compression)
            compression = defaults.archive.compression
        archive = ArchiveSettings(
            filename=_string(archive_data.get("filename"), defaults.archive.filename),
            compression=compression,
            build_timeout=_optional_positive_float(archive_data.get("build_timeout")),
        )
        level = _string(logging_data.get("level"), defaults.logging.level).upper()
        if level not in _LOG_LEVELS:
            level = defaults.logging.level
        return cls(
            server=server,
            detector=detector,
            archive=archive,
            logging=LoggingSettings(level=level),
        )


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from ``path``; ``None`` returns the defaults.

    Raises:
        FileNotFoundError: if ``path`` is given but does not exist.
        ValueError: if the file is not a JSON object.
    """
    if path is None:
        return AppConfig()
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(config_path)
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Configuration file {config_path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {config_path} must contain a JSON object")
    config = AppConfig.from_dict(data)
    logger.info(
        "Loaded configuration from %s: backend=%s threshold=%.2f archive=%s",
        config_path,
        config.detector.backend,
        config.detector.confidence_threshold,
        config.archive.filename,
    )
    return config


def _section(data: Any, name: str) -> dict[str, Any]:
    value = data.get(name) if isinstance(data, dict) else None
    return value if isinstance(value, dict) else {}


def _string(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _port(value: Any, default: int) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        return default
    return port if 0 < port < 65536 else default


def _threshold(value: Any, default: float) -> float:
    try:
        threshold = float(value)
    except (TypeError, ValueError):
        return default
    return threshold if 0.0 <= threshold <= 1.0 else default


def _positive_float(value: Any, default: float) -> float:
    result = _optional_positive_float(value)
    return default if result is None else result


def _optional_positive_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if result > 0 else None


def _optional_positive_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        result = int(value)
    except (TypeError, ValueError):
        return None
    return result if result > 0 else None


__all__ = [
    "AppConfig",
    "ArchiveSettings",
    "DEFAULT_CONFIG_PATH",
    "DetectorSettings",
    "LoggingSettings",
    "RemoteDetectorSettings",
    "ServerSettings",
    "load_config",
]
