from __future__ import annotations

import json

import pytest

from gendersort.ai.remote import RemoteFaceDetector
from gendersort.ai.stub import HashGenderDetector
from gendersort.api.config_loader import AppConfig, load_config
from gendersort.api.factory import build_detector, build_session


def test_defaults_without_file() -> None:
    cfg = load_config(None)
    assert cfg.server.port == 8000
    assert cfg.detector.backend == "stub"
    assert cfg.detector.confidence_threshold == pytest.approx(0.6)
    assert cfg.archive.filename == "sorted_images.zip"


def test_loads_values_from_file(tmp_path) -> None:
    path = tmp_path / "gendersort.json"
    path.write_text(
        json.dumps(
            {
                "server": {"host": "127.0.0.1", "port": 9100},
                "detector": {
                    "backend": "remote",
                    "confidence_threshold": 0.75,
                    "item_timeout": 5,
                    "max_dimension": None,
                    "remote": {"base_url": "http://faces:9000", "timeout": 12},
                },
                "archive": {"filename": "out.zip", "compression": "stored", "build_timeout": 30},
                "logging": {"level": "debug"},
            }
        ),
        encoding="utf-8",
    )

    cfg = load_config(path)

    assert (cfg.server.host, cfg.server.port) == ("127.0.0.1", 9100)
    assert cfg.detector.backend == "remote"
    assert cfg.detector.confidence_threshold == pytest.approx(0.75)
    assert cfg.detector.item_timeout == pytest.approx(5.0)
    assert cfg.detector.max_dimension is None
    assert cfg.detector.remote.base_url == "http://faces:9000"
    assert cfg.detector.remote.timeout == pytest.approx(12.0)
    assert cfg.archive.compression == "stored"
    assert cfg.archive.build_timeout == pytest.approx(30.0)
    assert cfg.logging.level == "DEBUG"


def test_invalid_values_fall_back_to_defaults() -> None:
    cfg = AppConfig.from_dict(
        {
            "server": {"port": "not-a-port"},
            "detector": {"backend": "magic", "confidence_threshold": 3, "item_timeout": -1},
            "archive": {"compression": "brotli", "filename": "  "},
            "logging": {"level": "chatty"},
        }
    )
    assert cfg.server.port == 8000
    assert cfg.detector.backend == "stub"
    assert cfg.detector.confidence_threshold == pytest.approx(0.6)
    assert cfg.detector.item_timeout is None
    assert cfg.archive.compression == "deflated"
    assert cfg.archive.filename == "sorted_images.zip"
    assert cfg.logging.level == "INFO"


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.json")


def test_invalid_json_raises(tmp_path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_build_detector_selects_backend(monkeypatch) -> None:
    monkeypatch.setenv("GENDERSORT_FACE_API_KEY", "token-123")
    remote_cfg = AppConfig.from_dict({"detector": {"backend": "remote"}})

    remote = build_detector(remote_cfg)
    stub = build_detector(AppConfig())

    assert isinstance(remote, RemoteFaceDetector)
    assert remote.api_key == "token-123"
    assert isinstance(stub, HashGenderDetector)


def test_build_session_applies_settings() -> None:
    cfg = AppConfig.from_dict(
        {
            "detector": {"confidence_threshold": 0.8},
            "archive": {"filename": "batch.zip"},
        }
    )
    session = build_session(cfg)
    try:
        assert session.archive_filename == "batch.zip"
        assert session.state.value == "loading"
    finally:
        session.close()
