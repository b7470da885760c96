from __future__ import annotations

import base64
import io
import zipfile
from unittest.mock import Mock

import pytest
from PIL import Image

from gendersort.ai.stub import HashGenderDetector
from gendersort.api.client import SorterHttpClient
from gendersort.cli import collect_items, main
from gendersort.pipeline.types import ImageItem


def _write_png(path, size=(96, 96), color=(30, 60, 90)) -> None:
    Image.new("RGB", size, color).save(path, format="PNG")


def test_collect_items_guesses_media_types(tmp_path) -> None:
    _write_png(tmp_path / "b.png")
    (tmp_path / "a.txt").write_text("hello", encoding="utf-8")
    nested = tmp_path / "nested"
    nested.mkdir()
    _write_png(nested / "c.png")

    flat = collect_items(tmp_path)
    deep = collect_items(tmp_path, recursive=True)

    assert [(item.filename, item.media_type) for item in flat] == [
        ("a.txt", "text/plain"),
        ("b.png", "image/png"),
    ]
    assert sorted(item.filename for item in deep) == ["a.txt", "b.png", "c.png"]


def test_local_command_writes_archive(tmp_path, capsys) -> None:
    source = tmp_path / "photos"
    source.mkdir()
    _write_png(source / "one.png", color=(200, 10, 10))
    _write_png(source / "two.png", color=(10, 200, 10))
    _write_png(source / "tiny.png", size=(8, 8))
    (source / "notes.txt").write_text("not an image", encoding="utf-8")
    output = tmp_path / "out" / "sorted.zip"

    exit_code = main(
        ["local", str(source), "-o", str(output), "--config", str(tmp_path / "missing.json")]
    )

    assert exit_code == 0
    with zipfile.ZipFile(output) as archive:
        names = archive.namelist()
    assert len(names) == 3
    assert "Unsorted/tiny.png" in names
    assert all(name.split("/")[0] in {"Boys", "Girls", "Unsorted"} for name in names)
    out = capsys.readouterr().out
    assert "Skipped 1 non-image file(s)" in out
    assert "3/3 (100%)" in out


def test_local_command_rejects_directory_without_images(tmp_path, capsys) -> None:
    (tmp_path / "readme.md").write_text("# nothing", encoding="utf-8")

    exit_code = main(["local", str(tmp_path), "--config", str(tmp_path / "missing.json")])

    assert exit_code == 1
    assert "Please upload valid image files" in capsys.readouterr().out


def test_hash_detector_is_deterministic() -> None:
    detector = HashGenderDetector(min_face_size=16)
    image = Image.new("RGB", (40, 40), (1, 2, 3))

    first = detector.detect(image)
    second = detector.detect(image.copy())

    assert first == second
    assert first.gender in {"male", "female"}
    assert 0.5 <= first.confidence < 1.0
    assert detector.detect(Image.new("RGB", (10, 40))) is None


def test_http_client_encodes_items_and_surfaces_errors() -> None:
    http = Mock()
    accepted = Mock(status_code=202)
    accepted.json.return_value = {"state": "processing", "accepted": 1, "skipped": 0}
    http.request.return_value = accepted
    client = SorterHttpClient(base_url="http://sorter.local/", session=http)

    result = client.submit([ImageItem(filename="a.png", data=b"\x89PNG", media_type="image/png")])

    assert result["accepted"] == 1
    method, url = http.request.call_args.args
    assert (method, url) == ("POST", "http://sorter.local/v1/batches")
    sent = http.request.call_args.kwargs["json"]["items"][0]
    assert sent["filename"] == "a.png"
    assert base64.b64decode(sent["image_base64"]) == b"\x89PNG"

    conflict = Mock(status_code=409)
    conflict.json.return_value = {"detail": "No archive available while session is idle"}
    http.request.return_value = conflict
    with pytest.raises(RuntimeError, match="409: No archive available"):
        client.download()


def test_http_client_waits_until_settled() -> None:
    http = Mock()
    states = iter(["processing", "processing", "ready"])

    def _respond(*args, **kwargs):
        response = Mock(status_code=200)
        response.json.return_value = {"state": next(states)}
        return response

    http.request.side_effect = _respond
    client = SorterHttpClient(base_url="http://sorter.local", session=http)

    status = client.wait_until_settled(poll_interval=0.0)

    assert status["state"] == "ready"
    assert http.request.call_count == 3
