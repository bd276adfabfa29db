"""Tests for file-backed capture and bulk export rendering."""

import csv
import io
import json

import pytest

from smartshot.bulk.exporters import render_csv, render_json, render_text
from smartshot.bulk.processor import ExportRow, ItemStatus
from smartshot.common.capture import capture_from_file
from smartshot.ocr.base import CaptureKind
from smartshot.ocr.errors import CaptureError
from tests.helpers import png_bytes


def test_capture_from_file_reads_dimensions(tmp_path) -> None:
    path = tmp_path / "shot.png"
    path.write_bytes(png_bytes(width=64, height=32))

    image = capture_from_file(path)

    assert (image.width, image.height) == (64, 32)
    assert image.media_type == "image/png"
    assert image.data == path.read_bytes()
    assert image.metadata.kind is CaptureKind.FILE
    assert image.metadata.source_name == "shot.png"


def test_capture_from_file_rejects_non_images(tmp_path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("hello")

    with pytest.raises(CaptureError):
        capture_from_file(path)
    with pytest.raises(CaptureError):
        capture_from_file(tmp_path / "missing.png")


ROWS = [
    ExportRow(input_index=0, recognized_text="Hello", confidence=0.9, status=ItemStatus.SUCCEEDED,
              backend="on_device", source_name="a.png"),
    ExportRow(input_index=1, recognized_text="", confidence=0.0, status=ItemStatus.FAILED,
              error="network_error: reset", error_kind="network_error", backend="openai", source_name="b.png"),
]


def test_render_text_sections() -> None:
    text = render_text(ROWS)
    assert text.startswith("=== Image 1: a.png ===\nHello\n")
    assert "=== Image 2: b.png ===\n[failed] network_error: reset" in text


def test_render_json_and_csv() -> None:
    data = json.loads(render_json(ROWS))
    assert [row["status"] for row in data] == ["succeeded", "failed"]
    assert data[1]["error_kind"] == "network_error"

    rows = list(csv.DictReader(io.StringIO(render_csv(ROWS))))
    assert [row["source_name"] for row in rows] == ["a.png", "b.png"]
    assert rows[0]["recognized_text"] == "Hello"
    assert rows[1]["status"] == "failed"
