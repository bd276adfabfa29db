"""Tests for the shared OCR data model."""

import pytest

from smartshot.ocr.base import (
    BackendKind,
    CaptureImage,
    OcrRequest,
    OcrResult,
    Rect,
    TextRegion,
    sort_reading_order,
)
from smartshot.ocr.errors import ErrorKind, NetworkError, OcrFailure, RateLimitError


def _region(text: str, x: float, y: float, confidence: float = 0.9, height: float = 10) -> TextRegion:
    return TextRegion(text=text, confidence=confidence, bbox=Rect(x=x, y=y, width=30, height=height))


def test_text_region_rejects_out_of_range_confidence() -> None:
    with pytest.raises(ValueError):
        TextRegion(text="x", confidence=1.2)
    with pytest.raises(ValueError):
        TextRegion(text="x", confidence=-0.1)


def test_request_rejects_out_of_range_threshold() -> None:
    with pytest.raises(ValueError):
        OcrRequest(confidence_threshold=1.5)


def test_from_regions_joins_text_in_reading_order() -> None:
    """Regions on the same visual line are read left to right, lines top to bottom."""

    regions = [
        _region("World", x=100, y=2),
        _region("Second", x=0, y=40),
        _region("Hello", x=0, y=0),
    ]
    result = OcrResult.from_regions(regions, backend=BackendKind.ON_DEVICE)

    assert [r.text for r in result.regions] == ["Hello", "World", "Second"]
    assert result.text == "Hello\nWorld\nSecond"


def test_from_regions_confidence_is_mean_within_bounds() -> None:
    regions = [_region("a", 0, 0, confidence=0.6), _region("b", 0, 40, confidence=0.9)]
    result = OcrResult.from_regions(regions, backend=BackendKind.TEXTRACT)

    assert result.confidence == pytest.approx(0.75)
    assert min(r.confidence for r in regions) <= result.confidence <= max(r.confidence for r in regions)


def test_from_regions_empty_gives_zero_confidence() -> None:
    result = OcrResult.from_regions([], backend=BackendKind.OPENAI)
    assert result.text == ""
    assert result.confidence == 0.0
    assert result.ok


def test_whole_image_regions_keep_insertion_order() -> None:
    regions = [TextRegion(text="b", confidence=0.9), _region("a", 0, 0)]
    assert [r.text for r in sort_reading_order(regions)] == ["b", "a"]


def test_failed_result_carries_failure() -> None:
    result = OcrResult.failed(NetworkError("connection reset"), backend=BackendKind.GEMINI, attempts=3)

    assert not result.ok
    assert result.error == OcrFailure(kind=ErrorKind.NETWORK, message="connection reset")
    assert str(result.error) == "network_error: connection reset"
    assert result.attempts == 3
    assert result.regions == []


def test_low_confidence_warning_text() -> None:
    result = OcrResult.from_regions([TextRegion(text="x", confidence=0.3)], backend=BackendKind.ON_DEVICE)
    result.add_low_confidence_warning(0.5)
    assert result.warnings == ["low_confidence_warning: confidence 0.30 below threshold 0.50"]
    assert result.ok


def test_capture_image_is_empty() -> None:
    assert CaptureImage(data=b"", width=10, height=10).is_empty
    assert CaptureImage(data=b"x", width=0, height=10).is_empty
    assert not CaptureImage(data=b"x", width=1, height=1).is_empty


def test_rect_intersection_and_union() -> None:
    a = Rect(x=0, y=0, width=10, height=10)
    b = Rect(x=5, y=5, width=10, height=10)
    c = Rect(x=20, y=20, width=5, height=5)

    assert a.intersects(b)
    assert not a.intersects(c)
    assert Rect.union([a, c]) == Rect(x=0, y=0, width=25, height=25)


def test_error_retryability() -> None:
    assert NetworkError("x").retryable
    assert RateLimitError(retry_after=3).retry_after == 3
    assert RateLimitError().to_failure().kind is ErrorKind.RATE_LIMIT


def test_backend_kind_properties() -> None:
    assert not BackendKind.ON_DEVICE.is_remote
    assert BackendKind.CLAUDE.is_remote
    assert BackendKind.OPENAI.requires_credentials
    assert not BackendKind.TEXTRACT.requires_credentials
