"""
Capture collaborators

Screen capture, clipboard and file export are platform services owned by
the host application. This module only declares the interfaces the core
expects from them, plus a file-backed capture used by the scripts.
"""
import io
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, Sequence, Union

import structlog
from PIL import Image, UnidentifiedImageError

from smartshot.ocr.base import CaptureImage, CaptureKind, CaptureMetadata
from smartshot.ocr.errors import CaptureError

logger = structlog.get_logger()

_MEDIA_TYPES = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "TIFF": "image/tiff",
    "BMP": "image/bmp",
}


class PermissionDeniedError(CaptureError):
    """Screen recording permission not granted"""


class NoActiveWindowError(CaptureError):
    """Window capture requested with no focused window"""


class UserCancelledError(CaptureError):
    """User dismissed the region selector"""


class CaptureSource(Protocol):
    """Produces one image per capture request"""

    def capture(self, kind: CaptureKind) -> CaptureImage:
        """
        Raises:
            PermissionDeniedError, NoActiveWindowError, UserCancelledError
        """
        ...


class ClipboardSink(Protocol):
    def write(self, text: str) -> None:
        ...


class ExportSink(Protocol):
    def write(self, rows: Sequence) -> None:
        ...


def capture_from_file(path: Union[str, Path]) -> CaptureImage:
    """
    Load an image file as a capture.

    The bytes are passed through unchanged; Pillow is only used to read
    the dimensions and format.

    Raises:
        CaptureError: File missing, unreadable or not an image
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise CaptureError(f"cannot read {path}: {e}") from e

    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            image_format = img.format or ""
    except (UnidentifiedImageError, OSError) as e:
        raise CaptureError(f"{path.name} is not a readable image") from e

    logger.debug("capture_loaded_from_file",
                 path=str(path),
                 width=width,
                 height=height,
                 format=image_format)

    return CaptureImage(
        data=data,
        width=width,
        height=height,
        media_type=_MEDIA_TYPES.get(image_format.upper(), "application/octet-stream"),
        metadata=CaptureMetadata(
            kind=CaptureKind.FILE,
            source_name=path.name,
            captured_at=datetime.now(timezone.utc),
        ),
    )
