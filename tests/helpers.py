"""Test doubles and builders shared across test modules."""

import asyncio
import io
import threading
from typing import List, Optional, Sequence, Tuple, Union

from PIL import Image

from smartshot.ocr.base import (
    BackendConfig,
    BackendKind,
    CaptureImage,
    CaptureMetadata,
    OcrResult,
    Rect,
    TextRegion,
)
from smartshot.ocr.factory import ProviderRegistry

Outcome = Union[Exception, Tuple[str, float]]


def png_bytes(width: int = 40, height: int = 20, color: str = "white") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_image(data: Optional[bytes] = None, source_name: Optional[str] = None) -> CaptureImage:
    data = png_bytes() if data is None else data
    return CaptureImage(
        data=data,
        width=40,
        height=20,
        metadata=CaptureMetadata(source_name=source_name),
    )


class ScriptedProvider:
    """
    Adapter double that replays outcomes in order.

    Each outcome is an exception to raise or a (text, confidence) pair. The
    last outcome repeats once the script is exhausted.
    """

    def __init__(self, *outcomes: Outcome, delay: float = 0.0):
        self.outcomes: List[Outcome] = list(outcomes)
        self.delay = delay
        self.calls = 0
        self.seen_hints: List[Sequence[str]] = []

    async def recognize(
        self,
        image: CaptureImage,
        config: BackendConfig,
        language_hints: Sequence[str] = (),
        region_of_interest: Optional[Rect] = None,
    ) -> OcrResult:
        self.calls += 1
        self.seen_hints.append(tuple(language_hints))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, Exception):
            raise outcome
        text, confidence = outcome
        return OcrResult.from_regions(
            [TextRegion(text=text, confidence=confidence)],
            backend=config.kind,
        )


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def registry_with(**providers: ScriptedProvider) -> ProviderRegistry:
    """Registry keyed by BackendKind values, e.g. registry_with(on_device=..., openai=...)"""
    registry = ProviderRegistry()
    for name, provider in providers.items():
        kind = BackendKind(name)
        registry.register(kind, provider, BackendConfig(kind=kind, credential="test-key", max_retries=2))
    return registry




class BlockingRepository:
    """
    History repository double whose save() blocks its thread until released.

    `released_in_time` records whether release() arrived while save() was
    waiting, which only happens if the event loop kept running.
    """

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout
        self._release = threading.Event()
        self.saves = 0
        self.released_in_time: Optional[bool] = None

    def release(self) -> None:
        self._release.set()

    def save(self, item, image_bytes: bytes) -> None:
        self.saves += 1
        self.released_in_time = self._release.wait(timeout=self.timeout)

    def delete_many(self, item_ids) -> None:
        pass


async def release_soon(repository: BlockingRepository) -> None:
    await asyncio.sleep(0.01)
    repository.release()
