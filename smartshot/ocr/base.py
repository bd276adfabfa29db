"""
OCR Backend Base Interface

Defines the data model shared by every backend (captures, requests, regions,
results, backend configuration) and the contract all OCR providers satisfy.
This allows swapping recognition engines via configuration without changing
calling code.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Protocol, Sequence

from smartshot.ocr.errors import ErrorKind, OcrError, OcrFailure


class BackendKind(str, Enum):
    """Recognition engines (one member per remote provider)"""
    ON_DEVICE = "on_device"
    OPENAI = "openai"
    CLAUDE = "claude"
    GEMINI = "gemini"
    GROK = "grok"
    DEEPSEEK = "deepseek"
    GOOGLE_VISION = "google_vision"
    TEXTRACT = "textract"

    @property
    def is_remote(self) -> bool:
        return self is not BackendKind.ON_DEVICE

    @property
    def requires_credentials(self) -> bool:
        # Textract uses the ambient AWS credential chain
        return self not in (BackendKind.ON_DEVICE, BackendKind.TEXTRACT)

    @property
    def label(self) -> str:
        return _BACKEND_LABELS[self]


_BACKEND_LABELS = {
    BackendKind.ON_DEVICE: "On-device (Tesseract)",
    BackendKind.OPENAI: "OpenAI GPT-4 Vision",
    BackendKind.CLAUDE: "Anthropic Claude",
    BackendKind.GEMINI: "Google Gemini",
    BackendKind.GROK: "xAI Grok",
    BackendKind.DEEPSEEK: "DeepSeek",
    BackendKind.GOOGLE_VISION: "Google Cloud Vision",
    BackendKind.TEXTRACT: "AWS Textract",
}


class CaptureKind(str, Enum):
    """How a capture was taken"""
    FULL_SCREEN = "full_screen"
    REGION = "region"
    WINDOW = "window"
    FILE = "file"


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in pixel coordinates"""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    def intersects(self, other: "Rect") -> bool:
        return (
            self.x < other.right
            and other.x < self.right
            and self.y < other.bottom
            and other.y < self.bottom
        )

    @classmethod
    def union(cls, rects: Sequence["Rect"]) -> "Rect":
        left = min(r.x for r in rects)
        top = min(r.y for r in rects)
        right = max(r.right for r in rects)
        bottom = max(r.bottom for r in rects)
        return cls(x=left, y=top, width=right - left, height=bottom - top)


@dataclass(frozen=True)
class CaptureMetadata:
    """Where and when a capture came from"""
    kind: CaptureKind = CaptureKind.REGION
    region: Optional[Rect] = None
    monitor_id: Optional[str] = None
    source_name: Optional[str] = None
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class CaptureImage:
    """
    Encoded image bytes produced by a capture source.

    Owned by the caller. Recognition borrows it for one call and never
    retains it.
    """
    data: bytes
    width: int
    height: int
    media_type: str = "image/png"
    metadata: CaptureMetadata = field(default_factory=CaptureMetadata)

    @property
    def is_empty(self) -> bool:
        return not self.data or self.width <= 0 or self.height <= 0


@dataclass
class TextRegion:
    """
    One recognized piece of text.

    Attributes:
        text: Recognized string
        confidence: Backend confidence (0.0 to 1.0)
        bbox: Pixel geometry, or None for the whole-image sentinel
        language: Detected or hinted language tag
    """
    text: str
    confidence: float
    bbox: Optional[Rect] = None
    language: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 1:
            raise ValueError(f"Confidence must be 0-1, got {self.confidence}")

    @property
    def is_whole_image(self) -> bool:
        return self.bbox is None


def group_lines(regions: Sequence[TextRegion]) -> List[List[TextRegion]]:
    """
    Group regions with geometry into visual lines, top to bottom.

    A region joins the current line when its vertical center is within half
    a line height of the line's first region. Each line is sorted left to
    right.
    """
    lines: List[List[TextRegion]] = []
    for region in sorted(regions, key=lambda r: (r.bbox.y, r.bbox.x)):
        if lines:
            anchor = lines[-1][0].bbox
            tolerance = max(anchor.height, region.bbox.height) / 2
            if abs(region.bbox.center_y - anchor.center_y) <= tolerance:
                lines[-1].append(region)
                continue
        lines.append([region])
    return [sorted(line, key=lambda r: r.bbox.x) for line in lines]


def sort_reading_order(regions: Sequence[TextRegion]) -> List[TextRegion]:
    """Top-to-bottom, left-to-right; insertion order when any region lacks geometry"""
    regions = list(regions)
    if not regions or any(r.bbox is None for r in regions):
        return regions
    return [r for line in group_lines(regions) for r in line]


@dataclass
class OcrRequest:
    """Per-call recognition options"""
    backend: Optional[BackendKind] = None
    language_hints: List[str] = field(default_factory=list)
    confidence_threshold: float = 0.5
    region_of_interest: Optional[Rect] = None
    tags: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0 <= self.confidence_threshold <= 1:
            raise ValueError(
                f"Confidence threshold must be 0-1, got {self.confidence_threshold}"
            )


@dataclass
class OcrResult:
    """
    Normalized result of one recognition.

    Attributes:
        regions: Text regions in reading order
        text: Regions joined by newline
        confidence: Aggregate confidence, within [min, max] of region confidences
        backend: Backend that produced the result
        elapsed_seconds: Wall time including retries and fallback
        error: Terminal error, if recognition failed
        attempts: Adapter calls made (retries and fallback included)
        fallback_used: True when the on-device fallback produced this result
        warnings: Non-fatal notices (low confidence)
    """
    regions: List[TextRegion]
    text: str
    confidence: float
    backend: BackendKind
    elapsed_seconds: float = 0.0
    error: Optional[OcrFailure] = None
    attempts: int = 1
    fallback_used: bool = False
    warnings: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Validate confidence is in valid range"""
        if not 0 <= self.confidence <= 1:
            raise ValueError(f"Confidence must be 0-1, got {self.confidence}")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def from_regions(
        cls,
        regions: Sequence[TextRegion],
        backend: BackendKind,
        elapsed_seconds: float = 0.0,
    ) -> "OcrResult":
        """Order regions, derive full text and mean confidence"""
        ordered = sort_reading_order(regions)
        if not ordered:
            return cls(regions=[], text="", confidence=0.0, backend=backend,
                       elapsed_seconds=elapsed_seconds)

        confidence = sum(r.confidence for r in ordered) / len(ordered)
        # Guard float drift so the aggregate stays inside [min, max]
        confidence = min(max(confidence, min(r.confidence for r in ordered)),
                         max(r.confidence for r in ordered))
        return cls(
            regions=ordered,
            text="\n".join(r.text for r in ordered),
            confidence=confidence,
            backend=backend,
            elapsed_seconds=elapsed_seconds,
        )

    @classmethod
    def failed(
        cls,
        error: "OcrError | OcrFailure",
        backend: BackendKind,
        elapsed_seconds: float = 0.0,
        attempts: int = 1,
    ) -> "OcrResult":
        failure = error.to_failure() if isinstance(error, OcrError) else error
        return cls(
            regions=[],
            text="",
            confidence=0.0,
            backend=backend,
            elapsed_seconds=elapsed_seconds,
            error=failure,
            attempts=attempts,
        )

    def add_low_confidence_warning(self, threshold: float) -> None:
        self.warnings.append(
            f"{ErrorKind.LOW_CONFIDENCE.value}: confidence {self.confidence:.2f} "
            f"below threshold {threshold:.2f}"
        )


@dataclass(frozen=True)
class BackendConfig:
    """
    Per-backend configuration. Read-only after start-up and shared freely.

    Attributes:
        kind: Which engine
        credential: API key (None for on-device and Textract)
        endpoint: Request URL or base URL
        model: Provider model name
        timeout_seconds: Per-call timeout the adapter must honor
        max_retries: Retries the orchestrator may spend on transient errors
        max_tokens: Generation cap for generalist AI providers
        temperature: Sampling temperature for generalist AI providers
        region: Cloud region (Textract)
        engine_path: Local engine binary (Tesseract)
    """
    kind: BackendKind
    credential: Optional[str] = None
    endpoint: Optional[str] = None
    model: Optional[str] = None
    timeout_seconds: float = 30.0
    max_retries: int = 2
    max_tokens: int = 1000
    temperature: float = 0.1
    region: Optional[str] = None
    engine_path: Optional[str] = None


class OcrProvider(Protocol):
    """
    Protocol for OCR backend adapters.

    An adapter performs exactly one attempt per call. Retries and fallback
    belong to the orchestrator.
    """

    async def recognize(
        self,
        image: CaptureImage,
        config: BackendConfig,
        language_hints: Sequence[str] = (),
        region_of_interest: Optional[Rect] = None,
    ) -> OcrResult:
        """
        Recognize text in a capture.

        Args:
            image: Capture to recognize (borrowed for the call only)
            config: Backend configuration (credentials, endpoint, timeout)
            language_hints: Ordered language preferences
            region_of_interest: Restrict recognition to this rectangle

        Returns:
            OcrResult with regions in reading order

        Raises:
            AuthError, NetworkError, RateLimitError, ParseError,
            OcrTimeoutError, ProviderError
        """
        ...
