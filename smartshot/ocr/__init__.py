"""
OCR Package

Pluggable recognition backends behind one orchestrator.

Main entry point:
    from smartshot.ocr import OcrOrchestrator, OcrRequest

    orchestrator = OcrOrchestrator.from_settings()
    result = await orchestrator.recognize(image, OcrRequest(language_hints=["en"]))

Available backends:
    - on_device: Tesseract (local, always available as fallback)
    - openai, grok, deepseek: OpenAI-compatible chat completions
    - claude: Anthropic Messages API
    - gemini: Google Gemini generateContent
    - google_vision: Cloud Vision TEXT_DETECTION (line geometry)
    - textract: AWS Textract detect_document_text (line geometry, native confidence)

Configuration via environment:
    - OCR_DEFAULT_BACKEND: Backend used when a request names none
    - OCR_CONFIDENCE_THRESHOLD: Low-confidence threshold (default: 0.5)
    - OCR_FALLBACK_ENABLED: Fall back to on-device (default: true)
    - OCR_MAX_RETRIES: Retries on transient errors (default: 2)

Content analysis:
    from smartshot.ocr.analysis import analyze
    analyze(result.text).tags   # e.g. {"code", "programming", "imports"}
"""
from smartshot.ocr.analysis import ContentAnalysis, ContentType, analyze
from smartshot.ocr.base import (
    BackendConfig,
    BackendKind,
    CaptureImage,
    CaptureKind,
    CaptureMetadata,
    OcrProvider,
    OcrRequest,
    OcrResult,
    Rect,
    TextRegion,
)
from smartshot.ocr.errors import (
    AuthError,
    CaptureError,
    ErrorKind,
    NetworkError,
    OcrError,
    OcrFailure,
    OcrTimeoutError,
    ParseError,
    ProviderError,
    RateLimitError,
)
from smartshot.ocr.factory import ProviderRegistry, build_backend_configs, build_registry
from smartshot.ocr.orchestrator import OcrOrchestrator, RetryPolicy

__all__ = [
    "AuthError",
    "BackendConfig",
    "BackendKind",
    "CaptureError",
    "CaptureImage",
    "CaptureKind",
    "CaptureMetadata",
    "ContentAnalysis",
    "ContentType",
    "ErrorKind",
    "NetworkError",
    "OcrError",
    "OcrFailure",
    "OcrOrchestrator",
    "OcrProvider",
    "OcrRequest",
    "OcrResult",
    "OcrTimeoutError",
    "ParseError",
    "ProviderError",
    "ProviderRegistry",
    "RateLimitError",
    "Rect",
    "RetryPolicy",
    "TextRegion",
    "analyze",
    "build_backend_configs",
    "build_registry",
]
