"""
Google Cloud Vision OCR Provider

Vision-specific provider: TEXT_DETECTION returns a structured annotation
list (first entry = full text, following entries = words with bounding
polygons). Words are merged into line regions with real geometry.

Vision does not report per-word confidence for TEXT_DETECTION, so regions
carry the heuristic remote confidence.
"""
from typing import List, Optional, Sequence

import httpx
import structlog

from smartshot.ocr.base import BackendConfig, CaptureImage, OcrResult, Rect, TextRegion
from smartshot.ocr.errors import AuthError, NetworkError, ParseError, ProviderError, RateLimitError
from smartshot.ocr.normalize import (
    encode_image,
    filter_by_region,
    merge_into_lines,
    post_json,
    primary_language,
    whole_image_regions,
)

logger = structlog.get_logger()

# google.rpc.Code values carried in per-image errors
_RPC_PERMISSION_DENIED = 7
_RPC_RESOURCE_EXHAUSTED = 8
_RPC_UNAVAILABLE = 14
_RPC_UNAUTHENTICATED = 16


class GoogleVisionProvider:
    """Cloud Vision images:annotate adapter (single attempt)"""

    def __init__(
        self,
        default_confidence: float = 0.95,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.default_confidence = default_confidence
        self.transport = transport

    async def recognize(
        self,
        image: CaptureImage,
        config: BackendConfig,
        language_hints: Sequence[str] = (),
        region_of_interest: Optional[Rect] = None,
    ) -> OcrResult:
        if not config.credential:
            raise AuthError("google_vision API key not configured")

        request = {
            "image": {"content": encode_image(image.data)},
            "features": [{"type": "TEXT_DETECTION"}],
        }
        if language_hints:
            request["imageContext"] = {"languageHints": list(language_hints)}

        logger.info("google_vision_request", size_bytes=len(image.data))

        body = await post_json(
            config.endpoint,
            {"requests": [request]},
            provider="google_vision",
            timeout=config.timeout_seconds,
            params={"key": config.credential},
            transport=self.transport,
        )

        regions = self.parse_annotations(body, primary_language(language_hints))
        regions = filter_by_region(regions, region_of_interest)
        result = OcrResult.from_regions(regions, backend=config.kind)

        logger.info("google_vision_complete",
                    lines=len(result.regions),
                    chars=len(result.text))
        return result

    def parse_annotations(self, body: dict, fallback_language: Optional[str]) -> List[TextRegion]:
        try:
            response = body["responses"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError("google_vision response has no responses[0]") from e

        if response.get("error"):
            self._raise_for_rpc_error(response["error"])

        annotations = response.get("textAnnotations") or []
        if not annotations:
            return []

        full = annotations[0]
        language = full.get("locale") or fallback_language

        words = []
        for annotation in annotations[1:]:
            text = (annotation.get("description") or "").strip()
            vertices = (annotation.get("boundingPoly") or {}).get("vertices") or []
            if not text or not vertices:
                continue
            xs = [v.get("x", 0) for v in vertices]
            ys = [v.get("y", 0) for v in vertices]
            words.append(TextRegion(
                text=text,
                confidence=self.default_confidence,
                bbox=Rect(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys)),
                language=language,
            ))

        if words:
            return merge_into_lines(words)
        return whole_image_regions(full.get("description") or "", self.default_confidence, language)

    @staticmethod
    def _raise_for_rpc_error(error: dict) -> None:
        code = error.get("code")
        message = f"google_vision error {code}: {error.get('message', '')}"
        if code in (_RPC_PERMISSION_DENIED, _RPC_UNAUTHENTICATED):
            raise AuthError(message)
        if code == _RPC_RESOURCE_EXHAUSTED:
            raise RateLimitError(message)
        if code == _RPC_UNAVAILABLE:
            raise NetworkError(message)
        raise ProviderError(message)
