"""
Google Gemini OCR Provider

POSTs a generateContent request with the image as inline data. The answer
is free-form text spread over candidates[0].content.parts.
"""
from typing import Optional, Sequence

import httpx
import structlog

from smartshot.ocr.base import BackendConfig, CaptureImage, OcrResult, Rect
from smartshot.ocr.errors import AuthError, ParseError
from smartshot.ocr.normalize import (
    build_instruction,
    encode_image,
    post_json,
    primary_language,
    whole_image_regions,
)

logger = structlog.get_logger()


class GeminiProvider:
    """Gemini generateContent adapter (single attempt)"""

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
            raise AuthError("gemini API key not configured")

        url = f"{config.endpoint.rstrip('/')}/{config.model}:generateContent"
        payload = {
            "contents": [
                {
                    "parts": [
                        {"text": build_instruction(language_hints, region_of_interest)},
                        {"inline_data": {"mime_type": image.media_type, "data": encode_image(image.data)}},
                    ]
                }
            ],
            "generationConfig": {
                "maxOutputTokens": config.max_tokens,
                "temperature": config.temperature,
            },
        }

        logger.info("gemini_ocr_request", model=config.model, size_bytes=len(image.data))

        body = await post_json(
            url,
            payload,
            provider="gemini",
            timeout=config.timeout_seconds,
            params={"key": config.credential},
            transport=self.transport,
        )

        text = self.parse_content(body)
        regions = whole_image_regions(text, self.default_confidence, primary_language(language_hints))
        return OcrResult.from_regions(regions, backend=config.kind)

    @staticmethod
    def parse_content(body: dict) -> str:
        try:
            candidate = body["candidates"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError("gemini response has no candidates") from e

        # A candidate blocked by safety filters carries no content
        parts = (candidate.get("content") or {}).get("parts") or []
        if not isinstance(parts, list):
            raise ParseError("gemini candidate parts is not a list")
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
