"""
Chat-completion OCR Provider

Covers every provider speaking the OpenAI chat-completions schema:
OpenAI, xAI Grok and DeepSeek. The image travels as a base64 data URL next
to the recognition instruction; the answer is free-form text.
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


class ChatCompletionProvider:
    """OpenAI-compatible chat-completions adapter (single attempt)"""

    def __init__(
        self,
        default_confidence: float = 0.95,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            default_confidence: Heuristic confidence for the whole-image region
            transport: httpx transport override (tests)
        """
        self.default_confidence = default_confidence
        self.transport = transport

    def build_payload(
        self,
        image: CaptureImage,
        config: BackendConfig,
        language_hints: Sequence[str],
        region_of_interest: Optional[Rect],
    ) -> dict:
        data_url = f"data:{image.media_type};base64,{encode_image(image.data)}"
        return {
            "model": config.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_instruction(language_hints, region_of_interest)},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                }
            ],
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }

    async def recognize(
        self,
        image: CaptureImage,
        config: BackendConfig,
        language_hints: Sequence[str] = (),
        region_of_interest: Optional[Rect] = None,
    ) -> OcrResult:
        provider = config.kind.value
        if not config.credential:
            raise AuthError(f"{provider} API key not configured")

        logger.info("chat_ocr_request",
                    provider=provider,
                    model=config.model,
                    size_bytes=len(image.data))

        body = await post_json(
            config.endpoint,
            self.build_payload(image, config, language_hints, region_of_interest),
            provider=provider,
            timeout=config.timeout_seconds,
            headers={"Authorization": f"Bearer {config.credential}"},
            transport=self.transport,
        )

        text = self.parse_content(body, provider)
        regions = whole_image_regions(text, self.default_confidence, primary_language(language_hints))
        result = OcrResult.from_regions(regions, backend=config.kind)

        logger.info("chat_ocr_complete", provider=provider, chars=len(result.text))
        return result

    @staticmethod
    def parse_content(body: dict, provider: str) -> str:
        """Extract choices[0].message.content (string or list of text parts)"""
        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError(f"{provider} response missing choices[0].message.content") from e

        if content is None:
            return ""
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(
                part.get("text", "") for part in content
                if isinstance(part, dict) and part.get("type", "text") == "text"
            )
        raise ParseError(f"{provider} returned unexpected content type {type(content).__name__}")
