"""
Anthropic Claude OCR Provider

Uses the Anthropic SDK with SDK-level retries disabled (max_retries=0) so a
call is exactly one attempt. SDK exceptions are mapped onto the OCR error
taxonomy.
"""
from typing import Dict, Optional, Sequence, Tuple

import anthropic
import httpx
import structlog

from smartshot.ocr.base import BackendConfig, CaptureImage, OcrResult, Rect
from smartshot.ocr.errors import (
    AuthError,
    NetworkError,
    OcrTimeoutError,
    ParseError,
    ProviderError,
    RateLimitError,
)
from smartshot.ocr.normalize import (
    build_instruction,
    encode_image,
    parse_retry_after,
    primary_language,
    whole_image_regions,
)

logger = structlog.get_logger()


class ClaudeProvider:
    """Claude messages adapter (single attempt)"""

    def __init__(
        self,
        default_confidence: float = 0.95,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            default_confidence: Heuristic confidence for the whole-image region
            http_client: httpx client handed to the SDK (tests)
        """
        self.default_confidence = default_confidence
        self.http_client = http_client
        self._clients: Dict[Tuple[str, Optional[str], float], anthropic.AsyncAnthropic] = {}

    def _client_for(self, config: BackendConfig) -> anthropic.AsyncAnthropic:
        key = (config.credential, config.endpoint, config.timeout_seconds)
        client = self._clients.get(key)
        if client is None:
            client = anthropic.AsyncAnthropic(
                api_key=config.credential,
                base_url=config.endpoint,
                timeout=config.timeout_seconds,
                max_retries=0,
                http_client=self.http_client,
            )
            self._clients[key] = client
        return client

    async def recognize(
        self,
        image: CaptureImage,
        config: BackendConfig,
        language_hints: Sequence[str] = (),
        region_of_interest: Optional[Rect] = None,
    ) -> OcrResult:
        if not config.credential:
            raise AuthError("claude API key not configured")

        client = self._client_for(config)

        logger.info("claude_ocr_request", model=config.model, size_bytes=len(image.data))

        try:
            response = await client.messages.create(
                model=config.model,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": build_instruction(language_hints, region_of_interest)},
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": image.media_type,
                                    "data": encode_image(image.data),
                                },
                            },
                        ],
                    }
                ],
            )
        except anthropic.APITimeoutError as e:
            raise OcrTimeoutError(f"claude request timed out after {config.timeout_seconds}s") from e
        except anthropic.APIConnectionError as e:
            raise NetworkError(f"claude request failed: {e}") from e
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise AuthError(f"claude rejected credentials: {e}") from e
        except anthropic.RateLimitError as e:
            raise RateLimitError(
                f"claude rate limited: {e}",
                retry_after=parse_retry_after(e.response.headers.get("retry-after")),
            ) from e
        except anthropic.InternalServerError as e:
            raise NetworkError(f"claude server error: {e}") from e
        except anthropic.APIResponseValidationError as e:
            raise ParseError(f"claude returned an unexpected response: {e}") from e
        except anthropic.APIStatusError as e:
            raise ProviderError(f"claude returned HTTP {e.status_code}: {e}") from e

        text = "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )
        regions = whole_image_regions(text, self.default_confidence, primary_language(language_hints))
        result = OcrResult.from_regions(regions, backend=config.kind)

        logger.info("claude_ocr_complete",
                    chars=len(result.text),
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens)
        return result

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
