"""
AWS Textract OCR Provider

Structured remote provider: detect_document_text returns LINE blocks with
native confidence and normalized geometry, which are scaled to pixels.
botocore's own retries are disabled so one call is one attempt.
"""
import asyncio
from typing import Dict, List, Optional, Sequence, Tuple

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from smartshot.ocr.base import BackendConfig, CaptureImage, OcrResult, Rect, TextRegion
from smartshot.ocr.errors import (
    AuthError,
    NetworkError,
    OcrTimeoutError,
    ParseError,
    ProviderError,
    RateLimitError,
)
from smartshot.ocr.normalize import clamp_confidence, filter_by_region, primary_language

logger = structlog.get_logger()

_THROTTLING_CODES = {"ThrottlingException", "ProvisionedThroughputExceededException", "LimitExceededException"}
_AUTH_CODES = {
    "AccessDeniedException",
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "ExpiredTokenException",
}
_TRANSIENT_CODES = {"InternalServerError", "ServiceUnavailableException"}


class TextractProvider:
    """
    AWS Textract OCR provider.

    Credentials come from the standard AWS chain (environment, profile,
    instance role); BackendConfig.region selects the endpoint region.
    """

    def __init__(self):
        self._clients: Dict[Tuple[str, float], object] = {}

    def client_for(self, config: BackendConfig):
        """Textract client for the config's region and timeout (cached)"""
        region = config.region or "us-east-1"
        key = (region, config.timeout_seconds)
        if key not in self._clients:
            self._clients[key] = boto3.client(
                "textract",
                region_name=region,
                config=Config(
                    connect_timeout=config.timeout_seconds,
                    read_timeout=config.timeout_seconds,
                    retries={"total_max_attempts": 1},
                ),
            )
            logger.info("textract_client_initialized", region=region)
        return self._clients[key]

    async def recognize(
        self,
        image: CaptureImage,
        config: BackendConfig,
        language_hints: Sequence[str] = (),
        region_of_interest: Optional[Rect] = None,
    ) -> OcrResult:
        client = self.client_for(config)

        logger.info("calling_textract", size_bytes=len(image.data))

        response = await asyncio.to_thread(self._detect, client, image.data)

        regions = self.parse_blocks(response, image.width, image.height, primary_language(language_hints))
        regions = filter_by_region(regions, region_of_interest)
        result = OcrResult.from_regions(regions, backend=config.kind)

        logger.info("textract_complete",
                    chars=len(result.text),
                    lines=len(result.regions),
                    confidence=result.confidence)
        return result

    @staticmethod
    def _detect(client, image_bytes: bytes) -> dict:
        try:
            return client.detect_document_text(Document={"Bytes": image_bytes})
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            message = f"textract {code}: {e}"
            if code in _THROTTLING_CODES:
                raise RateLimitError(message) from e
            if code in _AUTH_CODES:
                raise AuthError(message) from e
            if code in _TRANSIENT_CODES:
                raise NetworkError(message) from e
            raise ProviderError(message) from e
        except NoCredentialsError as e:
            raise AuthError("AWS credentials not configured") from e
        except (ReadTimeoutError, ConnectTimeoutError) as e:
            raise OcrTimeoutError(f"textract timed out: {e}") from e
        except EndpointConnectionError as e:
            raise NetworkError(f"textract unreachable: {e}") from e
        except BotoCoreError as e:
            raise ProviderError(f"textract failed: {e}") from e

    @staticmethod
    def parse_blocks(
        response: dict,
        width: int,
        height: int,
        language: Optional[str] = None,
    ) -> List[TextRegion]:
        """Convert LINE blocks into pixel-space regions"""
        try:
            blocks = response["Blocks"]
        except (KeyError, TypeError) as e:
            raise ParseError("textract response has no Blocks") from e

        regions = []
        for block in blocks:
            if block.get("BlockType") != "LINE":
                continue
            box = (block.get("Geometry") or {}).get("BoundingBox")
            bbox = None
            if box:
                bbox = Rect(
                    x=box["Left"] * width,
                    y=box["Top"] * height,
                    width=box["Width"] * width,
                    height=box["Height"] * height,
                )
            regions.append(TextRegion(
                text=block.get("Text", ""),
                confidence=clamp_confidence(block.get("Confidence", 0) / 100),
                bbox=bbox,
                language=language,
            ))
        return regions
