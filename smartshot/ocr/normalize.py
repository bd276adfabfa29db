"""
Normalization helpers shared by backend adapters.

Remote providers answer in very different shapes. Everything that turns a
provider answer into TextRegions, or a provider HTTP status into an error
from the taxonomy, lives here so the adapters stay thin.

Free-form providers (chat-style models) return text without geometry or
probabilities. They are normalized to a single whole-image region holding
the full response with a fixed heuristic confidence. That confidence is not
comparable with the native scores of geometric backends.
"""
import base64
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional, Sequence

import httpx

from smartshot.ocr.base import Rect, TextRegion, group_lines
from smartshot.ocr.errors import (
    AuthError,
    NetworkError,
    OcrTimeoutError,
    ParseError,
    ProviderError,
    RateLimitError,
)

RECOGNITION_INSTRUCTION = (
    "Extract all text from this image. Return only the extracted text, "
    "maintaining the original formatting and structure. Do not add any "
    "explanations or additional text."
)

# ISO 639-1 -> Tesseract traineddata names
TESSERACT_LANGUAGES = {
    "en": "eng",
    "es": "spa",
    "fr": "fra",
    "de": "deu",
    "it": "ita",
    "pt": "por",
    "ja": "jpn",
    "ko": "kor",
    "zh": "chi_sim",
    "zh-cn": "chi_sim",
    "zh-tw": "chi_tra",
    "ru": "rus",
    "ar": "ara",
}


def whole_image_regions(
    text: str,
    confidence: float,
    language: Optional[str] = None,
) -> List[TextRegion]:
    """Wrap free-form provider text in a single whole-image region"""
    text = text.strip()
    if not text:
        return []
    return [TextRegion(text=text, confidence=confidence, bbox=None, language=language)]


def filter_by_region(
    regions: Iterable[TextRegion],
    region_of_interest: Optional[Rect],
) -> List[TextRegion]:
    """Keep regions that intersect the ROI (whole-image regions always stay)"""
    regions = list(regions)
    if region_of_interest is None:
        return regions
    return [
        r for r in regions
        if r.bbox is None or r.bbox.intersects(region_of_interest)
    ]


def merge_into_lines(words: Sequence[TextRegion]) -> List[TextRegion]:
    """
    Merge word-level regions into line regions.

    Every word must carry a bbox. A line's confidence is the mean of its
    words.
    """
    return [
        TextRegion(
            text=" ".join(w.text for w in line),
            confidence=sum(w.confidence for w in line) / len(line),
            bbox=Rect.union([w.bbox for w in line]),
            language=line[0].language,
        )
        for line in group_lines(words)
    ]


def clamp_confidence(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


def primary_language(language_hints: Sequence[str]) -> Optional[str]:
    return language_hints[0] if language_hints else None


def tesseract_languages(language_hints: Sequence[str]) -> str:
    """Map language hints to a Tesseract `lang` argument ("eng+jpn")"""
    codes = []
    for hint in language_hints:
        code = TESSERACT_LANGUAGES.get(hint.lower(), hint)
        if code not in codes:
            codes.append(code)
    return "+".join(codes) if codes else "eng"


def build_instruction(
    language_hints: Sequence[str] = (),
    region_of_interest: Optional[Rect] = None,
) -> str:
    """Recognition prompt for free-form providers"""
    parts = [RECOGNITION_INSTRUCTION]
    if language_hints:
        parts.append(f"The text is most likely in: {', '.join(language_hints)}.")
    if region_of_interest is not None:
        roi = region_of_interest
        parts.append(
            "Only transcribe text inside the rectangle "
            f"x={roi.x:g}, y={roi.y:g}, width={roi.width:g}, height={roi.height:g} "
            "(pixels from the top-left corner)."
        )
    return " ".join(parts)


def encode_image(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta seconds or HTTP date)"""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """
    Translate a non-2xx provider response into the error taxonomy.

    Raises:
        AuthError: 401, 403
        RateLimitError: 429 (with Retry-After hint when present)
        OcrTimeoutError: 408, 504
        NetworkError: other 5xx
        ProviderError: other 4xx
    """
    status = response.status_code
    if status < 400:
        return

    detail = response.text[:300]
    message = f"{provider} returned HTTP {status}: {detail}"

    if status in (401, 403):
        raise AuthError(message)
    if status == 429:
        raise RateLimitError(message, retry_after=parse_retry_after(response.headers.get("retry-after")))
    if status in (408, 504):
        raise OcrTimeoutError(message)
    if status >= 500:
        raise NetworkError(message)
    raise ProviderError(message)


async def post_json(
    url: str,
    payload: dict,
    provider: str,
    timeout: float,
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict:
    """
    POST a JSON body and return the decoded JSON response (single attempt).

    Raises:
        OcrTimeoutError: Request exceeded `timeout`
        NetworkError: Connection-level failure
        ParseError: Response body is not a JSON object
        (plus everything raise_for_provider_status raises)
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, json=payload, headers=headers, params=params)
    except httpx.TimeoutException as e:
        raise OcrTimeoutError(f"{provider} request timed out after {timeout}s") from e
    except httpx.TransportError as e:
        raise NetworkError(f"{provider} request failed: {e}") from e

    raise_for_provider_status(response, provider)

    try:
        body = response.json()
    except ValueError as e:
        raise ParseError(f"{provider} returned invalid JSON") from e

    if not isinstance(body, dict):
        raise ParseError(f"{provider} returned unexpected JSON type {type(body).__name__}")
    return body
