"""
Tesseract OCR Provider (on-device)

Local recognition with no network access. Always available, used as the
default backend and as the guaranteed fallback. Returns true line geometry
and a native confidence score per line.

Requires the tesseract-ocr system package.
"""
import asyncio
import io
from collections import OrderedDict
from typing import List, Optional, Sequence

import pytesseract
import structlog
from PIL import Image, UnidentifiedImageError

from smartshot.ocr.base import BackendConfig, BackendKind, CaptureImage, OcrResult, Rect, TextRegion
from smartshot.ocr.errors import OcrTimeoutError, ParseError, ProviderError
from smartshot.ocr.normalize import (
    clamp_confidence,
    filter_by_region,
    primary_language,
    tesseract_languages,
)

logger = structlog.get_logger()


class TesseractProvider:
    """
    Tesseract OCR provider.

    Words reported by `image_to_data` are grouped into lines by
    (block, paragraph, line). Each line becomes one TextRegion whose bbox is
    the union of its word boxes and whose confidence is the mean word
    confidence scaled to 0-1.
    """

    def __init__(self, tesseract_path: Optional[str] = None, page_segmentation_mode: int = 3):
        """
        Initialize Tesseract provider.

        Args:
            tesseract_path: Path to tesseract binary (auto-detected if None)
            page_segmentation_mode: Tesseract --psm value
        """
        if tesseract_path:
            pytesseract.pytesseract.tesseract_cmd = tesseract_path
        self.pytesseract = pytesseract
        self.page_segmentation_mode = page_segmentation_mode
        logger.info("tesseract_provider_initialized", tesseract_path=tesseract_path)

    async def recognize(
        self,
        image: CaptureImage,
        config: BackendConfig,
        language_hints: Sequence[str] = (),
        region_of_interest: Optional[Rect] = None,
    ) -> OcrResult:
        """
        Recognize text locally (single attempt).

        The blocking Tesseract call runs in a worker thread so the caller's
        event loop is never blocked. Tesseract enforces the timeout itself by
        killing the child process.

        Raises:
            ParseError: Image bytes cannot be decoded
            OcrTimeoutError: Tesseract exceeded config.timeout_seconds
            ProviderError: Tesseract binary missing or crashed
        """
        lang = tesseract_languages(language_hints)
        if config.engine_path:
            self.pytesseract.pytesseract.tesseract_cmd = config.engine_path

        logger.info("tesseract_processing_image",
                    size_bytes=len(image.data),
                    lang=lang,
                    timeout=config.timeout_seconds)

        data = await asyncio.to_thread(self._run, image.data, lang, config.timeout_seconds)

        regions = self._lines_from_data(data, primary_language(language_hints))
        regions = filter_by_region(regions, region_of_interest)
        result = OcrResult.from_regions(regions, backend=BackendKind.ON_DEVICE)

        logger.info("tesseract_complete",
                    lines=len(result.regions),
                    chars=len(result.text),
                    confidence=result.confidence)
        return result

    def _run(self, image_bytes: bytes, lang: str, timeout: float) -> dict:
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img.load()
                return self.pytesseract.image_to_data(
                    img,
                    lang=lang,
                    config=f"--psm {self.page_segmentation_mode}",
                    timeout=timeout,
                    output_type=self.pytesseract.Output.DICT,
                )
        except pytesseract.TesseractNotFoundError as e:
            raise ProviderError("tesseract binary not found") from e
        except (UnidentifiedImageError, OSError) as e:
            raise ParseError(f"cannot decode image: {e}") from e
        except pytesseract.TesseractError as e:
            raise ProviderError(f"tesseract failed: {e}") from e
        except RuntimeError as e:
            # pytesseract signals its subprocess timeout this way
            if "timeout" in str(e).lower():
                raise OcrTimeoutError(f"tesseract exceeded {timeout}s") from e
            raise ProviderError(f"tesseract failed: {e}") from e

    @staticmethod
    def _lines_from_data(data: dict, language: Optional[str]) -> List[TextRegion]:
        lines: "OrderedDict[tuple, list]" = OrderedDict()
        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            conf = float(data["conf"][i])
            if not word or conf < 0:
                continue
            key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            box = Rect(
                x=float(data["left"][i]),
                y=float(data["top"][i]),
                width=float(data["width"][i]),
                height=float(data["height"][i]),
            )
            lines.setdefault(key, []).append((word, conf, box))

        regions = []
        for words in lines.values():
            regions.append(TextRegion(
                text=" ".join(w for w, _, _ in words),
                confidence=clamp_confidence(sum(c for _, c, _ in words) / len(words) / 100),
                bbox=Rect.union([b for _, _, b in words]),
                language=language,
            ))
        return regions
