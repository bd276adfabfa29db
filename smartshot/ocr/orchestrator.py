"""
OCR Orchestrator

Single-request entry point. Selects the adapter, retries transient
failures with exponential backoff, falls back to the on-device engine when
the preferred backend fails or underperforms, and always returns an
OcrResult (failures travel in result.error, never as exceptions).

Strategy:
1. Empty capture -> CaptureError result, no adapter call
2. Requested backend (or the configured default) -> up to 1 + max_retries
   attempts; only NetworkError, RateLimitError and timeouts are retried
3. Primary failed, or confidence below threshold -> one on-device attempt
   (when fallback is enabled and the primary was not on-device)
4. Best available result, annotated with backend, attempts and elapsed time
"""
import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Tuple

import structlog

from smartshot.common.config import Settings, get_settings
from smartshot.ocr.analysis import label_languages
from smartshot.ocr.base import BackendKind, CaptureImage, OcrRequest, OcrResult
from smartshot.ocr.errors import CaptureError, OcrError, ProviderError, RateLimitError
from smartshot.ocr.factory import ProviderRegistry, build_registry

if TYPE_CHECKING:
    from smartshot.history.store import ClipboardItem, HistoryStore

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff schedule between attempts (retry count lives on BackendConfig)"""
    base_delay: float = 0.5
    max_delay: float = 8.0
    max_retry_after: float = 60.0

    def delay_for(self, retry_number: int, error: OcrError) -> float:
        """
        Delay before retry number `retry_number` (1-based).

        A provider retry-after hint replaces the computed delay, capped at
        max_retry_after.
        """
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(error.retry_after, self.max_retry_after)
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)


class OcrOrchestrator:
    """Retry, fallback and confidence policy above single-attempt adapters"""

    def __init__(
        self,
        registry: ProviderRegistry,
        default_backend: BackendKind = BackendKind.ON_DEVICE,
        retry_policy: Optional[RetryPolicy] = None,
        fallback_enabled: bool = True,
        history: Optional["HistoryStore"] = None,
        auto_tag: bool = True,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
    ):
        """
        Args:
            registry: Backend lookup table
            default_backend: Used when a request names no backend
            retry_policy: Backoff delays
            fallback_enabled: Allow the on-device fallback
            history: Store used by recognize_and_store()
            auto_tag: Add the smart tags implied by the text to stored items
            sleep: Awaitable delay (injectable for tests)
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.registry = registry
        self.default_backend = default_backend
        self.retry_policy = retry_policy or RetryPolicy()
        self.fallback_enabled = fallback_enabled
        self.history = history
        self.auto_tag = auto_tag
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        registry: Optional[ProviderRegistry] = None,
        history: Optional["HistoryStore"] = None,
    ) -> "OcrOrchestrator":
        settings = settings or get_settings()
        return cls(
            registry=registry or build_registry(settings),
            default_backend=BackendKind(settings.default_backend),
            retry_policy=RetryPolicy(
                base_delay=settings.retry_base_delay,
                max_delay=settings.retry_max_delay,
                max_retry_after=settings.retry_after_cap,
            ),
            fallback_enabled=settings.fallback_enabled,
            history=history,
            auto_tag=settings.history_auto_tag,
        )

    async def recognize(self, image: CaptureImage, request: Optional[OcrRequest] = None) -> OcrResult:
        """
        Recognize text in one capture. Never raises for recognition failures.

        Args:
            image: Capture to recognize (borrowed, not retained)
            request: Backend, language hints, threshold, ROI

        Returns:
            OcrResult; result.error is set when no backend produced text
        """
        request = request or OcrRequest()
        started = self._clock()
        kind = request.backend or self.default_backend

        if image.is_empty:
            logger.warning("ocr_rejected_empty_capture",
                           width=image.width,
                           height=image.height,
                           size_bytes=len(image.data))
            return OcrResult.failed(
                CaptureError("capture is empty or has zero size"),
                backend=kind,
                elapsed_seconds=self._clock() - started,
                attempts=0,
            )

        logger.info("ocr_started",
                    backend=kind.value,
                    width=image.width,
                    height=image.height,
                    threshold=request.confidence_threshold)

        primary, error, attempts = await self._attempt_with_retries(kind, image, request)

        low_confidence = primary is not None and primary.confidence < request.confidence_threshold
        wants_fallback = (error is not None or low_confidence) and self._can_fall_back(kind)

        result = primary
        fallback_used = False
        if wants_fallback:
            logger.info("ocr_fallback_started",
                        backend=kind.value,
                        reason=error.kind.value if error else "low_confidence",
                        confidence=primary.confidence if primary else None)
            fallback, fallback_error, _ = await self._attempt_with_retries(
                BackendKind.ON_DEVICE, image, request, max_attempts=1)
            attempts += 1
            if fallback is not None and (primary is None or fallback.confidence > primary.confidence):
                result = fallback
                fallback_used = True
            elif fallback_error is not None:
                logger.warning("ocr_fallback_failed", error=str(fallback_error))

        elapsed = self._clock() - started

        if result is None:
            logger.error("ocr_failed",
                         backend=kind.value,
                         error_kind=error.kind.value,
                         error=str(error),
                         attempts=attempts,
                         elapsed=elapsed)
            return OcrResult.failed(error, backend=kind, elapsed_seconds=elapsed, attempts=attempts)

        label_languages(result.regions, request.language_hints)
        result.elapsed_seconds = elapsed
        result.attempts = attempts
        result.fallback_used = fallback_used
        if result.confidence < request.confidence_threshold:
            result.add_low_confidence_warning(request.confidence_threshold)

        logger.info("ocr_complete",
                    backend=result.backend.value,
                    requested_backend=kind.value,
                    fallback_used=fallback_used,
                    attempts=attempts,
                    confidence=result.confidence,
                    chars=len(result.text),
                    elapsed=elapsed)
        return result

    async def recognize_and_store(
        self,
        image: CaptureImage,
        request: Optional[OcrRequest] = None,
    ) -> Tuple[OcrResult, Optional["ClipboardItem"]]:
        """
        Recognize and append a successful result to the history store.

        The append runs in a worker thread; it may wait on the store lock
        and a database write.

        Returns:
            (result, stored item) - the item is None when recognition failed
            or no history store is attached
        """
        from smartshot.history.store import ClipboardItem

        request = request or OcrRequest()
        result = await self.recognize(image, request)
        if not result.ok or self.history is None:
            return result, None
        item = ClipboardItem.create(image.data, result, tags=request.tags, auto_tag=self.auto_tag)
        item = await asyncio.to_thread(self.history.append, item)
        return result, item

    def _can_fall_back(self, kind: BackendKind) -> bool:
        return (
            self.fallback_enabled
            and kind is not BackendKind.ON_DEVICE
            and BackendKind.ON_DEVICE in self.registry
        )

    async def _attempt_with_retries(
        self,
        kind: BackendKind,
        image: CaptureImage,
        request: OcrRequest,
        max_attempts: Optional[int] = None,
    ) -> Tuple[Optional[OcrResult], Optional[OcrError], int]:
        """
        Call one backend until success, a non-retryable error, or the
        attempt budget is spent.

        Returns:
            (result or None, last error or None, attempts made)
        """
        provider = self.registry.get(kind)
        if provider is None:
            return None, ProviderError(f"backend {kind.value} is not registered"), 0

        config = self.registry.config(kind)
        budget = max_attempts if max_attempts is not None else 1 + max(config.max_retries, 0)

        attempt = 0
        while True:
            attempt += 1
            try:
                result = await provider.recognize(
                    image,
                    config,
                    request.language_hints,
                    request.region_of_interest,
                )
                result.backend = kind
                return result, None, attempt
            except OcrError as e:
                error = e
            except Exception as e:
                logger.error("ocr_adapter_crashed", backend=kind.value, error=str(e), exc_info=True)
                error = ProviderError(f"{kind.value} adapter failed: {e}")

            logger.warning("ocr_attempt_failed",
                           backend=kind.value,
                           attempt=attempt,
                           error_kind=error.kind.value,
                           error=str(error))

            if not error.retryable or attempt >= budget:
                return None, error, attempt

            delay = self.retry_policy.delay_for(attempt, error)
            logger.info("ocr_retry_scheduled", backend=kind.value, attempt=attempt + 1, delay=delay)
            await self._sleep(delay)
