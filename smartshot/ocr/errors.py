"""
OCR error taxonomy

Adapters raise these exceptions. The orchestrator classifies them (retry,
fallback, surface) and converts them into an OcrFailure on the result, so
callers of the orchestrator never see them raised.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification of OCR failures"""
    CAPTURE = "capture_error"
    AUTH = "auth_error"
    NETWORK = "network_error"
    RATE_LIMIT = "rate_limit_error"
    PARSE = "parse_error"
    TIMEOUT = "timeout"
    PROVIDER = "provider_error"
    LOW_CONFIDENCE = "low_confidence_warning"


@dataclass(frozen=True)
class OcrFailure:
    """Terminal error attached to an OcrResult"""
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class OcrError(Exception):
    """Base class for all recognition errors"""
    kind: ErrorKind = ErrorKind.PROVIDER
    retryable: bool = False

    def to_failure(self) -> OcrFailure:
        return OcrFailure(kind=self.kind, message=str(self) or self.__class__.__name__)


class CaptureError(OcrError):
    """Empty, zero-size or otherwise unusable input image"""
    kind = ErrorKind.CAPTURE


class AuthError(OcrError):
    """Missing or rejected credentials"""
    kind = ErrorKind.AUTH


class NetworkError(OcrError):
    """Transient transport failure"""
    kind = ErrorKind.NETWORK
    retryable = True


class RateLimitError(OcrError):
    """Provider throttling; may carry a retry-after hint in seconds"""
    kind = ErrorKind.RATE_LIMIT
    retryable = True

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ParseError(OcrError):
    """Malformed provider response or undecodable image"""
    kind = ErrorKind.PARSE


class OcrTimeoutError(OcrError):
    """Call exceeded the configured duration"""
    kind = ErrorKind.TIMEOUT
    retryable = True


class ProviderError(OcrError):
    """Provider rejected the request, or the engine is unavailable"""
    kind = ErrorKind.PROVIDER
