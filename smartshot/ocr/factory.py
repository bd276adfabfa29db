"""
OCR Provider Factory

Builds the lookup table mapping each BackendKind to its adapter and the
per-backend configuration, both from Settings.
"""
from typing import Dict, Iterable, List, Optional

import structlog

from smartshot.common.config import Settings, get_settings
from smartshot.ocr.base import BackendConfig, BackendKind, OcrProvider
from smartshot.ocr.provider_chat import ChatCompletionProvider
from smartshot.ocr.provider_claude import ClaudeProvider
from smartshot.ocr.provider_gemini import GeminiProvider
from smartshot.ocr.provider_google_vision import GoogleVisionProvider
from smartshot.ocr.provider_tesseract import TesseractProvider
from smartshot.ocr.provider_textract import TextractProvider

logger = structlog.get_logger()


class ProviderRegistry:
    """
    Lookup table: BackendKind -> (adapter, BackendConfig).

    Entries are registered once at start-up and read concurrently afterwards.
    """

    def __init__(self):
        self._providers: Dict[BackendKind, OcrProvider] = {}
        self._configs: Dict[BackendKind, BackendConfig] = {}

    def register(self, kind: BackendKind, provider: OcrProvider, config: Optional[BackendConfig] = None) -> None:
        self._providers[kind] = provider
        self._configs[kind] = config or BackendConfig(kind=kind)
        logger.debug("ocr_provider_registered", backend=kind.value, provider=type(provider).__name__)

    def get(self, kind: BackendKind) -> Optional[OcrProvider]:
        return self._providers.get(kind)

    def config(self, kind: BackendKind) -> BackendConfig:
        return self._configs.get(kind) or BackendConfig(kind=kind)

    def __contains__(self, kind: BackendKind) -> bool:
        return kind in self._providers

    def kinds(self) -> List[BackendKind]:
        return list(self._providers)

    def available(self) -> List[BackendKind]:
        """Registered backends that have the credentials they need"""
        return [
            kind for kind in self._providers
            if not kind.requires_credentials or self._configs[kind].credential
        ]


def build_backend_configs(settings: Optional[Settings] = None) -> Dict[BackendKind, BackendConfig]:
    """Per-backend configuration from settings"""
    settings = settings or get_settings()
    common = dict(
        timeout_seconds=settings.timeout_seconds,
        max_retries=settings.max_retries,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
    )
    return {
        BackendKind.ON_DEVICE: BackendConfig(
            kind=BackendKind.ON_DEVICE, engine_path=settings.tesseract_path, **common),
        BackendKind.OPENAI: BackendConfig(
            kind=BackendKind.OPENAI, credential=settings.openai_api_key,
            endpoint=settings.openai_endpoint, model=settings.openai_model, **common),
        BackendKind.CLAUDE: BackendConfig(
            kind=BackendKind.CLAUDE, credential=settings.anthropic_api_key,
            endpoint=settings.anthropic_endpoint, model=settings.anthropic_model, **common),
        BackendKind.GEMINI: BackendConfig(
            kind=BackendKind.GEMINI, credential=settings.gemini_api_key,
            endpoint=settings.gemini_endpoint, model=settings.gemini_model, **common),
        BackendKind.GROK: BackendConfig(
            kind=BackendKind.GROK, credential=settings.grok_api_key,
            endpoint=settings.grok_endpoint, model=settings.grok_model, **common),
        BackendKind.DEEPSEEK: BackendConfig(
            kind=BackendKind.DEEPSEEK, credential=settings.deepseek_api_key,
            endpoint=settings.deepseek_endpoint, model=settings.deepseek_model, **common),
        BackendKind.GOOGLE_VISION: BackendConfig(
            kind=BackendKind.GOOGLE_VISION, credential=settings.google_vision_api_key,
            endpoint=settings.google_vision_endpoint, **common),
        BackendKind.TEXTRACT: BackendConfig(
            kind=BackendKind.TEXTRACT, region=settings.aws_textract_region, **common),
    }


def build_registry(
    settings: Optional[Settings] = None,
    kinds: Optional[Iterable[BackendKind]] = None,
) -> ProviderRegistry:
    """
    Registry with one adapter per backend kind.

    Args:
        settings: Settings to read (defaults to cached settings)
        kinds: Restrict to these backends (on-device is always included)
    """
    settings = settings or get_settings()
    configs = build_backend_configs(settings)
    wanted = set(kinds or BackendKind) | {BackendKind.ON_DEVICE}

    chat = ChatCompletionProvider(default_confidence=settings.remote_default_confidence)
    adapters = {
        BackendKind.ON_DEVICE: lambda: TesseractProvider(),
        BackendKind.OPENAI: lambda: chat,
        BackendKind.GROK: lambda: chat,
        BackendKind.DEEPSEEK: lambda: chat,
        BackendKind.CLAUDE: lambda: ClaudeProvider(default_confidence=settings.remote_default_confidence),
        BackendKind.GEMINI: lambda: GeminiProvider(default_confidence=settings.remote_default_confidence),
        BackendKind.GOOGLE_VISION: lambda: GoogleVisionProvider(
            default_confidence=settings.remote_default_confidence),
        BackendKind.TEXTRACT: TextractProvider,
    }

    registry = ProviderRegistry()
    for kind in BackendKind:
        if kind in wanted:
            registry.register(kind, adapters[kind](), configs[kind])

    logger.info("ocr_registry_built",
                backends=[k.value for k in registry.kinds()],
                available=[k.value for k in registry.available()])
    return registry
