#!/usr/bin/env python3
"""
Recognize text in one image file and store it in history.

Usage:
    python scripts/ocr_image.py <image_path> [backend]

Example:
    python scripts/ocr_image.py ~/Desktop/screenshot.png claude
"""
import asyncio
import os
import sys

# Add parent directory to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from smartshot.common.capture import capture_from_file
from smartshot.common.config import get_settings
from smartshot.common.log_config import configure_logging
from smartshot.history import HistoryRepository, HistoryStore
from smartshot.ocr import BackendKind, OcrError, OcrOrchestrator, OcrRequest


async def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/ocr_image.py <image_path> [backend]")
        print(f"Backends: {', '.join(k.value for k in BackendKind)}")
        sys.exit(1)

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    try:
        image = capture_from_file(sys.argv[1])
    except OcrError as e:
        print(f"❌ {e}")
        sys.exit(1)

    backend = BackendKind(sys.argv[2].lower()) if len(sys.argv) > 2 else None

    repository = HistoryRepository.from_settings(settings)
    if repository is not None:
        history = HistoryStore.load(repository, capacity=settings.history_capacity)
    else:
        history = HistoryStore(capacity=settings.history_capacity)

    orchestrator = OcrOrchestrator.from_settings(settings, history=history)
    request = OcrRequest(
        backend=backend,
        language_hints=settings.language_hint_list,
        confidence_threshold=settings.confidence_threshold,
    )

    result, item = await orchestrator.recognize_and_store(image, request)

    print("=" * 80)
    print(f"OCR RESULT - {image.metadata.source_name}")
    print("=" * 80)

    if not result.ok:
        print(f"❌ {result.error}")
        print(f"   Attempts: {result.attempts}")
        sys.exit(2)

    print(f"✅ Backend: {result.backend.label}{' (fallback)' if result.fallback_used else ''}")
    print(f"✅ Confidence: {result.confidence:.2%}")
    print(f"✅ Attempts: {result.attempts}")
    print(f"✅ Elapsed: {result.elapsed_seconds:.2f}s")
    for warning in result.warnings:
        print(f"⚠️  {warning}")
    if item is not None:
        print(f"✅ Stored as {item.id} (seen {item.copy_count}x, {len(history)} items in history)")
    print()
    print(result.text)


if __name__ == "__main__":
    asyncio.run(main())
