#!/usr/bin/env python3
"""
Recognize every image in a directory and export the results.

Usage:
    python scripts/bulk_ocr.py <directory> [text|json|csv] [backend]

Example:
    python scripts/bulk_ocr.py ~/Screenshots csv gemini > results.csv
"""
import asyncio
import os
import sys
from pathlib import Path

# Add parent directory to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from smartshot.bulk import BulkProcessor, render_csv, render_json, render_text
from smartshot.common.capture import capture_from_file
from smartshot.common.config import get_settings
from smartshot.common.log_config import configure_logging
from smartshot.ocr import BackendKind, OcrError, OcrOrchestrator, OcrRequest

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".tif", ".tiff", ".bmp"}

RENDERERS = {
    "text": render_text,
    "json": render_json,
    "csv": render_csv,
}


def print_progress(job, progress):
    print(f"  [{progress.completed}/{progress.total}] {progress.fraction:.0%}", file=sys.stderr)


async def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/bulk_ocr.py <directory> [text|json|csv] [backend]")
        sys.exit(1)

    directory = Path(sys.argv[1])
    output_format = sys.argv[2] if len(sys.argv) > 2 else "text"
    backend = BackendKind(sys.argv[3].lower()) if len(sys.argv) > 3 else None
    if output_format not in RENDERERS:
        print(f"Unknown format {output_format}, expected one of {', '.join(RENDERERS)}")
        sys.exit(1)

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    images = []
    for path in sorted(directory.iterdir()):
        if path.suffix.lower() not in IMAGE_SUFFIXES:
            continue
        try:
            images.append(capture_from_file(path))
        except OcrError as e:
            print(f"⚠️  Skipping {path.name}: {e}", file=sys.stderr)

    print(f"Processing {len(images)} images from {directory}...", file=sys.stderr)

    orchestrator = OcrOrchestrator.from_settings(settings)
    processor = BulkProcessor.from_settings(orchestrator, settings, on_progress=print_progress)
    request = OcrRequest(
        backend=backend,
        language_hints=settings.language_hint_list,
        confidence_threshold=settings.confidence_threshold,
    )

    job = await processor.run(images, request)

    print(f"Job {job.id}: {job.status.value}", file=sys.stderr)
    print(RENDERERS[output_format](job.export()))


if __name__ == "__main__":
    asyncio.run(main())
