"""
Bulk Package

    from smartshot.bulk import BulkProcessor

    processor = BulkProcessor(orchestrator, concurrency=4)
    job = await processor.submit(images, OcrRequest(backend=BackendKind.OPENAI))
    await job.wait()
    rows = job.export()
"""
from smartshot.bulk.exporters import render_csv, render_json, render_text
from smartshot.bulk.processor import (
    BulkJob,
    BulkProcessor,
    BulkProgress,
    ExportRow,
    ItemStatus,
    JobStatus,
)

__all__ = [
    "BulkJob",
    "BulkProcessor",
    "BulkProgress",
    "ExportRow",
    "ItemStatus",
    "JobStatus",
    "render_csv",
    "render_json",
    "render_text",
]
