"""
Render bulk export rows for external sinks (files, clipboard).

Writing the output anywhere is the caller's job.
"""
import csv
import io
import json
from typing import Sequence

from smartshot.bulk.processor import ExportRow

CSV_COLUMNS = [
    "input_index",
    "source_name",
    "status",
    "backend",
    "confidence",
    "error_kind",
    "error",
    "recognized_text",
]


def render_text(rows: Sequence[ExportRow]) -> str:
    """Plain text, one section per image"""
    sections = []
    for row in rows:
        name = row.source_name or f"item-{row.input_index}"
        body = row.recognized_text if row.error is None else f"[{row.status.value}] {row.error}"
        sections.append(f"=== Image {row.input_index + 1}: {name} ===\n{body}\n")
    return "\n".join(sections)


def render_json(rows: Sequence[ExportRow], indent: int = 2) -> str:
    return json.dumps([row.to_dict() for row in rows], indent=indent, ensure_ascii=False)


def render_csv(rows: Sequence[ExportRow]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for row in rows:
        writer.writerow(row.to_dict())
    return buffer.getvalue()
