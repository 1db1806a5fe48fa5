"""Export helpers for polished text."""

from __future__ import annotations

import io
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import openpyxl
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Inches, Pt
from markupsafe import escape
from openpyxl.utils import get_column_letter

from .config import HISTORY_EXPORT_HEADERS
from .diff import word_count
from .errors import ValidationError
from .models import ExportMetadata, ExportResult, VersionEntry

logger = logging.getLogger(__name__)

PARAGRAPH_RE = re.compile(r"\n\n+")

PDF_FONTS = {
    "times": '"Times New Roman", Times, serif',
    "arial": "Arial, Helvetica, sans-serif",
    "calibri": "Calibri, Helvetica, sans-serif",
}

EXPORT_FORMATS = {
    "txt": "text/plain; charset=utf-8",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "pdf": "application/pdf",
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _paragraphs(text: str) -> List[str]:
    return [para.strip() for para in PARAGRAPH_RE.split(text) if para.strip()]


def to_txt(text: str) -> bytes:
    return text.encode("utf-8")


def to_docx(text: str, metadata: Optional[ExportMetadata] = None) -> bytes:
    metadata = metadata or ExportMetadata()
    document = Document()

    properties = document.core_properties
    properties.title = metadata.title or "Polished Academic Text"
    properties.author = metadata.author
    properties.subject = metadata.subject

    for section in document.sections:
        section.top_margin = section.bottom_margin = Inches(1)
        section.left_margin = section.right_margin = Inches(1)

    if metadata.title:
        heading = document.add_heading(metadata.title, level=1)
        heading.alignment = WD_ALIGN_PARAGRAPH.CENTER
        heading.paragraph_format.space_after = Pt(20)

    for para in _paragraphs(text):
        paragraph = document.add_paragraph(para)
        paragraph.alignment = WD_ALIGN_PARAGRAPH.JUSTIFY
        paragraph.paragraph_format.space_after = Pt(10)
        paragraph.paragraph_format.line_spacing = 2.0 if metadata.formatting.double_spaced else 1.5

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def build_pdf_html(text: str, metadata: Optional[ExportMetadata] = None) -> str:
    metadata = metadata or ExportMetadata()
    formatting = metadata.formatting
    font = PDF_FONTS.get(formatting.font, PDF_FONTS["times"])
    line_height = "2.0" if formatting.double_spaced else "1.4"

    body: List[str] = []
    if metadata.title:
        body.append(f"<h1>{escape(metadata.title)}</h1>")

    line_number = 1
    for para in _paragraphs(text):
        if formatting.line_numbers:
            lines = []
            for line in para.split("\n"):
                lines.append(f'<span class="ln">{line_number}</span>{escape(line)}')
                line_number += 1
            body.append(f"<p>{'<br>'.join(lines)}</p>")
        else:
            body.append(f"<p>{escape(para)}</p>")

    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{escape(metadata.title or "Polished Academic Text")}</title>
<meta name="author" content="{escape(metadata.author)}">
<meta name="description" content="{escape(metadata.subject)}">
<style>
@page {{
  size: letter;
  margin: 1in;
  @bottom-center {{ content: "Page " counter(page) " of " counter(pages); font-size: 10pt; }}
}}
body {{ font-family: {font}; font-size: 12pt; line-height: {line_height}; text-align: justify; }}
h1 {{ font-family: Helvetica, Arial, sans-serif; font-size: 18pt; text-align: center; margin-bottom: 2em; }}
.ln {{ display: inline-block; width: 2.5em; margin-left: -3em; margin-right: 0.5em; text-align: right; color: #666; }}
p {{ margin: 0 0 1em 0; }}
</style>
</head>
<body>
{chr(10).join(body)}
</body>
</html>
"""


def _html_to_pdf(html: str) -> bytes:
    from weasyprint import HTML

    return HTML(string=html).write_pdf()


def to_pdf(text: str, metadata: Optional[ExportMetadata] = None) -> bytes:
    return _html_to_pdf(build_pdf_html(text, metadata))


def to_json(
    original: str,
    polished: str,
    details: Optional[Dict[str, Any]] = None,
) -> bytes:
    metadata = dict(details or {})
    metadata.setdefault("timestamp", datetime.now().isoformat(timespec="seconds"))
    metadata["word_count"] = {"original": word_count(original), "polished": word_count(polished)}
    payload = {"original": original, "polished": polished, "metadata": metadata}
    return json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8")


def to_xlsx(entries: Sequence[VersionEntry]) -> bytes:
    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = "Version History"

    sheet.append(HISTORY_EXPORT_HEADERS)
    for entry in entries:
        sheet.append([entry.index + 1, entry.timestamp, entry.original, entry.polished])

    for index, column_title in enumerate(HISTORY_EXPORT_HEADERS, start=1):
        column = sheet.column_dimensions[get_column_letter(index)]
        column.width = max(len(column_title) + 2, 18 if index <= 2 else 60)

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def export_bytes(
    fmt: str,
    polished: str,
    original: str = "",
    metadata: Optional[ExportMetadata] = None,
    details: Optional[Dict[str, Any]] = None,
    history: Sequence[VersionEntry] = (),
) -> bytes:
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format: {fmt}")
    if fmt != "xlsx" and not polished.strip():
        raise ValidationError("No output to export")
    if fmt == "txt":
        return to_txt(polished)
    if fmt == "docx":
        return to_docx(polished, metadata)
    if fmt == "pdf":
        return to_pdf(polished, metadata)
    if fmt == "json":
        return to_json(original, polished, details)
    if not history:
        raise ValidationError("No versions to export")
    return to_xlsx(history)


def export_to_path(path: Path, data: bytes) -> ExportResult:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as handle:
            handle.write(data)
    except OSError as exc:
        logger.error("Export to %s failed: %s", path, exc)
        return ExportResult(success=False, path=str(path), error=str(exc))
    return ExportResult(success=True, path=str(path.resolve()))
