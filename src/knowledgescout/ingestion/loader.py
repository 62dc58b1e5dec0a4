"""Document text extraction for ingestion.

PDFs go through PyMuPDF (fitz); plain text and Markdown are read as UTF-8.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import fitz  # PyMuPDF

from knowledgescout.utils.text import normalize_whitespace

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class LoadedDocument:
    path: Path
    title: str
    content: str


def iter_pdf_pages(path: Path) -> Iterator[str]:
    """Yield normalized text content from a PDF file page by page."""
    doc = fitz.open(path)
    try:
        for index in range(len(doc)):
            try:
                text = doc[index].get_text() or ""
            except Exception as exc:  # pragma: no cover
                LOGGER.warning("Failed to read page %s in %s: %s", index, path, exc)
                continue
            normalized = normalize_whitespace(text.splitlines())
            if normalized:
                yield normalized
    finally:
        doc.close()


def get_pdf_title(path: Path) -> str:
    doc = fitz.open(path)
    try:
        metadata = doc.metadata or {}
        return metadata.get("title") or path.stem
    finally:
        doc.close()


def load_document(path: Path) -> LoadedDocument:
    """Extract the title and plain text of a supported document."""
    suffix = path.suffix.lower()
    if suffix == ".pdf":
        title = get_pdf_title(path)
        content = "\n".join(iter_pdf_pages(path))
    elif suffix in {".txt", ".md"}:
        title = path.stem
        content = path.read_text(encoding="utf-8", errors="replace")
    else:
        raise ValueError(f"Unsupported document type: {path.suffix}")

    if not content.strip():
        LOGGER.warning("No text extracted from %s", path)
    return LoadedDocument(path=path, title=title, content=content)
