"""Tests for document loading."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from knowledgescout.ingestion.loader import get_pdf_title, iter_pdf_pages, load_document


def _mock_pdf(mock_fitz: MagicMock, texts: list[str], metadata: dict | None = None) -> MagicMock:
    pages = []
    for text in texts:
        page = MagicMock()
        page.get_text.return_value = text
        pages.append(page)

    mock_doc = MagicMock()
    mock_doc.__len__ = MagicMock(return_value=len(pages))
    mock_doc.__getitem__ = MagicMock(side_effect=lambda index: pages[index])
    mock_doc.metadata = metadata
    mock_fitz.open.return_value = mock_doc
    return mock_doc


class TestIterPdfPages:
    """Test iter_pdf_pages function."""

    @patch("knowledgescout.ingestion.loader.fitz")
    def test_multiple_pages(self, mock_fitz: MagicMock, tmp_path: Path) -> None:
        """Should extract normalized text page by page."""
        mock_doc = _mock_pdf(mock_fitz, ["  Page 1  \n\n line ", "Page 2"])

        parts = list(iter_pdf_pages(tmp_path / "test.pdf"))

        assert parts == ["Page 1\nline", "Page 2"]
        mock_doc.close.assert_called_once()

    @patch("knowledgescout.ingestion.loader.fitz")
    def test_blank_pages_skipped(self, mock_fitz: MagicMock, tmp_path: Path) -> None:
        _mock_pdf(mock_fitz, ["", "   ", "Content"])

        assert list(iter_pdf_pages(tmp_path / "test.pdf")) == ["Content"]


class TestGetPdfTitle:
    """Test get_pdf_title function."""

    @patch("knowledgescout.ingestion.loader.fitz")
    def test_title_from_metadata(self, mock_fitz: MagicMock, tmp_path: Path) -> None:
        _mock_pdf(mock_fitz, [], metadata={"title": "Annual Report"})

        assert get_pdf_title(tmp_path / "report.pdf") == "Annual Report"

    @patch("knowledgescout.ingestion.loader.fitz")
    def test_title_falls_back_to_stem(self, mock_fitz: MagicMock, tmp_path: Path) -> None:
        _mock_pdf(mock_fitz, [], metadata={"title": ""})

        assert get_pdf_title(tmp_path / "report.pdf") == "report"


class TestLoadDocument:
    """Test load_document function."""

    def test_text_file(self, tmp_path: Path) -> None:
        path = tmp_path / "notes.txt"
        path.write_text("Plain text body.", encoding="utf-8")

        loaded = load_document(path)

        assert loaded.title == "notes"
        assert loaded.content == "Plain text body."
        assert loaded.path == path

    def test_markdown_file(self, tmp_path: Path) -> None:
        path = tmp_path / "README.md"
        path.write_text("# Heading\n\nBody", encoding="utf-8")

        assert load_document(path).content == "# Heading\n\nBody"

    @patch("knowledgescout.ingestion.loader.fitz")
    def test_pdf_file(self, mock_fitz: MagicMock, tmp_path: Path) -> None:
        _mock_pdf(mock_fitz, ["First page", "Second page"], metadata={"title": "Guide"})

        loaded = load_document(tmp_path / "guide.pdf")

        assert loaded.title == "Guide"
        assert loaded.content == "First page\nSecond page"

    def test_unsupported_type(self, tmp_path: Path) -> None:
        path = tmp_path / "image.png"
        path.write_bytes(b"\x89PNG")

        with pytest.raises(ValueError, match="Unsupported"):
            load_document(path)
