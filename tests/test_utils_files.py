"""Tests for file utility functions."""

from __future__ import annotations

from pathlib import Path

from knowledgescout.utils.files import iter_document_paths


class TestIterDocumentPaths:
    """Test iter_document_paths function."""

    def test_single_file(self, tmp_path: Path) -> None:
        """Should yield a single supported file."""
        pdf = tmp_path / "test.pdf"
        pdf.write_text("dummy")

        assert list(iter_document_paths([pdf])) == [pdf]

    def test_directory_filters_by_suffix(self, tmp_path: Path) -> None:
        """Should find PDF, text and Markdown files only."""
        (tmp_path / "b.pdf").write_text("pdf")
        (tmp_path / "a.txt").write_text("text")
        (tmp_path / "c.MD").write_text("markdown")
        (tmp_path / "image.png").write_bytes(b"png")

        paths = list(iter_document_paths([tmp_path]))

        assert [path.name for path in paths] == ["a.txt", "b.pdf", "c.MD"]

    def test_nested_directories(self, tmp_path: Path) -> None:
        nested = tmp_path / "sub" / "deeper"
        nested.mkdir(parents=True)
        (nested / "deep.txt").write_text("text")
        (tmp_path / "top.txt").write_text("text")

        names = {path.name for path in iter_document_paths([tmp_path])}

        assert names == {"deep.txt", "top.txt"}

    def test_unsupported_file_skipped(self, tmp_path: Path) -> None:
        other = tmp_path / "data.csv"
        other.write_text("a,b")

        assert list(iter_document_paths([other])) == []

    def test_missing_path_skipped(self, tmp_path: Path) -> None:
        assert list(iter_document_paths([tmp_path / "missing.pdf"])) == []
