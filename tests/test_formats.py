import json
import zipfile

import pytest

from crawler.errors import RenderError
from formats import body_to_markdown, write_output
from models import OutputFormat
from schemas import Work


def render(work, tmp_path, fmt):
    path = tmp_path / f"book.{fmt.extension}"
    write_output(work, path, fmt)
    return path


class TestRenderers:
    def test_json_is_canonical_wire_form(self, sample_work, tmp_path):
        path = render(sample_work, tmp_path, OutputFormat.JSON)
        data = json.loads(path.read_text(encoding="utf-8"))

        assert data == sample_work.to_wire()
        assert Work.from_json(path.read_text(encoding="utf-8")) == sample_work

    def test_html(self, sample_work, tmp_path):
        text = render(sample_work, tmp_path, OutputFormat.HTML).read_text(encoding="utf-8")

        assert "<h1>Test Book</h1>" in text
        assert '<p class="author">By Test Author</p>' in text
        assert '<p class="description">A test &amp; more.</p>' in text
        assert '<section class="chapter" id="chapter-1">' in text
        assert "<p>First <em>paragraph</em>.</p>" in text
        assert "<p>Plain line one.</p><p>Plain line two.</p>" in text
        assert text.index("Chapter One") < text.index("Chapter Two")

    def test_markdown(self, sample_work, tmp_path):
        text = render(sample_work, tmp_path, OutputFormat.MARKDOWN).read_text(encoding="utf-8")

        assert text.startswith("# Test Book\n\nBy Test Author\n\nA test & more.\n\n---\n\n## Chapter One\n\n")
        assert "First *paragraph*.\n\nSecond paragraph." in text
        assert "## Chapter Two\n\nPlain line one.\n\nPlain line two." in text
        assert "<p>" not in text

    def test_text(self, sample_work, tmp_path):
        text = render(sample_work, tmp_path, OutputFormat.TEXT).read_text(encoding="utf-8")

        assert text.startswith("Test Book\nBy Test Author\n")
        assert "--- Chapter 1: Chapter One ---\n\nFirst paragraph.\n\nSecond paragraph." in text
        assert "--- Chapter 2: Chapter Two ---\n\nPlain line one.\n\nPlain line two." in text
        assert "<" not in text

    def test_epub_dispatch(self, sample_work, tmp_path):
        path = render(sample_work, tmp_path, OutputFormat.EPUB)
        assert zipfile.is_zipfile(path)

    @pytest.mark.parametrize("fmt", [OutputFormat.JSON, OutputFormat.HTML, OutputFormat.MARKDOWN, OutputFormat.TEXT])
    def test_empty_title_rejected(self, tmp_path, fmt):
        with pytest.raises(RenderError):
            render(Work(title=" ", author="A"), tmp_path, fmt)

    def test_unwritable_path(self, sample_work, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(RenderError):
            write_output(sample_work, blocker / "book.json", OutputFormat.JSON)


class TestBodyToMarkdown:
    def test_emphasis_and_breaks(self):
        body = "<p>A <strong>bold</strong> and <i>slanted </i>word<br>next</p><p>Second</p>"
        assert body_to_markdown(body) == "A **bold** and *slanted* word  \nnext\n\nSecond"

    def test_escapes_markdown_characters(self):
        assert body_to_markdown("<p>2*3 = [six]_</p>") == r"2\*3 = \[six\]\_"

    def test_plain_text_passes_through(self):
        assert body_to_markdown(" one\n\ntwo ") == "one\n\ntwo"
