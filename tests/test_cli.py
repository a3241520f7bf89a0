import json
import os
import zipfile

import pytest
import responses

import cli
from crawler.errors import EmptyChapterListError, LockedChapterError, NetworkError, ResumeMismatchError
from ingestion import ScrapeRunner

from pages import RR_FICTION_URL, rr_chapter_json, rr_chapter_page, rr_chapter_url, rr_fiction_page


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for name in list(os.environ):
        if name.upper().startswith("SERIALSCRAPE_"):
            monkeypatch.delenv(name)


def serve_story(n=2, locked=()):
    chapters = [rr_chapter_json(i, unlocked=i not in locked) for i in range(1, n + 1)]
    responses.add(responses.GET, RR_FICTION_URL, body=rr_fiction_page(chapters))
    for i in range(1, n + 1):
        responses.add(responses.GET, rr_chapter_url(i), body=rr_chapter_page(f"Title {i}", [f"Body {i}."]))


def scrape(*args):
    return cli.main(["scrape", RR_FICTION_URL, "--delay", "0", "-q", *args])


class TestScrapeCommand:
    @responses.activate
    def test_writes_json(self, tmp_path):
        serve_story()
        out = tmp_path / "book.json"

        assert scrape("-o", str(out), "--format", "json") == cli.EXIT_OK

        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["title"] == "Test Story"
        assert [c["title"] for c in data["chapters"]] == ["Title 1", "Title 2"]

    @responses.activate
    def test_default_output_is_epub_named_after_title(self, tmp_path):
        serve_story()
        assert scrape() == cli.EXIT_OK
        assert zipfile.is_zipfile(tmp_path / "test-story.epub")

    @responses.activate
    def test_reports_summary_unless_quiet(self, tmp_path, capsys):
        serve_story()
        out = tmp_path / "book.txt"

        code = cli.main(["scrape", RR_FICTION_URL, "--delay", "0", "-o", str(out), "--format", "txt"])

        assert code == cli.EXIT_OK
        assert f"Wrote 2 chapter(s) of 'Test Story' to {out}" in capsys.readouterr().out

    @responses.activate
    def test_chapter_range(self, tmp_path):
        serve_story(3)
        out = tmp_path / "book.json"

        assert scrape("-o", str(out), "--format", "json", "--chapters", "2-") == cli.EXIT_OK
        titles = [c["title"] for c in json.loads(out.read_text())["chapters"]]
        assert titles == ["Title 2", "Title 3"]

    @responses.activate
    def test_locked_chapters_fail(self, capsys):
        serve_story(2, locked=(2,))
        assert scrape("--locked-chapters", "fail") == cli.EXIT_SCRAPE
        assert "locked" in capsys.readouterr().err

    def test_unsupported_site(self, capsys):
        code = cli.main(["scrape", "https://fiction.example/story/1", "-q"])
        assert code == cli.EXIT_INPUT
        assert "Unsupported site: fiction.example" in capsys.readouterr().err

    @responses.activate
    def test_site_override(self, tmp_path):
        url = "https://mirror.example/fiction/12345/test-story"
        chapters = [rr_chapter_json(1)]
        responses.add(responses.GET, url, body=rr_fiction_page(chapters))
        responses.add(responses.GET, rr_chapter_url(1), body=rr_chapter_page("Title 1", ["Body."]))
        out = tmp_path / "book.json"

        code = cli.main(["scrape", url, "--site", "rr", "--delay", "0", "-q", "-o", str(out), "--format", "json"])

        assert code == cli.EXIT_OK
        assert json.loads(out.read_text())["sourceUrl"] == url

    @responses.activate
    def test_http_error(self, capsys):
        responses.add(responses.GET, RR_FICTION_URL, status=404)
        assert scrape() == cli.EXIT_SCRAPE
        assert "HTTP 404" in capsys.readouterr().err

    @pytest.mark.parametrize("args", [
        ["--chapters", "5-2"],
        ["--format", "pdf"],
        ["--site", "wattpad"],
        ["--timeout", "0"],
    ])
    def test_invalid_input(self, args):
        assert scrape(*args) == cli.EXIT_INPUT

    @responses.activate
    def test_output_directory_rejected_before_fetching(self, tmp_path, capsys):
        outdir = tmp_path / "outdir"
        outdir.mkdir()

        assert scrape("-o", str(outdir)) == cli.EXIT_INPUT
        assert len(responses.calls) == 0
        assert "is a directory" in capsys.readouterr().err

    @responses.activate
    def test_output_in_missing_directory_rejected(self, tmp_path, capsys):
        assert scrape("-o", str(tmp_path / "missing" / "book.epub")) == cli.EXIT_INPUT
        assert len(responses.calls) == 0
        assert "does not exist" in capsys.readouterr().err

    def test_invalid_choice_is_usage_error(self):
        with pytest.raises(SystemExit) as excinfo:
            scrape("--locked-chapters", "maybe")
        assert excinfo.value.code == cli.EXIT_INPUT

    @responses.activate
    def test_empty_epub_is_render_error(self):
        serve_story(2)
        assert scrape("--chapters", "10-") == cli.EXIT_RENDER

    def test_interrupt(self, monkeypatch):
        def interrupted(self, url, on_progress=None):
            raise KeyboardInterrupt

        monkeypatch.setattr(ScrapeRunner, "run", interrupted)
        assert scrape() == cli.EXIT_INTERRUPTED


class TestTocCommand:
    @responses.activate
    def test_prints_manifest(self, capsys):
        serve_story(3, locked=(3,))

        assert cli.main(["toc", RR_FICTION_URL, "-q"]) == cli.EXIT_OK

        out = capsys.readouterr().out
        assert "Test Story by Test Author (royalroad)" in out
        assert rr_chapter_url(1) in out
        assert f"{rr_chapter_url(3)} [locked]" in out
        assert "Total: 3 chapters" in out
        # Chapters are listed, never fetched
        assert [call.request.url for call in responses.calls] == [RR_FICTION_URL]


class TestHelpers:
    @pytest.mark.parametrize("error, code", [
        (ResumeMismatchError("other story"), cli.EXIT_INPUT),
        (NetworkError("down", "https://x"), cli.EXIT_SCRAPE),
        (EmptyChapterListError("https://x"), cli.EXIT_SCRAPE),
        (LockedChapterError(1, "https://x"), cli.EXIT_SCRAPE),
    ])
    def test_exit_code_for(self, error, code):
        assert cli.exit_code_for(error) == code

    def test_format_error_verbose_shows_causes(self):
        try:
            try:
                raise ConnectionResetError("reset by peer")
            except ConnectionResetError as e:
                raise NetworkError("could not fetch", "https://x") from e
        except NetworkError as error:
            assert cli.format_error(error) == "Error: could not fetch"
            assert "caused by: ConnectionResetError: reset by peer" in cli.format_error(error, verbose=True)

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == cli.EXIT_INPUT
        assert "usage:" in capsys.readouterr().out
