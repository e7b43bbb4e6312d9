"""Text extraction: PyMuPDF first, pdftotext fallback, tool precondition."""

import subprocess
import threading
from unittest.mock import MagicMock, patch

import pytest

from conftest import blank_pdf, make_pdf
from docenti.errors import FatalConfigError
from docenti.services.extraction import TextExtractor, pdf_to_text


def test_pdf_to_text_reads_text_layer():
    text = pdf_to_text(make_pdf("Question 1) What is 2+2?\nAnswer: B"))
    assert "What is 2+2?" in text
    assert "Answer: B" in text


async def test_primary_strategy_wins(extractor):
    with patch.object(TextExtractor, "_run_pdftotext") as fallback:
        text = await extractor.extract_text(make_pdf("Hello exam"))

    assert "Hello exam" in text
    fallback.assert_not_called()


async def test_primary_retried_before_fallback():
    calls = []

    def flaky(pdf_bytes):
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("xref table broken")
        return "recovered text"

    extractor = TextExtractor(retry_delay=0, primary=flaky)
    assert await extractor.extract_text(b"%PDF-1.4") == "recovered text"
    assert len(calls) == 3


async def test_fallback_used_when_primary_has_no_text(extractor):
    with patch.object(TextExtractor, "_run_pdftotext", return_value="scanned words") as fallback:
        text = await extractor.extract_text(blank_pdf())

    assert text == "scanned words"
    fallback.assert_called_once()


async def test_empty_string_when_every_strategy_is_empty(extractor):
    with patch.object(TextExtractor, "_run_pdftotext", return_value="   \n") as fallback:
        text = await extractor.extract_text(blank_pdf())

    assert text == ""
    assert fallback.call_count == 3


async def test_fallback_errors_are_retried_then_give_up(extractor):
    error = subprocess.CalledProcessError(1, ["pdftotext"])
    with patch.object(TextExtractor, "_run_pdftotext", side_effect=error) as fallback:
        assert await extractor.extract_text(blank_pdf()) == ""
    assert fallback.call_count == 3


class TestFallbackTool:
    def test_missing_tool_without_install_is_fatal(self):
        extractor = TextExtractor(pdftotext_path="pdftotext-missing", auto_install=False)
        with patch("docenti.services.extraction.shutil.which", return_value=None):
            with pytest.raises(FatalConfigError):
                extractor.ensure_fallback_tool()

    def test_install_attempted_then_fatal_when_still_missing(self):
        extractor = TextExtractor(auto_install=True)
        with patch("docenti.services.extraction.shutil.which", return_value=None), \
                patch("docenti.services.extraction.subprocess.run") as run:
            with pytest.raises(FatalConfigError):
                extractor.ensure_fallback_tool()
        assert run.call_count == 2
        assert run.call_args_list[1].args[0][-1] == "poppler-utils"

    def test_install_success_is_remembered(self):
        extractor = TextExtractor(auto_install=True)
        with patch("docenti.services.extraction.shutil.which", side_effect=[None, "/usr/bin/pdftotext"]), \
                patch("docenti.services.extraction.subprocess.run", return_value=MagicMock()):
            extractor.ensure_fallback_tool()
            extractor.ensure_fallback_tool()

    async def test_fatal_error_raised_from_extract_text(self):
        extractor = TextExtractor(auto_install=False, retry_delay=0, primary=lambda b: "")
        with patch("docenti.services.extraction.shutil.which", return_value=None):
            with pytest.raises(FatalConfigError):
                await extractor.extract_text(b"%PDF-1.4")

    def test_failed_install_is_not_repeated(self):
        extractor = TextExtractor(auto_install=True)
        with patch("docenti.services.extraction.shutil.which", return_value=None), \
                patch("docenti.services.extraction.subprocess.run") as run:
            for _ in range(3):
                with pytest.raises(FatalConfigError):
                    extractor.ensure_fallback_tool()
        assert run.call_count == 2

    async def test_install_runs_off_the_event_loop(self):
        extractor = TextExtractor(auto_install=True, retry_delay=0, primary=lambda b: "")
        install_threads = []

        with patch("docenti.services.extraction.shutil.which", return_value=None), \
                patch.object(TextExtractor, "_install_tool",
                             side_effect=lambda: install_threads.append(threading.current_thread())):
            with pytest.raises(FatalConfigError):
                await extractor.extract_text(b"%PDF-1.4")

        assert len(install_threads) == 1
        assert install_threads[0] is not threading.main_thread()

    def test_pdftotext_invocation(self):
        extractor = TextExtractor(pdftotext_path="/opt/pdftotext")
        completed = MagicMock(stdout="naïve text".encode("utf-8"))
        with patch("docenti.services.extraction.subprocess.run", return_value=completed) as run:
            assert extractor._run_pdftotext(b"%PDF") == "naïve text"
        assert run.call_args.args[0] == ["/opt/pdftotext", "-q", "-enc", "UTF-8", "-layout", "-", "-"]
        assert run.call_args.kwargs["input"] == b"%PDF"
