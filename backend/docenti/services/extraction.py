"""
PDF text extraction.

Strategy A reads the text layer in-process with PyMuPDF. Strategy B pipes the
PDF through poppler's pdftotext and only runs when A never produced text.
Each strategy gets its own retry loop with a linear backoff.
"""

import asyncio
import shutil
import subprocess
from contextlib import contextmanager
from typing import Awaitable, Callable, Optional

import fitz

from docenti.config import logger
from docenti.errors import FatalConfigError
from docenti.utils.concurrency import conversion_semaphore

INSTALL_COMMANDS = [
    ["apt-get", "update", "-qq"],
    ["apt-get", "install", "-y", "poppler-utils"],
]


@contextmanager
def quiet_mupdf():
    """Silence MuPDF's own stderr diagnostics (broken xref tables, repairs) for a block."""
    previous_errors = fitz.TOOLS.mupdf_display_errors()
    previous_warnings = fitz.TOOLS.mupdf_display_warnings()
    fitz.TOOLS.mupdf_display_errors(False)
    fitz.TOOLS.mupdf_display_warnings(False)
    try:
        yield
    finally:
        fitz.TOOLS.reset_mupdf_warnings()
        fitz.TOOLS.mupdf_display_errors(previous_errors)
        fitz.TOOLS.mupdf_display_warnings(previous_warnings)


def pdf_to_text(pdf_bytes: bytes) -> str:
    """Extract the text layer of every page with PyMuPDF."""
    with quiet_mupdf():
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
        try:
            return "\n".join(page.get_text() for page in doc)
        finally:
            doc.close()


class TextExtractor:
    """Converts PDF bytes to plain text, falling back to pdftotext."""

    def __init__(
        self,
        pdftotext_path: str = "pdftotext",
        auto_install: bool = True,
        max_attempts: int = 3,
        retry_delay: float = 0.3,
        primary: Callable[[bytes], str] = pdf_to_text,
    ):
        self._pdftotext_path = pdftotext_path
        self._auto_install = auto_install
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._primary = primary
        self._tool_checked = False
        self._install_attempted = False

    # ============== FALLBACK TOOL ==============

    def _tool_available(self) -> bool:
        return shutil.which(self._pdftotext_path) is not None

    def _install_tool(self):
        logger.warning("⚠️  pdftotext not found. Attempting to install poppler-utils...")
        try:
            for command in INSTALL_COMMANDS:
                subprocess.run(command, check=True, capture_output=True)
            logger.info("✅ poppler-utils installed successfully")
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error(f"❌ Failed to install poppler-utils: {e}")

    def ensure_fallback_tool(self):
        """
        Make sure pdftotext can be run, installing poppler-utils if allowed.

        Raises FatalConfigError when the tool is still missing; this is a
        deployment problem and callers must not retry it. The install is only
        tried once per extractor. Blocking: call it from a worker thread.
        """
        if self._tool_checked:
            return
        if not self._tool_available():
            if self._auto_install and not self._install_attempted:
                self._install_attempted = True
                self._install_tool()
            if not self._tool_available():
                logger.error("pdftotext command not found")
                raise FatalConfigError(
                    'pdftotext command not found. Install the "poppler-utils" package.',
                    details={"path": self._pdftotext_path},
                )
        self._tool_checked = True

    def _run_pdftotext(self, pdf_bytes: bytes) -> str:
        completed = subprocess.run(
            [self._pdftotext_path, "-q", "-enc", "UTF-8", "-layout", "-", "-"],
            input=pdf_bytes,
            capture_output=True,
            check=True,
        )
        return completed.stdout.decode("utf-8", errors="replace")

    # ============== EXTRACTION ==============

    async def _attempt_strategy(self, name: str, run: Callable[[bytes], Awaitable[str]], pdf_bytes: bytes) -> Optional[str]:
        for attempt in range(1, self._max_attempts + 1):
            try:
                text = await run(pdf_bytes)
                if text and text.strip():
                    return text
                logger.info(f"{name} attempt {attempt} returned no text")
            except Exception as e:
                logger.warning(f"{name} attempt {attempt} failed: {e}")
            if attempt < self._max_attempts:
                await asyncio.sleep(self._retry_delay * attempt)
        return None

    async def _primary_async(self, pdf_bytes: bytes) -> str:
        return await asyncio.to_thread(self._primary, pdf_bytes)

    async def _fallback_async(self, pdf_bytes: bytes) -> str:
        async with conversion_semaphore:
            return await asyncio.to_thread(self._run_pdftotext, pdf_bytes)

    async def extract_text(self, pdf_bytes: bytes) -> str:
        """Return the PDF's text, or "" when every strategy comes back empty."""
        text = await self._attempt_strategy("PyMuPDF", self._primary_async, pdf_bytes)
        if text:
            return text

        await asyncio.to_thread(self.ensure_fallback_tool)
        text = await self._attempt_strategy("pdftotext", self._fallback_async, pdf_bytes)
        if text:
            return text

        logger.warning("No text could be extracted from PDF")
        return ""
