"""
File utilities - temp storage for uploaded PDFs owned by queued jobs.
"""

import os
import re
import time
import uuid
import asyncio
from pathlib import Path

from docenti.config import logger

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str, default: str = "upload.pdf") -> str:
    """Reduce a client-supplied filename to a safe basename."""
    name = os.path.basename(filename or "").strip()
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    return name or default


async def save_temp_upload(file_bytes: bytes, filename: str, tmp_dir: str) -> str:
    """Write an upload to tmp_dir as <epoch-ms>-<random hex>-<filename> and return the path."""
    path = Path(tmp_dir) / f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}-{safe_filename(filename)}"
    await asyncio.to_thread(path.write_bytes, file_bytes)
    return str(path)


async def read_temp_file(path: str) -> bytes:
    return await asyncio.to_thread(Path(path).read_bytes)


async def remove_temp_file(path: str) -> bool:
    """Delete a job's temp file; a file that is already gone is not an error."""
    try:
        await asyncio.to_thread(os.remove, path)
        return True
    except FileNotFoundError:
        logger.warning(f"Temp file already removed: {path}")
        return False
