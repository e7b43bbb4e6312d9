"""
Configuration - env vars, constants, logging setup.
"""

import os
import logging
import tempfile
from pathlib import Path
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / '.env')

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("docenti")


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# LLM
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY") or os.environ.get("GEMINI_KEY")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash")

if not GEMINI_API_KEY:
    logger.warning("⚠️ No GEMINI_API_KEY found - parsing and marking jobs will fail")

# MongoDB (exam documents + durable job store)
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "docenti")

# Object storage for transcripts
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")
AWS_ACCESS_KEY_ID = os.environ.get("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.environ.get("AWS_SECRET_ACCESS_KEY")
AWS_BUCKET_NAME = os.environ.get("AWS_BUCKET_NAME", "")

# PDF conversion fallback tool
PDFTOTEXT_PATH = os.environ.get("PDFTOTEXT_PATH", "pdftotext")
PDFTOTEXT_AUTO_INSTALL = _env_bool("PDFTOTEXT_AUTO_INSTALL", True)

# Worker pool / queue
WORKER_CONCURRENCY = int(os.environ.get("WORKER_CONCURRENCY", "3"))
JOB_POLL_INTERVAL_SECONDS = float(os.environ.get("JOB_POLL_INTERVAL_SECONDS", "1.0"))
JOB_LOCK_SECONDS = int(os.environ.get("JOB_LOCK_SECONDS", "300"))
JOB_COMPLETED_RETENTION_SECONDS = int(os.environ.get("JOB_COMPLETED_RETENTION_SECONDS", "3600"))
JOB_FAILED_RETENTION_SECONDS = int(os.environ.get("JOB_FAILED_RETENTION_SECONDS", "0"))

UPLOAD_TMP_DIR = os.environ.get("UPLOAD_TMP_DIR") or tempfile.gettempdir()


def get_llm_api_key():
    """Get the LLM API key from environment variables."""
    return GEMINI_API_KEY


def get_version_info():
    """Get deployment version information."""
    git_commit = os.environ.get("GIT_COMMIT_SHA")
    if not git_commit:
        logger.warning("GIT_COMMIT_SHA not set. Build pipeline issue?")
        git_commit = "unknown"

    return {
        "git_commit": git_commit,
        "build_time": os.environ.get("BUILD_TIME", "unknown"),
        "environment": os.environ.get("ENV", os.environ.get("ENVIRONMENT", "development"))
    }
