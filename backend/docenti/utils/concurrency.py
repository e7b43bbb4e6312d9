"""
Concurrency utilities - semaphores for resource-limited operations.
"""

import asyncio

# Limits concurrent pdftotext subprocesses to avoid CPU/memory spikes
conversion_semaphore = asyncio.Semaphore(3)
