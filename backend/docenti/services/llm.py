"""
Gemini wrapper used by the question parser, reconciler and scorer.
Uses the official google-generativeai SDK directly.
"""

import asyncio
from typing import List, Optional

import google.generativeai as genai

from docenti.config import logger


class AIInferenceClient:
    """
    Thin async client around a Gemini GenerativeModel.

    One instance is created at process start and shared by every job; it
    carries no per-request state. generate() retries failed calls with a
    linear backoff (retry_delay * attempt) and re-raises the last failure.
    """

    def __init__(
        self,
        api_key: str = "",
        model_name: str = "gemini-2.0-flash",
        max_attempts: int = 3,
        retry_delay: float = 0.5,
        model=None,
    ):
        self._model_name = model_name
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._model = model  # lazily created unless injected
        if model is None and api_key:
            genai.configure(api_key=api_key)

    def _ensure_model(self):
        if self._model is None:
            self._model = genai.GenerativeModel(model_name=self._model_name)
        return self._model

    async def _send(self, prompt_parts: List[str]) -> str:
        model = self._ensure_model()
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(
            None, lambda: model.generate_content(prompt_parts)
        )
        return response.text

    async def generate(self, prompt_parts: List[str]) -> str:
        """Send prompt parts to the model and return the response text."""
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await self._send(prompt_parts)
            except Exception as e:
                last_error = e
                logger.warning(f"AI fail x{attempt}: {e}")
                if attempt >= self._max_attempts:
                    break
                await asyncio.sleep(self._retry_delay * attempt)
        raise last_error
