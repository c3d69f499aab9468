"""
Transcript summarisation, run detached from the transcription pipeline.

Summaries are best effort: a failure is logged and the transcription keeps
a NULL summary. Nothing retries it.
"""

import logging
import os
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Protocol

import google.generativeai as genai

from studyscribe.core.constants import (
    ErrorCode, GEMINI_KEY_ENV, SUMMARY_LANGUAGE, SUMMARY_MIN_CHARS, SUMMARY_MODEL,
)
from studyscribe.core.db_sqlite import Database
from studyscribe.core.error_codes import SummarizationError

logger = logging.getLogger(__name__)


PROMPT_TEMPLATE = (
    "You are an assistant specialized in summarizing texts for educational purposes.\n\n"
    "TASK:\n"
    "1. Translate the text below to {language} (if it is not already).\n"
    "2. Summarize it clearly, coherently, and in an organized manner.\n"
    "3. Structure the summary in the format of topics and subtopics, highlighting:\n"
    "  - The main ideas.\n"
    "  - The key concepts.\n"
    "  - The important facts, events, or arguments.\n\n"
    "Text to be translated and summarized:\n{text}\n"
)


class SummaryProvider(Protocol):
    def generate(self, model: str, prompt: str) -> str: ...


class GeminiProvider:
    """Generative-text provider backed by google-generativeai."""

    def __init__(self, api_key: str | None = None):
        api_key = api_key or os.environ.get(GEMINI_KEY_ENV)
        if not api_key:
            raise SummarizationError(ErrorCode.MISSING_API_KEY, f"{GEMINI_KEY_ENV} is not set")
        genai.configure(api_key=api_key)

    def generate(self, model: str, prompt: str) -> str:
        logger.info("Calling generative model %s for summarisation", model)
        response = genai.GenerativeModel(model).generate_content(prompt)
        return response.text


class Summarizer:
    """
    Owns a single background thread. `submit` returns at once with a Future
    that resolves to the stored summary, or None when summarisation failed.
    `on_complete(transcription_id, summary)` fires after every attempt.
    """

    def __init__(self, db: Database, provider: Optional[SummaryProvider],
                 model: str = SUMMARY_MODEL, language: str = SUMMARY_LANGUAGE,
                 on_complete: Callable[[int, Optional[str]], None] | None = None):
        self.db = db
        self.provider = provider
        self.model = model
        self.language = language
        self.on_complete = on_complete
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="summarizer")

    def submit(self, transcription_id: int, content: str) -> Future:
        return self._executor.submit(self._run, transcription_id, content)

    def summarize(self, text: str) -> str:
        """Generate a summary. Text under SUMMARY_MIN_CHARS yields ''."""
        if not text or len(text) < SUMMARY_MIN_CHARS:
            return ""
        if self.provider is None:
            raise SummarizationError(ErrorCode.MISSING_API_KEY, "No summary provider configured")

        prompt = PROMPT_TEMPLATE.format(language=self.language, text=text)
        try:
            summary = self.provider.generate(self.model, prompt)
        except Exception as e:
            raise SummarizationError(None, f"Summary generation failed: {e}") from e
        return (summary or "").strip()

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)

    def _run(self, transcription_id: int, content: str) -> Optional[str]:
        summary = None
        try:
            summary = self.summarize(content)
            self.db.set_summary(transcription_id, summary)
            logger.info("Saved summary for transcription %s (%d chars)",
                        transcription_id, len(summary))
        except SummarizationError as e:
            summary = None
            logger.warning("Async summary generation failed for transcription %s: %s",
                           transcription_id, e)
        except Exception:
            summary = None
            logger.exception("Saving summary for transcription %s failed", transcription_id)
        finally:
            self._notify(transcription_id, summary)
        return summary

    def _notify(self, transcription_id: int, summary: Optional[str]):
        if self.on_complete is None:
            return
        try:
            self.on_complete(transcription_id, summary)
        except Exception:
            logger.exception("Summary completion hook failed")
