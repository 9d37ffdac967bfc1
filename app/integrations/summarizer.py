"""Capture Agent - Remote summarization client.

Sends the list of captured file names to Gemini through the google-genai
SDK and returns the response text. The client factory is injectable so
tests can hand in a mock client.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import StrEnum
from typing import Protocol

import httpx
from google import genai
from google.genai import errors, types

from app.config import SUMMARY_MAX_OUTPUT_TOKENS, SUMMARY_TEMPERATURE, SUMMARY_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class SummarizerErrorCode(StrEnum):
    MISSING_API_KEY = "MISSING_API_KEY"
    MISSING_MODEL = "MISSING_MODEL"
    REQUEST_FAILED = "REQUEST_FAILED"
    REMOTE_ERROR = "REMOTE_ERROR"
    EMPTY_SUMMARY = "EMPTY_SUMMARY"


class SummarizerError(Exception):
    def __init__(self, error_code: str, message: str, status_code: int | None = None):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        super().__init__(f"{error_code}: {message}")


class Summarizer(Protocol):
    def generate_summary(
        self, api_key: str, model: str, source_file_names: Sequence[str]
    ) -> str: ...


def build_summary_prompt(source_file_names: Sequence[str]) -> str:
    listed = "\n".join(f"- {name}" for name in source_file_names) or "- (no files)"
    return (
        "You are a capture assistant. Summarize the likely content of this batch "
        "of captured files in exactly 3 concise bullet points.\n"
        "Files:\n"
        f"{listed}"
    )


def _default_client(api_key: str, timeout: float) -> genai.Client:
    # HttpOptions.timeout is in milliseconds
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=int(timeout * 1000)),
    )


class GeminiSummarizer:
    """Summarizer backed by the Gemini API."""

    def __init__(
        self,
        client_factory: Callable[[str], genai.Client] | None = None,
        timeout: float = SUMMARY_TIMEOUT_SECONDS,
        temperature: float = SUMMARY_TEMPERATURE,
        max_output_tokens: int = SUMMARY_MAX_OUTPUT_TOKENS,
    ):
        self._client_factory = client_factory or (lambda key: _default_client(key, timeout))
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def generate_summary(
        self, api_key: str, model: str, source_file_names: Sequence[str]
    ) -> str:
        """Request a short summary for a batch of files.

        Args:
            api_key: Credential for the remote service.
            model: Model identifier, e.g. "gemini-2.5-flash".
            source_file_names: Base names of the captured files.

        Returns:
            The trimmed summary text.

        Raises:
            SummarizerError: Blank key or model, transport failure, an error
                reply from the service, or a response without text.
        """
        if not api_key.strip():
            raise SummarizerError(SummarizerErrorCode.MISSING_API_KEY, "API key is not configured")
        if not model.strip():
            raise SummarizerError(SummarizerErrorCode.MISSING_MODEL, "summary model is empty")

        client = self._client_factory(api_key.strip())
        try:
            response = client.models.generate_content(
                model=model.strip(),
                contents=build_summary_prompt(source_file_names),
                config=types.GenerateContentConfig(
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                ),
            )
        except errors.APIError as e:
            raise SummarizerError(
                SummarizerErrorCode.REMOTE_ERROR,
                f"summary service returned {e.code}: {e.message}",
                status_code=e.code,
            ) from e
        except httpx.HTTPError as e:
            raise SummarizerError(
                SummarizerErrorCode.REQUEST_FAILED, f"summary request failed: {e}"
            ) from e

        text = (response.text or "").strip()
        if not text:
            raise SummarizerError(
                SummarizerErrorCode.EMPTY_SUMMARY, "summary response contained no text"
            )

        logger.info("Generated summary with %s for %d file(s)", model, len(source_file_names))
        return text
