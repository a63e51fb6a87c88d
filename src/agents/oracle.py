"""
AI Completion Oracle

DESIGN DECISION: The hosted model is treated as an UNRELIABLE ORACLE.
It may be slow, unavailable, or answer with something that is not what we
asked for. Callers never talk to the SDK directly; they get plain text back
from `complete()` or an `OracleError`, and every caller has a deterministic
fallback for that error.

The oracle:
- Is constructed explicitly and injected (no module-level client)
- Bounds every call with a timeout
- Translates SDK errors into the OracleError hierarchy
- Knows nothing about transactions, intents or categories
"""

import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import google.generativeai as genai
import structlog
from google.api_core import exceptions as google_exceptions

from src.config import GeminiSettings, get_settings


logger = structlog.get_logger("spenly.oracle")


class OracleError(Exception):
    """Base exception for oracle failures."""
    pass


class OracleUnavailableError(OracleError):
    """The completion service could not be reached or refused the request."""
    pass


class OracleTimeoutError(OracleError):
    """The completion service did not answer in time."""
    pass


class OracleResponseError(OracleError):
    """The completion service answered with something unusable."""
    pass


class ExtractionFailedError(OracleError):
    """No transaction could be extracted (oracle or attachment failure)."""
    pass


ImagePayload = tuple[bytes, str]


class CompletionOracle(ABC):
    """
    Abstract completion service.

    Implementations return the raw response text. Interpretation is the
    caller's job.
    """

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        *,
        image: Optional[ImagePayload] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Run one completion.

        Args:
            prompt: Full prompt text
            image: Optional (bytes, mime_type) sent alongside the prompt
            temperature: Overrides the configured default
            max_tokens: Overrides the configured default

        Raises:
            OracleError: On any failure
        """
        pass


class GeminiOracle(CompletionOracle):
    """
    Completion oracle backed by Google Gemini.

    Vision requests send the image bytes inline next to the prompt, so the
    configured model must be vision capable.
    """

    def __init__(self, settings: Optional[GeminiSettings] = None):
        self._settings = settings or get_settings().gemini
        self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    @property
    def timeout_seconds(self) -> float:
        return self._settings.timeout_seconds

    async def complete(
        self,
        prompt: str,
        *,
        image: Optional[ImagePayload] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        contents: list[Any] = [prompt]
        if image is not None:
            data, mime_type = image
            contents.append({"mime_type": mime_type, "data": data})

        generation_config = {
            "temperature": self._settings.temperature if temperature is None else temperature,
            "max_output_tokens": self._settings.max_tokens if max_tokens is None else max_tokens,
        }

        try:
            response = await asyncio.wait_for(
                self._model.generate_content_async(
                    contents,
                    generation_config=generation_config,
                    request_options={"timeout": self.timeout_seconds},
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise OracleTimeoutError(
                f"No answer within {self.timeout_seconds}s"
            ) from e
        except google_exceptions.GoogleAPIError as e:
            raise OracleUnavailableError(f"Gemini API error: {e}") from e
        except Exception as e:
            raise OracleUnavailableError(f"Gemini request failed: {e}") from e

        try:
            text = response.text
        except ValueError as e:
            # Blocked or empty candidates
            raise OracleResponseError(f"Gemini returned no text: {e}") from e

        text = (text or "").strip()
        if not text:
            raise OracleResponseError("Gemini returned an empty response")
        return text


_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def extract_json_object(text: str) -> dict:
    """
    Pull the first JSON object out of a model response.

    Strips markdown code fences, then decodes from the first "{".
    Trailing prose after the object is ignored.

    Raises:
        OracleResponseError: If no JSON object can be decoded
    """
    cleaned = _CODE_FENCE.sub("", text or "").strip()

    start = cleaned.find("{")
    if start < 0:
        raise OracleResponseError("No JSON object in response")

    try:
        data, _ = json.JSONDecoder().raw_decode(cleaned[start:])
    except json.JSONDecodeError as e:
        raise OracleResponseError(f"Malformed JSON in response: {e}") from e

    if not isinstance(data, dict):
        raise OracleResponseError("Response JSON is not an object")
    return data


def first_word(text: str) -> str:
    """First word of a response, lower-cased and stripped of punctuation/quotes."""
    match = re.search(r"[A-Za-z_]+", text or "")
    return match.group(0).lower() if match else ""
