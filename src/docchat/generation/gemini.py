"""Answer generation through the Google Gemini API."""

from __future__ import annotations

import logging
from typing import Any

from google import genai

from docchat.config import DEFAULT_LLM_MODEL
from docchat.errors import ConfigError, UpstreamError

logger = logging.getLogger(__name__)


class GeminiAnswerer:
    """Single-call wrapper: one prompt in, one answer out.

    No retries and no streaming; remote failures are re-raised as
    :class:`UpstreamError` with the remote message.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_LLM_MODEL,
        *,
        client: Any | None = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ConfigError("GEMINI_API_KEY is required for answer generation")
            client = genai.Client(api_key=api_key)
        self._client = client
        self.model = model

    def generate(self, prompt: str) -> str:
        logger.debug("Generating answer with %s (%d prompt chars)", self.model, len(prompt))
        try:
            response = self._client.models.generate_content(model=self.model, contents=prompt)
        except Exception as exc:
            logger.error("Gemini generation failed: %s", exc)
            raise UpstreamError(f"gemini failed: {exc}") from exc
        return response.text or ""
