"""
ResponsesClient: text-completion client over the OpenAI Responses API.
Used by the LLM-backed utterance generator and borrower simulator.
Retries with exponential backoff; callers own the fallback behaviour.
"""
from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, List, Optional, Protocol

from openai import OpenAI

DEFAULT_MODEL = "gpt-4.1-mini"
DEFAULT_RETRIES = 3
DEFAULT_BACKOFF = 1.5

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    """Anything that turns (prompt, system prompt) into text."""

    def complete(self, prompt: str, system_prompt: str) -> str:
        ...


def _extract_text(response: Any) -> str:
    """Pull the text out of a Responses API result."""
    text = getattr(response, "output_text", None)
    if text:
        return text

    if getattr(response, "output", None):
        message = response.output[0]
        if getattr(message, "content", None):
            return message.content[0].text

    raise ValueError("Unable to extract text from response")


def _input_block(text: str) -> Dict[str, Any]:
    return {"type": "input_text", "text": text}


class ResponsesClient:
    """
    Short-reply completion client.

    Args:
        api_key: OpenAI key (falls back to OPENAI_API_KEY)
        model: Model name
        temperature: Sampling temperature
        max_output_tokens: Reply budget; call replies are one to three sentences
        max_retries: Attempts before giving up
        backoff: Base for exponential sleep between attempts
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.8,
        max_output_tokens: int = 150,
        max_retries: int = DEFAULT_RETRIES,
        backoff: float = DEFAULT_BACKOFF,
        client: Optional[Any] = None,
    ):
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OpenAI API key required (set OPENAI_API_KEY or pass api_key).")
            client = OpenAI(api_key=api_key)
        self.client = client
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.max_retries = max_retries
        self.backoff = backoff

    def complete(self, prompt: str, system_prompt: str) -> str:
        """
        Generate a reply.

        Raises:
            RuntimeError: when every attempt failed
        """
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": [_input_block(system_prompt)]},
            {"role": "user", "content": [_input_block(prompt)]},
        ]

        last_exc: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.client.responses.create(
                    model=self.model,
                    input=messages,
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                )
                return _extract_text(response).strip()
            except Exception as exc:  # SDK raises many unrelated subclasses
                last_exc = exc
                logger.warning(
                    "Responses API call failed (attempt %d/%d, model=%s, status=%s, error=%s)",
                    attempt,
                    self.max_retries,
                    self.model,
                    getattr(exc, "status_code", None),
                    exc,
                )
                if attempt == self.max_retries:
                    break
                time.sleep(self.backoff ** attempt)

        raise RuntimeError(
            f"Responses API call failed after {self.max_retries} attempts: {last_exc}"
        ) from last_exc


__all__ = ["LLMClient", "ResponsesClient"]
