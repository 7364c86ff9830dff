"""
Completion Client - OpenAI-Compatible Chat Completions
======================================================

ARCHITECTURAL DECISION:
- One thin client shared by reply drafting and digest generation
- Uses requests (blocking) inside a worker thread so callers can await it;
  one requests.post per call, nothing shared between worker threads
- Raises CompletionError on every failure; callers decide how to degrade
- Retries only transient failures (timeouts, connection errors, 429, 5xx)

EXTENSIBILITY:
- To use a different model: set LLM_MODEL
- To use another OpenAI-compatible provider: set LLM_API_URL and the key
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import requests

from ..config import LLMSettings, get_settings

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """The provider could not produce a usable completion."""

    def __init__(self, message: str, transient: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


@dataclass
class Completion:
    """Completion text plus the provider's token usage."""
    text: str
    usage: dict = field(default_factory=dict)
    model: str = ""

    @property
    def total_tokens(self) -> int:
        return int(self.usage.get("total_tokens", 0) or 0)


class CompletionClient:
    """
    Chat completion client.

    USAGE:
        client = CompletionClient()
        completion = await client.complete(system, user, temperature=0.3, max_tokens=120)
        print(completion.text)
    """

    def __init__(
        self,
        settings: Optional[LLMSettings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = settings or get_settings().llm
        self._api_key = settings.api_key
        self._api_url = settings.api_url
        self._model = settings.model
        self._timeout = settings.timeout_seconds
        self._max_retries = max(0, settings.max_retries)
        self._backoff = settings.retry_backoff_seconds
        self._sleep = sleep

        if not self._api_key:
            logger.warning("No OPENAI_API_KEY set. Every completion will fail over to fallbacks.")

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
    ) -> Completion:
        """
        Request one completion.

        Raises:
            CompletionError: missing key, provider error, or empty completion.
        """
        return await asyncio.to_thread(
            self._complete_sync, system_prompt, user_prompt, temperature, max_tokens, json_mode
        )

    def _complete_sync(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> Completion:
        if not self._api_key:
            raise CompletionError("OPENAI_API_KEY is not configured")

        payload = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "n": 1,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return self._post(payload)
            except CompletionError as e:
                if not e.transient or attempt == attempts:
                    raise
                delay = self._backoff * attempt
                logger.warning(f"LLM call failed ({e}), retry {attempt}/{self._max_retries} in {delay:.1f}s")
                self._sleep(delay)

        # range() always runs at least once
        raise CompletionError("LLM call was not attempted")

    def _post(self, payload: dict) -> Completion:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = requests.post(
                self._api_url,
                headers=headers,
                json=payload,
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            raise CompletionError("LLM API timeout", transient=True) from e
        except requests.ConnectionError as e:
            raise CompletionError(f"LLM API connection error: {e}", transient=True) from e
        except requests.RequestException as e:
            raise CompletionError(f"LLM API error: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise CompletionError(f"LLM API returned HTTP {status}", transient=True, status_code=status)
        if status >= 400:
            raise CompletionError(f"LLM API returned HTTP {status}", status_code=status)

        try:
            data = response.json()
        except ValueError as e:
            raise CompletionError("LLM API returned a non-JSON body") from e

        content = self._extract_response_content(data)
        if not content:
            raise CompletionError("LLM API returned an empty completion")

        usage = data.get("usage") if isinstance(data, dict) else None
        logger.debug(f"LLM completion received ({len(content)} chars)")
        return Completion(
            text=content,
            usage=usage if isinstance(usage, dict) else {},
            model=data.get("model", self._model) if isinstance(data, dict) else self._model,
        )

    def _extract_response_content(self, data: dict) -> str:
        """Extract text content from API response."""
        try:
            choices = data.get("choices", [])
            if choices:
                message = choices[0].get("message", {})
                return (message.get("content") or "").strip()
        except (AttributeError, KeyError, IndexError, TypeError):
            pass
        return ""
