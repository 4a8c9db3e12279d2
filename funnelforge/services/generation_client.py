"""
Generation Client

Thin wrapper over OpenAI chat completions used by every generation flow.

Retry policy: only the upstream "overloaded" status (529) is retried, at most
twice more, with linear backoff (1s, 2s). Every other error propagates on
the first attempt. The SDK's own retries are disabled so this is the only
retry layer.
"""

import logging
import time
from typing import Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from ..config import GENERATION_MODEL, GENERATION_TIMEOUT
from ..errors import FetchConnectionError, FetchTimeoutError

logger = logging.getLogger(__name__)

OVERLOADED_STATUS = 529
MAX_OVERLOAD_RETRIES = 2


def is_overloaded(error: Exception) -> bool:
    """True when an upstream error carries the overloaded status."""
    return getattr(error, "status_code", None) == OVERLOADED_STATUS


class GenerationClient:
    """Single-prompt text completion with the overloaded-status retry policy."""

    def __init__(
        self,
        model: str = GENERATION_MODEL,
        timeout: float = GENERATION_TIMEOUT,
        max_retries: int = MAX_OVERLOAD_RETRIES,
        client: Optional[OpenAI] = None,
    ):
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client

    @property
    def client(self) -> OpenAI:
        """Lazy-initialize OpenAI client."""
        if self._client is None:
            self._client = OpenAI(max_retries=0, timeout=self.timeout)
        return self._client

    def complete(self, prompt: str, max_tokens: int, model: Optional[str] = None) -> str:
        """
        Send one user prompt and return the response text.

        Raises:
            openai.APIStatusError: upstream error (529 after retries are spent)
            FetchTimeoutError: the call exceeded the timeout
            FetchConnectionError: the service could not be reached
        """
        for attempt in range(self.max_retries + 1):
            try:
                return self._call(prompt, max_tokens, model or self.model)
            except APIStatusError as e:
                if not is_overloaded(e) or attempt == self.max_retries:
                    raise
                delay = attempt + 1  # 1s, 2s
                logger.info(
                    f"Generation service overloaded on attempt {attempt + 1}, "
                    f"retrying in {delay}s"
                )
                time.sleep(delay)
        raise RuntimeError("unreachable")

    def _call(self, prompt: str, max_tokens: int, model: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=model,
                max_tokens=max_tokens,
                timeout=self.timeout,
                messages=[{"role": "user", "content": prompt}],
            )
        except APITimeoutError as e:
            raise FetchTimeoutError("generation service", self.timeout) from e
        except APIConnectionError as e:
            raise FetchConnectionError("generation service", str(e)) from e

        # Null content is treated like an empty (unparseable) response
        return response.choices[0].message.content or ""
