"""LLM client wrapper for Diagram Forge.

Provides a single-turn chat interface to the Anthropic API with a request
timeout and a graceful "not configured" state when no API key is present.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Protocol

import anthropic

DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_TIMEOUT = 30.0

_NOT_CONFIGURED_MSG = "LLM not configured. Set ANTHROPIC_API_KEY."


class LLMNotConfiguredError(RuntimeError):
    """Raised by :meth:`LLMClient.chat` when no API key is available."""

    def __init__(self) -> None:
        super().__init__(_NOT_CONFIGURED_MSG)


# Everything a chat call may raise for reasons outside our control
PROVIDER_ERRORS: tuple[type[BaseException], ...] = (
    anthropic.APIError,
    LLMNotConfiguredError,
    TimeoutError,
    ConnectionError,
)


# ---------------------------------------------------------------------------
# Response dataclass
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """Structured response from an LLM call."""

    content: str
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ChatClient(Protocol):
    """What the moderator needs from an LLM provider."""

    @property
    def configured(self) -> bool: ...

    def chat(self, messages: list[dict], max_tokens: int = ..., temperature: float = ...) -> LLMResponse: ...


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Thin wrapper around the Anthropic Python SDK.

    Parameters
    ----------
    model : str
        Model identifier to use for completions.
    api_key : str | None
        Anthropic API key.  Falls back to the ``ANTHROPIC_API_KEY``
        environment variable when *None*.
    timeout : float
        Per-request timeout in seconds.  A timeout surfaces as
        ``anthropic.APITimeoutError``.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.model = model or DEFAULT_MODEL
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        self.timeout = timeout
        self._configured = bool(self.api_key)

        if self._configured:
            # Retries are the caller's decision
            self._client = anthropic.Anthropic(
                api_key=self.api_key, timeout=timeout, max_retries=0
            )
        else:
            self._client = None  # type: ignore[assignment]

    # -- properties ----------------------------------------------------------

    @property
    def configured(self) -> bool:
        """Return *True* if an API key is available."""
        return self._configured

    # -- completion ----------------------------------------------------------

    def chat(
        self,
        messages: list[dict],
        max_tokens: int = 1024,
        temperature: float = 0.0,
    ) -> LLMResponse:
        """Send *messages* as one request and return the text reply.

        Provider errors (``anthropic.APIError`` and subclasses) propagate.
        """
        if not self._configured:
            raise LLMNotConfiguredError()

        start = time.monotonic()
        response = self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=messages,
        )
        latency_ms = int((time.monotonic() - start) * 1000)

        content = response.content[0].text if response.content else ""

        return LLMResponse(
            content=content,
            model=self.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=latency_ms,
        )
