"""Diagram Forge LLM integration module.

Provides a thin wrapper around the Anthropic API and the prompt templates
used by content moderation.
"""

from diagram_forge.llm.client import PROVIDER_ERRORS, ChatClient, LLMClient, LLMNotConfiguredError, LLMResponse

__all__ = [
    "PROVIDER_ERRORS",
    "ChatClient",
    "LLMClient",
    "LLMNotConfiguredError",
    "LLMResponse",
]
