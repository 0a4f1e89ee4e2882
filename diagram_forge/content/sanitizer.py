"""Deterministic sanitization of user-submitted diagram content.

Runs before anything else looks at the text:

- HTML tags are stripped; ``<script>`` and ``<style>`` elements are removed
  together with their contents.
- ``http(s)://`` links are replaced with ``[link removed]``.
- Mermaid directives that can attach links or callbacks to nodes are removed
  from the diagram source.

All helpers accept ``None`` and return it unchanged.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Optional

from diagram_forge.config import SanitizerConfig
from diagram_forge.content.models import CandidateContent

logger = logging.getLogger(__name__)

LINK_PLACEHOLDER = "[link removed]"

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

# Removed with their contents, before generic tag stripping
_SCRIPT_STYLE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<style\b[^>]*>.*?</style\s*>", re.IGNORECASE | re.DOTALL),
]

# Anything that looks like an opening/closing tag, comment or doctype
_TAG_PATTERN = re.compile(r"<[a-zA-Z!/][^>]*>")

_URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)

_DIAGRAM_DIRECTIVE_PATTERNS: list[re.Pattern[str]] = [
    # click handlers with href or call
    re.compile(r"click\s+\w+\s+(?:href|call)\s*[^\n]*", re.IGNORECASE),
    # %%{init: ...}%% configuration blocks
    re.compile(r"%%\{[^\n]*\}%%\n?"),
    # inline href links
    re.compile(r"href\s+\"[^\"]*\"", re.IGNORECASE),
    # callback definitions
    re.compile(r"callback\s+\w+\s+\"[^\"]*\"", re.IGNORECASE),
]


def _remove_until_stable(pattern: re.Pattern[str], text: str) -> str:
    # A single pass can splice a new match together, e.g. "<<b>b>"
    while True:
        stripped = pattern.sub("", text)
        if stripped == text:
            return stripped
        text = stripped


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def strip_html(text: Optional[str]) -> Optional[str]:
    """Strip HTML tags, dropping script/style elements entirely.

    >>> strip_html("<script>alert('xss')</script>Hello")
    'Hello'
    """
    if not text:
        return text

    previous = None
    while previous != text:
        previous = text
        for pattern in _SCRIPT_STYLE_PATTERNS:
            text = _remove_until_stable(pattern, text)
        text = _remove_until_stable(_TAG_PATTERN, text)
    return text.strip()


def strip_urls(text: Optional[str]) -> tuple[Optional[str], list[str]]:
    """Replace every http(s) URL with a placeholder.

    Returns ``(sanitized_text, removed_urls)``.

    >>> strip_urls("Check out https://spam.com for deals!")
    ('Check out [link removed] for deals!', ['https://spam.com'])
    """
    if not text:
        return text, []
    urls = _URL_PATTERN.findall(text)
    return _URL_PATTERN.sub(LINK_PLACEHOLDER, text), urls


def sanitize_text(text: Optional[str]) -> Optional[str]:
    """Strip HTML, then URLs.  Applying it twice equals applying it once."""
    return strip_urls(strip_html(text))[0]


def strip_diagram_directives(source: Optional[str]) -> Optional[str]:
    """Remove link/callback directives from Mermaid source."""
    if not source:
        return source
    for pattern in _DIAGRAM_DIRECTIVE_PATTERNS:
        source = pattern.sub("", source)
    return source.strip()


# ---------------------------------------------------------------------------
# Configured sanitizer
# ---------------------------------------------------------------------------


class Sanitizer:
    """Applies the helpers above according to a :class:`SanitizerConfig`."""

    def __init__(self, config: Optional[SanitizerConfig] = None) -> None:
        self.config = config or SanitizerConfig()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def sanitize_field(self, text: Optional[str], strip_urls: Optional[bool] = None) -> Optional[str]:
        """Sanitize a free-text field.

        Identity when disabled; HTML-only when URL stripping is off either in
        the config or via *strip_urls*.
        """
        if not self.config.enabled:
            return text
        remove_urls = self.config.strip_urls if strip_urls is None else strip_urls
        if remove_urls:
            return sanitize_text(text)
        return strip_html(text)

    def sanitize_source(self, source: Optional[str]) -> Optional[str]:
        if not self.config.diagram_source_enabled:
            return source
        return strip_diagram_directives(source)

    def sanitize_content(self, content: CandidateContent) -> CandidateContent:
        """Return a sanitized copy of *content*."""
        if self.config.enabled and self.config.strip_urls:
            removed: list[str] = []
            for value in (content.title, content.summary):
                removed.extend(strip_urls(strip_html(value))[1])
            if removed:
                logger.info(
                    "Removed %d link(s) from content %s",
                    len(removed),
                    content.id,
                    extra={"content_id": content.id, "removed_urls": removed},
                )

        return dataclasses.replace(
            content,
            title=self.sanitize_field(content.title) or "",
            summary=self.sanitize_field(content.summary),
            source_text=self.sanitize_source(content.source_text) or "",
        )
