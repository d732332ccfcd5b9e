"""Post-processing helpers for LLM output."""

from __future__ import annotations

import html
import re

_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_EMPTY_PARAGRAPH = re.compile(r"<p>\s*</p>")


def strip_code_fences(raw_text: str) -> str:
    """Strip markdown code fences (```json ... ```) from LLM response."""
    text = raw_text.strip()
    if text.startswith("```"):
        first_newline = text.find("\n")
        text = text[first_newline + 1:] if first_newline != -1 else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def strip_html(markup: str) -> str:
    """Markup -> plain text with entities decoded and whitespace collapsed."""
    text = _TAG.sub(" ", markup)
    return _WHITESPACE.sub(" ", html.unescape(text)).strip()


def clean_html(markup: str) -> str:
    """Drop empty paragraphs and trim; inner whitespace is left alone."""
    return _EMPTY_PARAGRAPH.sub("", markup).strip()
