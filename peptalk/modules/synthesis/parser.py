"""Synthesis reply format.

The model answers in two parts separated by a line that contains only the
separator::

    {"sections": [{"title": "Human Research", "plain_language_summary": "..."}],
     "references": ["PMID:123", "NCT:NCT01234567"],
     "key_points": [...], "limitations": [...]}
    ===PAGE-BODY===
    <p>Summary paragraph citing [PMID:123].</p>
    <h2>Human Research</h2>
    <p>...</p>

The JSON block is the structured record. The body is HTML: the summary comes
before the first ``<h2>``, then one ``<h2>`` per record section, in the same
order and with the same titles. Anything else is a contract violation and
raises ``SynthesisError``.
"""

from __future__ import annotations

import json
import re

from pydantic import ValidationError

from peptalk.core.exceptions import SynthesisError
from peptalk.modules.llm.sanitizer import strip_code_fences, strip_html
from peptalk.modules.synthesis.schemas import SynthesisRecord

SEPARATOR = "===PAGE-BODY==="

CITATION_MARKER = re.compile(r"\[((?:PMID|NCT):[^\]\s]+)\]")
_HEADING = re.compile(r"<h2[^>]*>(.*?)</h2>", re.IGNORECASE | re.DOTALL)
_WHITESPACE = re.compile(r"\s+")


def _norm_title(title: str) -> str:
    return _WHITESPACE.sub(" ", strip_html(title)).strip().lower()


def format_reply(record: SynthesisRecord, body: str) -> str:
    """Inverse of ``parse_reply``; used for fixtures and prompt examples."""
    return f"{record.model_dump_json(indent=2)}\n{SEPARATOR}\n{body.strip()}\n"


def parse_reply(text: str) -> tuple[SynthesisRecord, str]:
    """Split a raw reply into (structured record, body markup)."""
    lines = text.splitlines()
    positions = [i for i, line in enumerate(lines) if line.strip() == SEPARATOR]
    if not positions:
        raise SynthesisError("reply has no body separator")
    if len(positions) > 1:
        raise SynthesisError(f"reply has {len(positions)} body separators, expected one")

    head = "\n".join(lines[: positions[0]])
    body = "\n".join(lines[positions[0] + 1:]).strip()

    try:
        data = json.loads(strip_code_fences(head))
    except ValueError as e:
        raise SynthesisError(f"structured record is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SynthesisError("structured record must be a JSON object")

    try:
        record = SynthesisRecord.model_validate(data)
    except ValidationError as e:
        raise SynthesisError(f"structured record has an invalid shape: {e.error_count()} errors") from e

    if not body:
        raise SynthesisError("reply body is empty")

    return record, body


def split_body(body: str) -> tuple[str, list[tuple[str, str]]]:
    """Body markup -> (summary, [(section title, section markup), ...])."""
    matches = list(_HEADING.finditer(body))
    if not matches:
        return body.strip(), []

    summary = body[: matches[0].start()].strip()
    sections: list[tuple[str, str]] = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(body)
        title = _WHITESPACE.sub(" ", strip_html(match.group(1))).strip()
        sections.append((title, body[match.end():end].strip()))
    return summary, sections


def check_sections(record: SynthesisRecord, sections: list[tuple[str, str]]) -> None:
    """Record section titles and body headings must agree one-to-one, in order."""
    expected = [_norm_title(s.title) for s in record.sections]
    found = [_norm_title(title) for title, _ in sections]
    if expected != found:
        raise SynthesisError(
            f"body sections {found} do not match structured record sections {expected}"
        )
    empty = [title for title, content in sections if not content.strip()]
    if empty:
        raise SynthesisError(f"sections without content: {empty}")


def extract_citations(markup: str) -> list[str]:
    """Citation identifiers in order of first appearance."""
    return list(dict.fromkeys(CITATION_MARKER.findall(markup)))
