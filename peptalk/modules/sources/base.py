from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx

from peptalk.core.retry import CallStatus
from peptalk.modules.evidence.schemas import EvidenceItem, SourceSummary


@dataclass
class SourceResult:
    """Outcome of one source fetch. ``partial`` means some requests failed after retries."""

    source: str
    items: list[EvidenceItem] = field(default_factory=list)
    status: CallStatus = CallStatus.success
    skipped: int = 0
    notes: list[str] = field(default_factory=list)

    def add_failure(self, note: str) -> None:
        self.notes.append(note)
        self.status = CallStatus.partial if self.items else CallStatus.failure

    def summary(self) -> SourceSummary:
        return SourceSummary(
            status=self.status.value,
            fetched=len(self.items),
            skipped=self.skipped,
            notes=list(self.notes),
        )


def build_query(name: str, aliases: list[str], *, quote: bool) -> str:
    """Disjunction of the canonical name and its aliases, de-duplicated case-insensitively."""
    terms: list[str] = []
    seen: set[str] = set()
    for term in [name, *aliases]:
        term = term.strip()
        if not term or term.lower() in seen:
            continue
        seen.add(term.lower())
        terms.append(f'"{term}"' if quote else term)
    return " OR ".join(terms)


class BaseSourceClient(ABC):
    """Abstract base class for evidence source clients.

    Implementations fail soft: every request goes through the retry policy and
    a failed request becomes a note on the result, never an exception.
    """

    source_name: str = "base"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    @abstractmethod
    async def fetch(self, name: str, aliases: list[str]) -> SourceResult:
        """Fetch evidence for a peptide name and its aliases."""
        ...
