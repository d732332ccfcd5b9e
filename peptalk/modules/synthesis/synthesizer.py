"""Synthesis stage: graded evidence -> PageRecord.

The full evidence collection goes to the model in one call. The reply is
parsed by ``parser.parse_reply``; a broken format, a section mismatch or a
citation to an identifier outside the collection fails the stage. Two
optional follow-up passes enrich the page without being able to fail it:
plain-language summaries for sections that lack one, and topical categories.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import structlog

from peptalk.core.config import SynthesisConfig
from peptalk.core.exceptions import SynthesisError
from peptalk.modules.evidence.schemas import (
    EvidenceCollection,
    EvidenceGrade,
    EvidenceItem,
    LiteratureDetails,
    RegistryDetails,
)
from peptalk.modules.llm.base import BaseAgent
from peptalk.modules.llm.cost_tracker import CostTracker
from peptalk.modules.llm.sanitizer import clean_html, strip_html
from peptalk.modules.synthesis.parser import (
    check_sections,
    extract_citations,
    parse_reply,
    split_body,
)
from peptalk.modules.synthesis.schemas import (
    CategoryAssignment,
    PageCounts,
    PageRecord,
    Section,
)

logger = structlog.get_logger()

CATEGORY_SLUGS = {
    "weight-loss",
    "muscle-growth",
    "skin-health",
    "healing",
    "immune",
    "cognitive",
    "longevity",
    "joint-bone",
    "gut-health",
    "hormone",
}
_CONFIDENCE_LEVELS = {"high", "medium", "low"}
_PLAIN_SUMMARY_MAX_CHARS = 600


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


class SynthesisAgent(BaseAgent):
    agent_name = "Synthesizer"

    async def write_page(self, payload: str, *, peptide: str) -> str:
        result = await self.call_llm(
            self.load_prompt("synthesis_system.txt"),
            payload,
            response_json=False,
            call_name="synthesis",
            peptide=peptide,
        )
        if not result.ok:
            raise SynthesisError(f"synthesis call failed: {result.error}")
        return result.value["content"]


class PlainLanguageAgent(BaseAgent):
    agent_name = "PlainLanguage"

    async def summarize(self, title: str, body: str, *, max_chars: int, max_tokens: int, peptide: str) -> str | None:
        text = strip_html(body)[:max_chars]
        result = await self.call_llm(
            self.load_prompt("plain_language_system.txt"),
            f"Section: {title}\n\n{text}",
            response_json=False,
            max_tokens=max_tokens,
            temperature=0.5,
            call_name="plain_language",
            peptide=peptide,
        )
        if not result.ok:
            logger.warning("plain_language_failed", peptide=peptide, section=title, error=result.error)
            return None
        summary = strip_html(result.value["content"])
        return summary[:_PLAIN_SUMMARY_MAX_CHARS] or None


class CategorizerAgent(BaseAgent):
    agent_name = "Categorizer"

    async def categorize(self, name: str, body: str, *, peptide: str) -> list[CategoryAssignment]:
        result = await self.call_llm(
            self.load_prompt("categorize_system.txt"),
            f"Peptide: {name}\n\nResearch summary:\n{strip_html(body)[:8000]}",
            response_json=True,
            max_tokens=1000,
            temperature=0.0,
            call_name="categorize",
            peptide=peptide,
        )
        if not result.ok:
            logger.warning("categorization_failed", peptide=peptide, error=result.error)
            return []

        assignments: list[CategoryAssignment] = []
        for raw in result.value["content"].get("categories", []) or []:
            if not isinstance(raw, dict):
                continue
            slug = str(raw.get("slug") or raw.get("categorySlug") or "").strip().lower()
            if slug not in CATEGORY_SLUGS:
                logger.debug("category_dropped", peptide=peptide, slug=slug)
                continue
            confidence = str(raw.get("confidence", "low")).lower()
            assignments.append(
                CategoryAssignment(
                    slug=slug,
                    confidence=confidence if confidence in _CONFIDENCE_LEVELS else "low",
                    reasoning=str(raw.get("reasoning", "")),
                )
            )
        return assignments


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


def _item_payload(item: EvidenceItem, max_abstract_chars: int) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "id": item.source_id,
        "provenance": item.provenance.value,
        "category": item.category.value,
        "title": item.title,
        "year": item.year,
        "sample_size": item.sample_size,
        "reported_outcome": item.outcome.value,
    }
    details = item.details
    if isinstance(details, LiteratureDetails):
        entry["journal"] = details.journal
        entry["abstract"] = item.summary[:max_abstract_chars]
    elif isinstance(details, RegistryDetails):
        entry["status"] = details.status
        entry["phase"] = details.phase
        entry["conditions"] = list(details.conditions)
        entry["interventions"] = list(details.interventions)
        entry["enrollment"] = details.enrollment
        entry["summary"] = item.summary[:max_abstract_chars]
    return entry


def build_payload(collection: EvidenceCollection, grade: EvidenceGrade, max_abstract_chars: int) -> str:
    """User message: identity, grade and every evidence item."""
    counts = PageCounts.from_collection(collection)
    payload = {
        "peptide": {
            "id": collection.peptide_id,
            "name": collection.name,
            "aliases": collection.aliases,
        },
        "evidence_grade": {
            "level": grade.level.value,
            "rule": grade.rule.value,
            "rationale": grade.rationale,
        },
        "counts": counts.model_dump(),
        "evidence": [_item_payload(item, max_abstract_chars) for item in collection.items],
    }
    return (
        f"Write the evidence page for {collection.name}.\n"
        f"Cite only identifiers from the evidence list below.\n\n"
        f"{json.dumps(payload, indent=2, ensure_ascii=False)}"
    )


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class Synthesizer:
    def __init__(
        self,
        config: SynthesisConfig,
        cost_tracker: CostTracker | None = None,
        *,
        agent: SynthesisAgent | None = None,
        plain_language_agent: PlainLanguageAgent | None = None,
        categorizer: CategorizerAgent | None = None,
    ) -> None:
        self.config = config
        self.agent = agent or SynthesisAgent(config.llm, cost_tracker)
        self.plain_language_agent = plain_language_agent or PlainLanguageAgent(config.llm, cost_tracker)
        self.categorizer = categorizer or CategorizerAgent(config.llm, cost_tracker)

    async def synthesize(self, collection: EvidenceCollection, grade: EvidenceGrade) -> PageRecord:
        peptide = collection.peptide_id
        payload = build_payload(collection, grade, self.config.max_abstract_chars)
        logger.info("synthesis_started", peptide=peptide, items=len(collection.items))

        reply = await self.agent.write_page(payload, peptide=peptide)
        page = self.build_page(reply, collection, grade)

        if self.config.plain_language_pass:
            page = await self._fill_plain_language(page)
        if self.config.categorize:
            categories = await self.categorizer.categorize(
                collection.name, page.body_markup(), peptide=peptide
            )
            page = page.model_copy(update={"categories": categories})

        logger.info(
            "synthesis_complete",
            peptide=peptide,
            sections=len(page.sections),
            references=len(page.references),
        )
        return page

    def build_page(self, reply: str, collection: EvidenceCollection, grade: EvidenceGrade) -> PageRecord:
        """Parse and validate a raw reply against the collection it was written from."""
        record, body = parse_reply(reply)
        summary, body_sections = split_body(body)
        check_sections(record, body_sections)

        known = collection.by_id()
        cited = extract_citations(body)
        referenced = list(dict.fromkeys([*record.references, *cited]))
        unknown = [ref for ref in referenced if ref not in known]
        if unknown:
            raise SynthesisError(f"citation to unknown identifier(s): {', '.join(unknown)}")

        sections = [
            Section(
                title=title,
                body=clean_html(content),
                plain_language_summary=(outline.plain_language_summary or "").strip() or None,
                order=i,
            )
            for i, ((title, content), outline) in enumerate(zip(body_sections, record.sections))
        ]

        return PageRecord(
            peptide_id=collection.peptide_id,
            name=collection.name,
            aliases=collection.aliases,
            grade=grade,
            summary=clean_html(summary),
            sections=sections,
            references=[known[ref] for ref in referenced],
            counts=PageCounts.from_collection(collection),
            disclaimers=list(self.config.disclaimers),
            key_points=record.key_points,
            limitations=record.limitations,
        )

    async def _fill_plain_language(self, page: PageRecord) -> PageRecord:
        sections: list[Section] = []
        for section in page.sections:
            if section.plain_language_summary:
                sections.append(section)
                continue
            summary = await self.plain_language_agent.summarize(
                section.title,
                section.body,
                max_chars=self.config.plain_language_max_chars,
                max_tokens=self.config.plain_language_max_tokens,
                peptide=page.peptide_id,
            )
            sections.append(section.model_copy(update={"plain_language_summary": summary}))
        return page.model_copy(update={"sections": sections})

    def minimal_page(self, collection: EvidenceCollection, grade: EvidenceGrade) -> PageRecord:
        """Deterministic page for a peptide with no usable evidence. No LLM call."""
        searched = collection.metadata.retrieved_at.astimezone(timezone.utc).strftime("%Y-%m-%d")
        summary = (
            f"<p>No published studies or registered clinical trials about {collection.name} "
            f"were found in the sources searched. The evidence grade is "
            f"{grade.level.value}.</p>"
        )
        body = (
            f"<p>PubMed and ClinicalTrials.gov were searched on {searched} for "
            f"{', '.join([collection.name, *collection.aliases])}. "
            f"No records met the inclusion criteria.</p>"
        )
        return PageRecord(
            peptide_id=collection.peptide_id,
            name=collection.name,
            aliases=collection.aliases,
            grade=grade,
            summary=summary,
            sections=[
                Section(
                    title="Evidence Status",
                    body=body,
                    plain_language_summary="Researchers have not yet published studies on this peptide that we could find.",
                    order=0,
                )
            ],
            references=[],
            counts=PageCounts.from_collection(collection),
            disclaimers=list(self.config.disclaimers),
            generated_at=datetime.now(timezone.utc),
        )
