"""Write-surface payloads shared by the SQL store, the internal API and its client."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from peptalk.modules.synthesis.schemas import PageRecord


class PeptideRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    evidence_grade: str
    grade_rule: str
    grade_rationale: str = ""
    version: int
    summary_html: str = ""
    counts: dict[str, int] = Field(default_factory=dict)
    disclaimers: list[str] = Field(default_factory=list)
    categories: list[dict[str, Any]] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)
    document_key: str | None = None
    document_url: str | None = None
    run_id: str | None = None
    generated_at: datetime | None = None


class EvidenceRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    position: int
    provenance: str
    source_id: str
    title: str
    summary: str = ""
    year: int | None = None
    category: str
    sample_size: int | None = None
    outcome: str = "unknown"
    url: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class SectionRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version: int
    position: int
    title: str
    body_html: str
    plain_language_summary: str | None = None


class AuditEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_id: str
    peptide_id: str
    version: int | None = None
    action: str  # publish | rollback
    run_id: str
    details: dict[str, Any] = Field(default_factory=dict)


class PageSnapshot(BaseModel):
    """Everything the publisher may overwrite for one peptide, as it was before the run."""

    peptide: PeptideRow | None = None
    evidence: list[EvidenceRow] = Field(default_factory=list)
    sections: list[SectionRow] = Field(default_factory=list)

    @property
    def exists(self) -> bool:
        return self.peptide is not None

    @property
    def version(self) -> int:
        return self.peptide.version if self.peptide else 0


class PublishedPage(BaseModel):
    """Version-consistent read of a published page."""

    peptide: PeptideRow
    sections: list[SectionRow]
    evidence: list[EvidenceRow]


class PublishResult(BaseModel):
    peptide_id: str
    version: int | None = None  # unassigned on a dry run
    dry_run: bool = False
    document_key: str
    document_url: str | None = None
    document_bytes: int = 0
    page_count: int | None = None
    audit_entry_id: str | None = None


# ---------------------------------------------------------------------------
# PageRecord -> rows
# ---------------------------------------------------------------------------


def peptide_row(page: PageRecord, *, run_id: str, document_key: str, document_url: str | None) -> PeptideRow:
    return PeptideRow(
        id=page.peptide_id,
        name=page.name,
        aliases=page.aliases,
        evidence_grade=page.grade.level.value,
        grade_rule=page.grade.rule.value,
        grade_rationale=page.grade.rationale,
        version=page.version,
        summary_html=page.summary,
        counts=page.counts.model_dump(),
        disclaimers=page.disclaimers,
        categories=[c.model_dump() for c in page.categories],
        key_points=page.key_points,
        limitations=page.limitations,
        document_key=document_key,
        document_url=document_url,
        run_id=run_id,
        generated_at=page.generated_at,
    )


def evidence_rows(page: PageRecord) -> list[EvidenceRow]:
    return [
        EvidenceRow(
            position=i,
            provenance=item.provenance.value,
            source_id=item.source_id,
            title=item.title,
            summary=item.summary,
            year=item.year,
            category=item.category.value,
            sample_size=item.sample_size,
            outcome=item.outcome.value,
            url=item.url,
            details=item.details.model_dump(mode="json"),
        )
        for i, item in enumerate(page.references)
    ]


def section_rows(page: PageRecord) -> list[SectionRow]:
    return [
        SectionRow(
            version=page.version,
            position=section.order,
            title=section.title,
            body_html=section.body,
            plain_language_summary=section.plain_language_summary,
        )
        for section in page.sections
    ]
