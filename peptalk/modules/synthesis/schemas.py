from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator, model_validator

from peptalk.modules.evidence.schemas import (
    EvidenceCollection,
    EvidenceGrade,
    EvidenceItem,
    StudyCategory,
)

# ---------------------------------------------------------------------------
# Structured part of the synthesis reply
# ---------------------------------------------------------------------------


class SectionOutline(BaseModel):
    title: str = Field(min_length=1)
    plain_language_summary: str | None = None


class SynthesisRecord(BaseModel):
    """JSON block the model writes before the body separator."""

    sections: list[SectionOutline] = Field(min_length=1)
    references: list[str] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)


class CategoryAssignment(BaseModel):
    slug: str
    confidence: str = "low"  # high | medium | low
    reasoning: str = ""


# ---------------------------------------------------------------------------
# Page record
# ---------------------------------------------------------------------------


class Section(BaseModel):
    title: str
    body: str  # HTML with inline [PMID:x] / [NCT:x] markers
    plain_language_summary: str | None = None
    order: int = Field(ge=0)


class PageCounts(BaseModel):
    total: int = 0
    controlled_human_trial: int = 0
    observational_human: int = 0
    animal_model: int = 0
    in_vitro: int = 0
    unknown: int = 0

    @property
    def human(self) -> int:
        return self.controlled_human_trial + self.observational_human

    @classmethod
    def from_collection(cls, collection: EvidenceCollection) -> PageCounts:
        return cls(
            total=len(collection.items),
            controlled_human_trial=collection.count(StudyCategory.controlled_human_trial),
            observational_human=collection.count(StudyCategory.observational_human),
            animal_model=collection.count(StudyCategory.animal_model),
            in_vitro=collection.count(StudyCategory.in_vitro),
            unknown=collection.count(StudyCategory.unknown),
        )


class PageRecord(BaseModel):
    """Synthesized page for one peptide version."""

    peptide_id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    grade: EvidenceGrade
    summary: str
    sections: list[Section]
    references: list[EvidenceItem] = Field(default_factory=list)
    counts: PageCounts = Field(default_factory=PageCounts)
    version: int = 0  # assigned by the publisher
    disclaimers: list[str] = Field(default_factory=list)
    categories: list[CategoryAssignment] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)
    limitations: list[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("sections")
    @classmethod
    def _contiguous_order(cls, sections: list[Section]) -> list[Section]:
        orders = [s.order for s in sections]
        if orders != list(range(len(sections))):
            raise ValueError(f"section order must be contiguous from 0, got {orders}")
        return sections

    @model_validator(mode="after")
    def _unique_references(self) -> PageRecord:
        ids = [item.source_id for item in self.references]
        if len(ids) != len(set(ids)):
            raise ValueError("references must not repeat an identifier")
        return self

    @property
    def reference_ids(self) -> list[str]:
        return [item.source_id for item in self.references]

    def body_markup(self) -> str:
        """Summary plus every section body, as one string."""
        return "\n".join([self.summary, *(s.body for s in self.sections)])
