"""Evidence data model.

An ``EvidenceItem`` is one retrieved record, either a literature article or a
trial-registry entry. Provider-specific data lives in ``details``, a closed
tagged union discriminated by ``kind``; the item's ``provenance`` always
matches it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Provenance(str, Enum):
    literature = "literature"
    trial_registry = "trial-registry"


class StudyCategory(str, Enum):
    controlled_human_trial = "controlled-human-trial"
    observational_human = "observational-human"
    animal_model = "animal-model"
    in_vitro = "in-vitro"
    unknown = "unknown"


class OutcomeDirection(str, Enum):
    benefit = "benefit"
    no_benefit = "no-benefit"
    harm = "harm"
    unknown = "unknown"


class GradeLevel(str, Enum):
    very_low = "very-low"
    low = "low"
    moderate = "moderate"
    high = "high"

    @property
    def rank(self) -> int:
        return _GRADE_ORDER.index(self)


_GRADE_ORDER = [GradeLevel.very_low, GradeLevel.low, GradeLevel.moderate, GradeLevel.high]

HUMAN_CATEGORIES = {StudyCategory.controlled_human_trial, StudyCategory.observational_human}
PRECLINICAL_CATEGORIES = {StudyCategory.animal_model, StudyCategory.in_vitro}


# ---------------------------------------------------------------------------
# Provider-specific details (tagged variants)
# ---------------------------------------------------------------------------


class LiteratureDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["literature"] = "literature"
    pmid: str
    authors: tuple[str, ...] = ()
    journal: str | None = None
    doi: str | None = None
    publication_types: tuple[str, ...] = ()
    mesh_terms: tuple[str, ...] = ()


class RegistryDetails(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["trial-registry"] = "trial-registry"
    nct_id: str
    status: str | None = None
    phase: str | None = None
    study_type: str | None = None
    allocation: str | None = None
    conditions: tuple[str, ...] = ()
    interventions: tuple[str, ...] = ()
    enrollment: int | None = None
    start_date: str | None = None
    completion_date: str | None = None


EvidenceDetails = Annotated[
    Union[LiteratureDetails, RegistryDetails],
    Field(discriminator="kind"),
]


class EvidenceItem(BaseModel):
    """One retrieved record. Identity is (provenance, source_id)."""

    model_config = ConfigDict(frozen=True)

    provenance: Provenance
    source_id: str  # provider-qualified, e.g. "PMID:12345678" or "NCT:NCT01234567"
    title: str
    summary: str = ""
    year: int | None = None
    category: StudyCategory = StudyCategory.unknown
    sample_size: int | None = None
    outcome: OutcomeDirection = OutcomeDirection.unknown
    first_author: str | None = None  # lowercased surname token
    url: str | None = None
    details: EvidenceDetails

    @model_validator(mode="after")
    def _provenance_matches_details(self) -> EvidenceItem:
        if self.details.kind != self.provenance.value:
            raise ValueError(
                f"provenance {self.provenance.value!r} does not match details kind {self.details.kind!r}"
            )
        return self

    @property
    def key(self) -> tuple[str, str]:
        return (self.provenance.value, self.source_id)


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------


class SourceSummary(BaseModel):
    """What one source client returned for a run."""

    status: str = "success"  # success | partial | failure
    fetched: int = 0
    skipped: int = 0
    notes: list[str] = Field(default_factory=list)


class RetrievalMetadata(BaseModel):
    retrieved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    query: str = ""
    sources: dict[str, SourceSummary] = Field(default_factory=dict)
    duplicates_discarded: int = 0
    categories_inferred: int = 0

    @property
    def notes(self) -> list[str]:
        return [note for summary in self.sources.values() for note in summary.notes]

    @property
    def skipped_records(self) -> int:
        return sum(summary.skipped for summary in self.sources.values())


class EvidenceCollection(BaseModel):
    """Working set for one peptide run."""

    peptide_id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    items: list[EvidenceItem] = Field(default_factory=list)
    metadata: RetrievalMetadata = Field(default_factory=RetrievalMetadata)
    normalized: bool = False

    def by_id(self) -> dict[str, EvidenceItem]:
        return {item.source_id: item for item in self.items}

    def count(self, category: StudyCategory) -> int:
        return sum(1 for item in self.items if item.category is category)


# ---------------------------------------------------------------------------
# Grade
# ---------------------------------------------------------------------------


class GradeRule(str, Enum):
    no_evidence = "no-evidence"
    preclinical_only = "preclinical-only"
    limited_human_evidence = "limited-human-evidence"
    preclinical_body = "preclinical-body"
    controlled_trial_sample = "controlled-trial-sample"
    replicated_controlled_trials = "replicated-controlled-trials"
    cap_conflicting_outcomes = "cap-conflicting-outcomes"
    cap_missing_sample_sizes = "cap-missing-sample-sizes"


class EvidenceGrade(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: GradeLevel
    rule: GradeRule  # the rule that decided the final level
    rationale: str
    caps: tuple[GradeRule, ...] = ()
    upgrade_hints: tuple[str, ...] = ()  # what would lift the level one step
