from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator

PRIORITIES = ("high", "medium", "low", "completed")


class PeptideRequest(BaseModel):
    peptide_id: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1)
    aliases: list[str] = Field(default_factory=list)

    @field_validator("peptide_id", "name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("aliases")
    @classmethod
    def _clean_aliases(cls, v: list[str]) -> list[str]:
        return [a.strip() for a in v if a and a.strip()]


class RunOptions(BaseModel):
    dry_run: bool = False
    skip_compliance: bool = False
    force: bool = False


class StageReport(BaseModel):
    stage: str
    success: bool
    duration_ms: int
    details: dict[str, Any] = Field(default_factory=dict)


class RunReport(BaseModel):
    """Structured outcome of one peptide run."""

    peptide_id: str
    name: str
    run_id: str
    success: bool = False
    skipped: bool = False
    dry_run: bool = False
    failed_stage: str | None = None
    reason: str | None = None
    stages: list[StageReport] = Field(default_factory=list)
    source_counts: dict[str, int] = Field(default_factory=dict)
    evidence_count: int = 0
    duplicates_discarded: int = 0
    grade: str | None = None
    grade_rule: str | None = None
    version: int | None = None
    document_url: str | None = None
    cost_usd: float = 0.0
    total_tokens: int = 0
    warnings: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int = 0

    def fail(self, stage: str, reason: str) -> RunReport:
        self.success = False
        self.failed_stage = stage
        self.reason = reason
        return self


class BatchEntry(BaseModel):
    peptide_id: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    priority: str = "high"
    notes: str = ""

    @field_validator("peptide_id", "name")
    @classmethod
    def _required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v: Any) -> str:
        value = str(v or "").strip().lower() or "high"
        if value not in PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
        return value

    def to_request(self) -> PeptideRequest:
        return PeptideRequest(peptide_id=self.peptide_id, name=self.name, aliases=self.aliases)


class BatchReport(BaseModel):
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    interrupted: bool = False
    selected: int = 0
    results: list[RunReport] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success and not r.skipped)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def cost_usd(self) -> float:
        return round(sum(r.cost_usd for r in self.results), 4)

    @property
    def ok(self) -> bool:
        return not self.interrupted and self.failed == 0

    def totals(self) -> dict[str, Any]:
        return {
            "selected": self.selected,
            "processed": len(self.results),
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "cost_usd": self.cost_usd,
        }


class ProcessRequest(PeptideRequest, RunOptions):
    """Body of the single-peptide HTTP trigger."""


class BatchRequest(BaseModel):
    """Body of the batch HTTP trigger. Entries inline, or a list file readable by the server."""

    entries: list[BatchEntry] = Field(default_factory=list)
    list_path: str | None = None
    all_priorities: bool = False
    include_completed: bool = False
    dry_run: bool = False
    skip_compliance: bool = False
    force: bool = False
