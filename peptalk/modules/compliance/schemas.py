from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class IssueSource(str, Enum):
    pattern = "pattern"
    citation = "citation"
    claim = "claim"
    review = "review"


class Severity(str, Enum):
    critical = "critical"
    warning = "warning"
    info = "info"


class ComplianceIssue(BaseModel):
    source: IssueSource
    code: str  # forbidden-pattern code, "citation-not-found", or review issue type
    severity: Severity = Severity.critical
    description: str
    location: str | None = None
    resolved: bool = False  # fixed by an accepted correction

    @property
    def blocking(self) -> bool:
        return self.severity is Severity.critical and not self.resolved


class ReviewResult(BaseModel):
    """Structured verdict from the secondary language-model review."""

    passed: bool
    score: float | None = None
    issues: list[ComplianceIssue] = Field(default_factory=list)
    corrected_body: str | None = None


class ComplianceVerdict(BaseModel):
    passed: bool
    issues: list[ComplianceIssue] = Field(default_factory=list)
    review_performed: bool = False
    review_score: float | None = None
    corrected_body: str | None = None  # set only when accepted and re-checked

    @property
    def blockers(self) -> list[ComplianceIssue]:
        return [issue for issue in self.issues if issue.blocking]

    def reason(self) -> str:
        blockers = self.blockers
        if not blockers:
            return "passed"
        return "; ".join(issue.description for issue in blockers[:5])
