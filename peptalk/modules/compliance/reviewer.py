"""Secondary compliance review by a second language model.

The reviewer sees the rendered page text plus the citation list and returns
issues, a pass/fail flag and optionally a corrected body. A reviewer that
cannot be reached or answers in the wrong shape is reported as a blocking
issue; the caller never publishes unreviewed content when review is on.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from peptalk.modules.compliance.schemas import (
    ComplianceIssue,
    IssueSource,
    ReviewResult,
    Severity,
)
from peptalk.modules.llm.base import BaseAgent
from peptalk.modules.synthesis.schemas import PageRecord

logger = structlog.get_logger()

ISSUE_TYPES = {"medical_advice", "dosing", "vendor", "claims", "other"}
_SEVERITIES = {s.value for s in Severity}


def build_review_payload(page: PageRecord) -> str:
    sections = "\n\n".join(
        f"<h2>{s.title}</h2>\n{s.body}"
        + (f"\n[plain-language summary] {s.plain_language_summary}" if s.plain_language_summary else "")
        for s in page.sections
    )
    citations = [
        {"id": item.source_id, "title": item.title, "category": item.category.value}
        for item in page.references
    ]
    return (
        f"Peptide: {page.name}\n"
        f"Evidence grade: {page.grade.level.value}\n\n"
        f"BODY:\n{page.summary}\n\n{sections}\n\n"
        f"CITED STUDIES:\n{json.dumps(citations, indent=2, ensure_ascii=False)}"
    )


def _parse_issue(raw: Any) -> ComplianceIssue | None:
    if not isinstance(raw, dict):
        return None
    issue_type = str(raw.get("type", "other")).lower()
    severity = str(raw.get("severity", "warning")).lower()
    return ComplianceIssue(
        source=IssueSource.review,
        code=issue_type if issue_type in ISSUE_TYPES else "other",
        severity=Severity(severity) if severity in _SEVERITIES else Severity.warning,
        description=str(raw.get("description", "")) or f"{issue_type} issue",
        location=raw.get("location"),
    )


class ComplianceReviewAgent(BaseAgent):
    agent_name = "ComplianceReviewer"

    async def review(self, page: PageRecord) -> ReviewResult:
        result = await self.call_llm(
            self.load_prompt("compliance_review_system.txt"),
            build_review_payload(page),
            response_json=True,
            call_name="compliance_review",
            peptide=page.peptide_id,
        )
        if not result.ok:
            return ReviewResult(
                passed=False,
                issues=[
                    ComplianceIssue(
                        source=IssueSource.review,
                        code="review-unavailable",
                        description=f"compliance review failed: {result.error}",
                    )
                ],
            )

        data = result.value["content"]
        if not isinstance(data.get("passed"), bool):
            return ReviewResult(
                passed=False,
                issues=[
                    ComplianceIssue(
                        source=IssueSource.review,
                        code="review-invalid",
                        description="compliance review returned no pass/fail flag",
                    )
                ],
            )

        issues = [issue for raw in data.get("issues") or [] if (issue := _parse_issue(raw))]
        corrected = data.get("corrected_body")
        score = data.get("score")

        logger.info(
            "compliance_review_complete",
            peptide=page.peptide_id,
            passed=data["passed"],
            issues=len(issues),
            corrected=bool(corrected),
        )
        return ReviewResult(
            passed=data["passed"],
            score=float(score) if isinstance(score, (int, float)) else None,
            issues=issues,
            corrected_body=corrected if isinstance(corrected, str) and corrected.strip() else None,
        )
