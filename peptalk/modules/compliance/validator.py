"""Compliance gate between synthesis and publishing.

Passes, in order:
  1. forbidden-phrase scan over every visible text field (regex, any hit blocks)
  2. citation completeness: each referenced identifier must appear as a full
     ``[PMID:...]`` / ``[NCT:...]`` marker in the summary or a section body,
     and every marker in the body must be a referenced identifier
  3. effect claims with no marker nearby (warning only)
  4. optional language-model review

A corrected body proposed by the review replaces the page text only after
passes 1 to 3 run again on the corrected page without a blocker.
"""

from __future__ import annotations

import re

import structlog

from peptalk.core.config import ComplianceConfig
from peptalk.core.exceptions import ConfigurationError
from peptalk.modules.compliance.reviewer import ComplianceReviewAgent
from peptalk.modules.compliance.schemas import (
    ComplianceIssue,
    ComplianceVerdict,
    IssueSource,
    Severity,
)
from peptalk.modules.llm.cost_tracker import CostTracker
from peptalk.modules.llm.sanitizer import clean_html, strip_html
from peptalk.modules.synthesis.parser import CITATION_MARKER, extract_citations, split_body
from peptalk.modules.synthesis.schemas import PageRecord

logger = structlog.get_logger()

_EFFECT_CLAIM = re.compile(r"\b(?:increase|decrease|improve|reduce|enhance)\w*\s+\w+", re.IGNORECASE)


def apply_correction(page: PageRecord, corrected_body: str) -> PageRecord:
    """Swap in corrected text. Section titles and order must stay as they were."""
    summary, sections = split_body(corrected_body)
    old_titles = [s.title.strip().lower() for s in page.sections]
    new_titles = [title.strip().lower() for title, _ in sections]
    if old_titles != new_titles:
        raise ValueError(f"corrected body changes the section structure: {new_titles} != {old_titles}")

    new_sections = [
        section.model_copy(update={"body": clean_html(content)})
        for section, (_, content) in zip(page.sections, sections)
    ]
    return page.model_copy(
        update={"summary": clean_html(summary) or page.summary, "sections": new_sections}
    )


def _visible_text(page: PageRecord) -> list[tuple[str, str]]:
    """(location, plain text) for every field a reader sees."""
    fields = [("summary", strip_html(page.summary))]
    for section in page.sections:
        fields.append((section.title, strip_html(section.body)))
        if section.plain_language_summary:
            fields.append((f"{section.title} (plain language)", section.plain_language_summary))
    fields.extend(("key points", point) for point in page.key_points)
    fields.extend(("limitations", text) for text in page.limitations)
    return fields


class ComplianceValidator:
    def __init__(
        self,
        config: ComplianceConfig,
        cost_tracker: CostTracker | None = None,
        *,
        reviewer: ComplianceReviewAgent | None = None,
    ) -> None:
        self.config = config
        self.reviewer = reviewer or ComplianceReviewAgent(config.llm, cost_tracker)
        self._patterns: list[tuple[str, str, re.Pattern[str]]] = []
        for entry in config.forbidden_patterns:
            try:
                compiled = re.compile(entry.pattern, re.IGNORECASE)
            except re.error as e:
                raise ConfigurationError(f"invalid forbidden pattern {entry.code!r}: {e}") from e
            self._patterns.append((entry.code, entry.category, compiled))

    # ------------------------------------------------------------------
    # Deterministic passes
    # ------------------------------------------------------------------

    def scan_forbidden(self, page: PageRecord) -> list[ComplianceIssue]:
        issues: list[ComplianceIssue] = []
        for location, text in _visible_text(page):
            for code, category, pattern in self._patterns:
                match = pattern.search(text)
                if match:
                    issues.append(
                        ComplianceIssue(
                            source=IssueSource.pattern,
                            code=code,
                            description=f"forbidden {category} language: {match.group(0)!r}",
                            location=location,
                        )
                    )
        return issues

    def check_citations(self, page: PageRecord) -> list[ComplianceIssue]:
        cited = extract_citations(page.body_markup())
        cited_set = set(cited)
        issues = [
            ComplianceIssue(
                source=IssueSource.citation,
                code="citation-not-found",
                description=f"citation not found: {ref}",
            )
            for ref in page.reference_ids
            if ref not in cited_set
        ]
        referenced = set(page.reference_ids)
        issues.extend(
            ComplianceIssue(
                source=IssueSource.citation,
                code="citation-unknown",
                description=f"body cites {marker}, which is not a referenced study",
            )
            for marker in cited
            if marker not in referenced
        )
        return issues

    def check_claims(self, page: PageRecord) -> list[ComplianceIssue]:
        """Warn once when an effect claim has no citation marker nearby."""
        text = strip_html(page.body_markup())
        window = self.config.claim_citation_window
        for match in _EFFECT_CLAIM.finditer(text):
            context = text[max(0, match.start() - window) : match.end() + window]
            if not CITATION_MARKER.search(context):
                return [
                    ComplianceIssue(
                        source=IssueSource.claim,
                        code="uncited-claim",
                        severity=Severity.warning,
                        description=f"effect claim may be missing a citation: {match.group(0)!r}",
                    )
                ]
        return []

    def deterministic_issues(self, page: PageRecord) -> list[ComplianceIssue]:
        return self.scan_forbidden(page) + self.check_citations(page) + self.check_claims(page)

    # ------------------------------------------------------------------
    # Full gate
    # ------------------------------------------------------------------

    async def validate(self, page: PageRecord, *, run_review: bool = True) -> ComplianceVerdict:
        issues = self.deterministic_issues(page)
        review_enabled = run_review and self.config.review_enabled

        if not review_enabled:
            verdict = ComplianceVerdict(passed=not any(i.blocking for i in issues), issues=issues)
            self._log(page, verdict)
            return verdict

        review = await self.reviewer.review(page)
        review_issues = list(review.issues)
        if not review.passed and not any(i.blocking for i in review_issues):
            review_issues.append(
                ComplianceIssue(
                    source=IssueSource.review,
                    code="review-failed",
                    description="compliance review did not pass the page",
                )
            )

        corrected_body: str | None = None
        if review.corrected_body and self.config.accept_corrections:
            try:
                candidate = apply_correction(page, review.corrected_body)
            except ValueError as e:
                review_issues.append(
                    ComplianceIssue(
                        source=IssueSource.review,
                        code="correction-rejected",
                        severity=Severity.warning,
                        description=str(e),
                    )
                )
            else:
                recheck = self.deterministic_issues(candidate)
                if any(i.blocking for i in recheck):
                    review_issues.append(
                        ComplianceIssue(
                            source=IssueSource.review,
                            code="correction-rejected",
                            severity=Severity.warning,
                            description="corrected body failed the deterministic checks",
                        )
                    )
                    issues.extend(i for i in recheck if i not in issues)
                else:
                    # the corrected text is what gets published
                    corrected_body = review.corrected_body
                    issues = recheck
                    review_issues = [
                        i.model_copy(update={"resolved": True}) if i.blocking else i
                        for i in review_issues
                    ]

        all_issues = issues + review_issues
        verdict = ComplianceVerdict(
            passed=not any(i.blocking for i in all_issues),
            issues=all_issues,
            review_performed=True,
            review_score=review.score,
            corrected_body=corrected_body,
        )
        self._log(page, verdict)
        return verdict

    @staticmethod
    def _log(page: PageRecord, verdict: ComplianceVerdict) -> None:
        logger.info(
            "compliance_checked",
            peptide=page.peptide_id,
            passed=verdict.passed,
            blockers=len(verdict.blockers),
            issues=len(verdict.issues),
            reviewed=verdict.review_performed,
            corrected=verdict.corrected_body is not None,
        )
