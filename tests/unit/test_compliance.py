"""Unit tests for the compliance gate."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from peptalk.core.config import ComplianceConfig, ForbiddenPattern, LLMConfig
from peptalk.core.exceptions import ConfigurationError
from peptalk.core.retry import CallResult, CallStatus
from peptalk.modules.compliance.reviewer import ComplianceReviewAgent
from peptalk.modules.compliance.schemas import (
    ComplianceIssue,
    IssueSource,
    ReviewResult,
    Severity,
)
from peptalk.modules.compliance.validator import ComplianceValidator, apply_correction
from tests.helpers import sample_page


def _validator(review: ReviewResult | None = None, **config) -> tuple[ComplianceValidator, MagicMock]:
    reviewer = MagicMock(spec=ComplianceReviewAgent)
    reviewer.review = AsyncMock(return_value=review or ReviewResult(passed=True, score=9.0))
    return ComplianceValidator(ComplianceConfig(**config), reviewer=reviewer), reviewer


async def test_clean_page_passes() -> None:
    validator, reviewer = _validator()
    verdict = await validator.validate(sample_page())

    assert verdict.passed
    assert verdict.review_performed
    assert verdict.review_score == 9.0
    reviewer.review.assert_awaited_once()


async def test_missing_citation_marker_blocks() -> None:
    page = sample_page()
    animal = page.sections[1].model_copy(update={"body": "<p>Rat studies describe faster repair.</p>"})
    page = page.model_copy(update={"sections": [page.sections[0], animal]})
    validator, _ = _validator()

    verdict = await validator.validate(page)

    assert not verdict.passed
    assert any(i.description == "citation not found: PMID:1002" for i in verdict.blockers)
    assert "citation not found" in verdict.reason()


async def test_reference_id_prefix_does_not_count_as_cited() -> None:
    page = sample_page()
    longer = page.references[0].model_copy(update={"source_id": "PMID:10011"})
    human = page.sections[0].model_copy(
        update={"body": "<p>One randomized trial reported improved tendon healing [PMID:10011].</p>"}
    )
    page = page.model_copy(
        update={
            "summary": "<p>BPC-157 has limited human data [PMID:10011].</p>",
            "sections": [human, page.sections[1]],
            "references": [page.references[0], longer, page.references[1]],
        }
    )
    validator, _ = _validator()

    verdict = await validator.validate(page, run_review=False)

    assert not verdict.passed
    assert [i.description for i in verdict.blockers] == ["citation not found: PMID:1001"]


async def test_uncited_effect_claim_is_a_warning() -> None:
    page = sample_page()
    animal = page.sections[1].model_copy(
        update={
            "body": page.sections[1].body
            + "<p>Across many unrelated reports and informal accounts, users describe how it may "
            "reduce inflammation in joints.</p>"
        }
    )
    page = page.model_copy(update={"sections": [page.sections[0], animal]})
    validator, _ = _validator()

    verdict = await validator.validate(page, run_review=False)

    assert verdict.passed
    [claim] = [i for i in verdict.issues if i.source is IssueSource.claim]
    assert claim.severity is Severity.warning
    assert not claim.blocking
    assert "reduce inflammation" in claim.description


async def test_cited_effect_claim_is_not_flagged() -> None:
    validator, _ = _validator()
    # "improved tendon healing" sits right next to [PMID:1001]
    assert validator.check_claims(sample_page()) == []


@pytest.mark.parametrize(
    ("sentence", "code"),
    [
        ("You should take it before training.", "prescriptive-language"),
        ("Users inject 250 mcg per session.", "administration-instruction"),
        ("A dose: 500 was used.", "dose-statement"),
        ("Typical use is 500 mcg daily.", "dosing-schedule"),
        ("You can buy it online.", "procurement-language"),
        ("Several vendors sell it.", "vendor-reference"),
    ],
)
async def test_forbidden_language_blocks(sentence: str, code: str) -> None:
    page = sample_page()
    first = page.sections[0].model_copy(update={"body": page.sections[0].body + f"<p>{sentence}</p>"})
    page = page.model_copy(update={"sections": [first, page.sections[1]]})
    validator, _ = _validator()

    verdict = await validator.validate(page, run_review=False)

    assert not verdict.passed
    assert code in {i.code for i in verdict.blockers}


async def test_skipping_review_still_runs_deterministic_checks() -> None:
    validator, reviewer = _validator()
    verdict = await validator.validate(sample_page(), run_review=False)

    assert verdict.passed
    assert not verdict.review_performed
    reviewer.review.assert_not_awaited()


async def test_review_blocker_fails_the_page() -> None:
    review = ReviewResult(
        passed=False,
        issues=[
            ComplianceIssue(
                source=IssueSource.review,
                code="claims",
                severity=Severity.critical,
                description="overstates animal findings",
            )
        ],
    )
    validator, _ = _validator(review)
    verdict = await validator.validate(sample_page())

    assert not verdict.passed
    assert verdict.reason() == "overstates animal findings"


async def test_accepted_correction_is_rechecked_and_resolves_blockers() -> None:
    corrected = (
        "<p>Human data on BPC-157 are limited [PMID:1001].</p>"
        "<h2>Human Research</h2><p>One trial reported faster tendon healing [PMID:1001].</p>"
        "<h2>Animal Research</h2><p>Rodent work suggests faster repair [PMID:1002].</p>"
    )
    review = ReviewResult(
        passed=False,
        issues=[
            ComplianceIssue(source=IssueSource.review, code="claims", description="too strong")
        ],
        corrected_body=corrected,
    )
    validator, _ = _validator(review)
    verdict = await validator.validate(sample_page())

    assert verdict.passed
    assert verdict.corrected_body == corrected
    assert all(i.resolved for i in verdict.issues if i.source is IssueSource.review and i.severity is Severity.critical)


async def test_correction_that_drops_a_citation_is_rejected() -> None:
    corrected = (
        "<p>Human data are limited [PMID:1001].</p>"
        "<h2>Human Research</h2><p>One trial [PMID:1001].</p>"
        "<h2>Animal Research</h2><p>Rodent work suggests faster repair.</p>"
    )
    review = ReviewResult(
        passed=False,
        issues=[ComplianceIssue(source=IssueSource.review, code="claims", description="too strong")],
        corrected_body=corrected,
    )
    validator, _ = _validator(review)
    verdict = await validator.validate(sample_page())

    assert not verdict.passed
    assert verdict.corrected_body is None
    assert "correction-rejected" in {i.code for i in verdict.issues}


def test_apply_correction_keeps_section_structure() -> None:
    page = sample_page()
    with pytest.raises(ValueError, match="section structure"):
        apply_correction(page, "<p>x</p><h2>Only One</h2><p>y</p>")


def test_invalid_pattern_is_a_configuration_error() -> None:
    config = ComplianceConfig(
        forbidden_patterns=[ForbiddenPattern(code="broken", category="other", pattern="(unclosed")]
    )
    with pytest.raises(ConfigurationError, match="broken"):
        ComplianceValidator(config, reviewer=MagicMock(spec=ComplianceReviewAgent))


async def test_unreachable_reviewer_blocks() -> None:
    agent = ComplianceReviewAgent(LLMConfig(provider="openai", api_key="test"))
    agent.call_llm = AsyncMock(return_value=CallResult(status=CallStatus.failure, error="HTTP 503"))

    result = await agent.review(sample_page())

    assert not result.passed
    assert result.issues[0].code == "review-unavailable"
    assert result.issues[0].blocking


async def test_reviewer_parses_structured_verdict() -> None:
    agent = ComplianceReviewAgent(LLMConfig(provider="openai", api_key="test"))
    agent.call_llm = AsyncMock(
        return_value=CallResult(
            status=CallStatus.success,
            value={
                "content": {
                    "passed": True,
                    "score": 8,
                    "issues": [{"type": "claims", "severity": "info", "description": "minor hedge"}],
                    "corrected_body": "",
                }
            },
        )
    )
    result = await agent.review(sample_page())

    assert result.passed
    assert result.score == 8.0
    assert result.issues[0].severity is Severity.info
    assert result.corrected_body is None
