"""Pipeline error hierarchy.

Every failure that ends a run carries the stage it happened in and a short
reason, which the orchestrator copies into the run report.
"""

from __future__ import annotations


class PeptalkError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PeptalkError):
    """Missing credential, bad setting or invalid batch list. Raised before any external call."""


class PipelineError(PeptalkError):
    stage: str = "pipeline"

    def __init__(self, reason: str, *, stage: str | None = None) -> None:
        self.reason = reason
        if stage is not None:
            self.stage = stage
        super().__init__(reason)


class InsufficientEvidenceError(PipelineError):
    stage = "grade"

    def __init__(self, reason: str = "insufficient evidence") -> None:
        super().__init__(reason)


class SynthesisError(PipelineError):
    stage = "synthesize"


class ComplianceError(PipelineError):
    stage = "compliance"

    def __init__(self, reason: str, issues: list | None = None) -> None:
        self.issues = issues or []
        super().__init__(reason)


class PublishError(PipelineError):
    stage = "publish"

    def __init__(self, reason: str, rollback_errors: list[str] | None = None) -> None:
        self.rollback_errors = rollback_errors or []
        super().__init__(reason)


class StoreError(PeptalkError):
    """A page or document store write failed after retries."""
