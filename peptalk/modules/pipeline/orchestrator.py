"""Single-peptide pipeline: ingest -> normalize -> grade -> synthesize -> compliance -> publish.

Stages run strictly in order, each on the previous stage's complete output.
A stage failure ends the run with the stage name and a reason in the
``RunReport``; nothing after the failing stage runs, and only the publish
stage ever writes durable state.
"""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import structlog

from peptalk.core.config import PipelineConfig
from peptalk.core.exceptions import (
    ComplianceError,
    InsufficientEvidenceError,
    PipelineError,
    PublishError,
)
from peptalk.core.retry import CallStatus, describe_error
from peptalk.modules.compliance.validator import ComplianceValidator, apply_correction
from peptalk.modules.evidence.grader import grade
from peptalk.modules.evidence.normalizer import normalize
from peptalk.modules.evidence.schemas import EvidenceCollection, RetrievalMetadata
from peptalk.modules.llm.cost_tracker import CostTracker
from peptalk.modules.pipeline.schemas import PeptideRequest, RunOptions, RunReport, StageReport
from peptalk.modules.publisher.publisher import Publisher
from peptalk.modules.sources.base import BaseSourceClient, build_query
from peptalk.modules.synthesis.synthesizer import Synthesizer

logger = structlog.get_logger()


class PeptidePipeline:
    def __init__(
        self,
        config: PipelineConfig,
        *,
        sources: list[BaseSourceClient],
        synthesizer: Synthesizer,
        validator: ComplianceValidator,
        publisher: Publisher,
        cost_tracker: CostTracker | None = None,
    ) -> None:
        self.config = config
        self.sources = sources
        self.synthesizer = synthesizer
        self.validator = validator
        self.publisher = publisher
        self.cost_tracker = cost_tracker or CostTracker()

    @asynccontextmanager
    async def _stage(self, report: RunReport, name: str) -> AsyncIterator[dict]:
        """Time a stage and record it. A PipelineError without a stage gets this one."""
        details: dict = {}
        start = time.perf_counter()
        success = False
        try:
            yield details
            success = True
        except PipelineError as e:
            if e.stage == "pipeline":
                e.stage = name
            raise
        finally:
            report.stages.append(
                StageReport(
                    stage=name,
                    success=success,
                    duration_ms=int((time.perf_counter() - start) * 1000),
                    details=details,
                )
            )

    async def run(self, request: PeptideRequest, options: RunOptions | None = None) -> RunReport:
        options = options or RunOptions()
        run_id = uuid.uuid4().hex[:12]
        report = RunReport(
            peptide_id=request.peptide_id,
            name=request.name,
            run_id=run_id,
            dry_run=options.dry_run,
        )
        log = logger.bind(peptide=request.peptide_id, run_id=run_id)
        structlog.contextvars.bind_contextvars(peptide=request.peptide_id, run_id=run_id)
        start = time.perf_counter()
        log.info("pipeline_started", name=request.name, aliases=request.aliases, **options.model_dump())

        try:
            if not options.force and not options.dry_run:
                existing = await self.publisher.current_version(request.peptide_id)
                if existing:
                    report.success = True
                    report.skipped = True
                    report.version = existing
                    report.reason = f"already published (version {existing}); use force to re-run"
                    log.info("pipeline_skipped", version=existing)
                    return report

            await self._run_stages(request, options, report, run_id)
            report.success = True
        except PipelineError as e:
            report.fail(e.stage, e.reason)
            if isinstance(e, PublishError) and e.rollback_errors:
                report.warnings.extend(f"rollback: {err}" for err in e.rollback_errors)
            log.error("pipeline_failed", stage=e.stage, reason=e.reason)
        except Exception as e:
            # unexpected errors still produce a report; the batch keeps going
            stage = report.stages[-1].stage if report.stages else "pipeline"
            report.fail(stage, describe_error(e))
            log.exception("pipeline_crashed", stage=stage)
        finally:
            totals = self.cost_tracker.totals(request.peptide_id)
            report.cost_usd = totals["cost_usd"]
            report.total_tokens = totals["total_tokens"]
            report.duration_ms = int((time.perf_counter() - start) * 1000)
            structlog.contextvars.unbind_contextvars("peptide", "run_id")

        log.info(
            "pipeline_finished",
            success=report.success,
            grade=report.grade,
            version=report.version,
            cost_usd=report.cost_usd,
            duration_ms=report.duration_ms,
        )
        return report

    async def _run_stages(
        self,
        request: PeptideRequest,
        options: RunOptions,
        report: RunReport,
        run_id: str,
    ) -> None:
        async with self._stage(report, "ingest") as details:
            collection = await self.ingest(request)
            meta = collection.metadata
            report.source_counts = {name: s.fetched for name, s in meta.sources.items()}
            report.warnings.extend(meta.notes)
            details.update(
                items=len(collection.items),
                skipped_records=meta.skipped_records,
                sources={name: s.status for name, s in meta.sources.items()},
            )

        async with self._stage(report, "normalize") as details:
            collection = normalize(collection, self.config.normalizer)
            report.evidence_count = len(collection.items)
            report.duplicates_discarded = collection.metadata.duplicates_discarded
            details.update(
                items=len(collection.items),
                duplicates_discarded=collection.metadata.duplicates_discarded,
                categories_inferred=collection.metadata.categories_inferred,
            )

        minimal = False
        async with self._stage(report, "grade") as details:
            evidence_grade = grade(collection, self.config.grader)
            report.grade = evidence_grade.level.value
            report.grade_rule = evidence_grade.rule.value
            details.update(
                level=report.grade,
                rule=report.grade_rule,
                caps=[c.value for c in evidence_grade.caps],
                upgrade_hints=list(evidence_grade.upgrade_hints),
            )
            if len(collection.items) < self.config.min_evidence_items:
                if not self.config.allow_minimal_page:
                    raise InsufficientEvidenceError(
                        f"insufficient evidence: {len(collection.items)} usable record(s)"
                    )
                minimal = True
                details["minimal_page"] = True

        async with self._stage(report, "synthesize") as details:
            if minimal:
                page = self.synthesizer.minimal_page(collection, evidence_grade)
            else:
                page = await self.synthesizer.synthesize(collection, evidence_grade)
            details.update(
                minimal=minimal,
                sections=len(page.sections),
                references=len(page.references),
            )

        async with self._stage(report, "compliance") as details:
            verdict = await self.validator.validate(page, run_review=not options.skip_compliance)
            details.update(
                passed=verdict.passed,
                issues=len(verdict.issues),
                blockers=len(verdict.blockers),
                reviewed=verdict.review_performed,
                corrected=verdict.corrected_body is not None,
            )
            if not verdict.passed:
                raise ComplianceError(verdict.reason(), verdict.blockers)
            if verdict.corrected_body:
                page = apply_correction(page, verdict.corrected_body)
            report.warnings.extend(
                f"compliance {i.severity.value}: {i.description}"
                for i in verdict.issues
                if not i.blocking and not i.resolved
            )

        async with self._stage(report, "publish") as details:
            result = await self.publisher.publish(page, run_id=run_id, dry_run=options.dry_run)
            report.version = result.version
            report.document_url = result.document_url
            details.update(result.model_dump(exclude={"peptide_id"}))

    async def ingest(self, request: PeptideRequest) -> EvidenceCollection:
        """Query every source in turn. A failed source is noted, never fatal."""
        metadata = RetrievalMetadata(query=build_query(request.name, request.aliases, quote=True))
        items = []
        for source in self.sources:
            result = await source.fetch(request.name, request.aliases)
            metadata.sources[result.source] = result.summary()
            items.extend(result.items)
            if result.status is not CallStatus.success:
                logger.warning(
                    "source_degraded",
                    source=result.source,
                    status=result.status.value,
                    fetched=len(result.items),
                    notes=result.notes,
                )
        return EvidenceCollection(
            peptide_id=request.peptide_id,
            name=request.name,
            aliases=request.aliases,
            items=items,
            metadata=metadata,
        )
