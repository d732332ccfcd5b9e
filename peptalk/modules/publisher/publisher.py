"""Publish a compliant page as one version-consistent artifact.

Write order for version N:
  1. upsert peptide row
  2. replace evidence rows
  3. replace section rows (tagged with version N)
  4. render the document
  5. upload the document under documents/<id>/<id>-vN.<ext>
  6. append the audit entry

Each compensating action is pushed onto the undo stack before the write it
undoes, since a write that timed out may still have landed. On failure the
stack is unwound in reverse: page rows go back to the pre-run snapshot (or are
deleted when there was none) and the uploaded document is removed. A rollback
audit entry is then appended on a best-effort basis.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from peptalk.core.config import PublisherConfig
from peptalk.core.exceptions import PublishError
from peptalk.core.retry import describe_error
from peptalk.modules.publisher.documents import DocumentStore
from peptalk.modules.publisher.renderer import DocumentRenderer
from peptalk.modules.publisher.schemas import (
    AuditEntry,
    PageSnapshot,
    PublishResult,
    evidence_rows,
    peptide_row,
    section_rows,
)
from peptalk.modules.publisher.store import PageStore
from peptalk.modules.synthesis.schemas import PageRecord

logger = structlog.get_logger()

Compensation = tuple[str, Callable[[], Awaitable[None]]]


def document_key(peptide_id: str, version: int, extension: str) -> str:
    return f"documents/{peptide_id}/{peptide_id}-v{version}.{extension}"


class Publisher:
    def __init__(
        self,
        store: PageStore | None,
        documents: DocumentStore,
        renderer: DocumentRenderer,
        config: PublisherConfig | None = None,
    ) -> None:
        self.store = store
        self.documents = documents
        self.renderer = renderer
        self.config = config or PublisherConfig()

    async def current_version(self, peptide_id: str) -> int:
        if self.store is None:
            return 0
        snapshot = await self.store.get_snapshot(peptide_id)
        return snapshot.version

    async def publish(self, page: PageRecord, *, run_id: str, dry_run: bool = False) -> PublishResult:
        peptide_id = page.peptide_id

        if dry_run:
            # no store access: the version is assigned only by a real publish
            rendered = await self.renderer.render(page)
            logger.info(
                "publish_dry_run",
                peptide=peptide_id,
                run_id=run_id,
                document_bytes=len(rendered.content),
            )
            return PublishResult(
                peptide_id=peptide_id,
                dry_run=True,
                document_key=document_key(peptide_id, page.version, self.renderer.extension),
                document_bytes=len(rendered.content),
                page_count=rendered.page_count,
            )

        if self.store is None:
            raise PublishError("no page store configured")
        try:
            snapshot = await self.store.get_snapshot(peptide_id)
        except Exception as e:
            raise PublishError(f"snapshot failed: {describe_error(e)}") from e
        version = snapshot.version + 1
        page = page.model_copy(update={"version": version})
        key = document_key(peptide_id, version, self.renderer.extension)
        log = logger.bind(peptide=peptide_id, version=version, run_id=run_id)

        undo: list[Compensation] = []
        step = "start"
        try:
            undo.append(("restore page rows", lambda: self.store.restore(peptide_id, snapshot)))

            step = "upsert_peptide"
            url = self._public_url(key)
            await self.store.upsert_peptide(
                peptide_row(page, run_id=run_id, document_key=key, document_url=url)
            )

            step = "replace_evidence"
            await self.store.replace_evidence(peptide_id, evidence_rows(page))

            step = "replace_sections"
            await self.store.replace_sections(peptide_id, section_rows(page))

            step = "render"
            rendered = await self.renderer.render(page)

            step = "upload"
            undo.append(("delete document", lambda: self.documents.delete(key)))
            uploaded_url = await self.documents.put(key, rendered.content, rendered.content_type)
            if uploaded_url and uploaded_url != url:
                url = uploaded_url
                await self.store.upsert_peptide(
                    peptide_row(page, run_id=run_id, document_key=key, document_url=url)
                )

            step = "audit"
            entry = AuditEntry(
                entry_id=f"{run_id}:{peptide_id}:publish",
                peptide_id=peptide_id,
                version=version,
                action="publish",
                run_id=run_id,
                details={
                    "grade": page.grade.level.value,
                    "rule": page.grade.rule.value,
                    "sections": len(page.sections),
                    "references": len(page.references),
                    "document_key": key,
                    "previous_version": snapshot.version or None,
                    "published_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            await self.store.append_audit(entry)
        except (Exception, asyncio.CancelledError) as e:
            reason = f"{step} failed: {describe_error(e)}"
            log.error("publish_failed", step=step, error=describe_error(e))
            rollback_errors = await self._rollback(undo, snapshot, peptide_id, run_id, reason)
            if isinstance(e, asyncio.CancelledError):
                raise
            raise PublishError(reason, rollback_errors) from e

        log.info(
            "page_published",
            document_key=key,
            document_bytes=len(rendered.content),
            sections=len(page.sections),
        )
        return PublishResult(
            peptide_id=peptide_id,
            version=version,
            document_key=key,
            document_url=url,
            document_bytes=len(rendered.content),
            page_count=rendered.page_count,
            audit_entry_id=entry.entry_id,
        )

    def _public_url(self, key: str) -> str | None:
        base = self.config.public_base_url.rstrip("/")
        return f"{base}/{key}" if base else None

    async def _rollback(
        self,
        undo: list[Compensation],
        snapshot: PageSnapshot,
        peptide_id: str,
        run_id: str,
        reason: str,
    ) -> list[str]:
        errors: list[str] = []
        for name, action in reversed(undo):
            try:
                await action()
            except Exception as e:
                errors.append(f"{name}: {describe_error(e)}")
                logger.error("rollback_step_failed", peptide=peptide_id, step=name, error=describe_error(e))

        try:
            await self.store.append_audit(
                AuditEntry(
                    entry_id=f"{run_id}:{peptide_id}:rollback",
                    peptide_id=peptide_id,
                    version=snapshot.version or None,
                    action="rollback",
                    run_id=run_id,
                    details={"reason": reason, "errors": errors},
                )
            )
        except Exception as e:
            logger.warning("rollback_audit_failed", peptide=peptide_id, error=describe_error(e))

        logger.info(
            "publish_rolled_back",
            peptide=peptide_id,
            restored_version=snapshot.version or None,
            compensations=len(undo),
            errors=len(errors),
        )
        return errors
