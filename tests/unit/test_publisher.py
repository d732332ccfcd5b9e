"""Unit tests for the publisher: ordered writes, versioning and rollback.

Runs against an in-memory SQLite page store and a local document directory.
"""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from peptalk.core.exceptions import PublishError, StoreError
from peptalk.core.retry import RetryPolicy
from peptalk.modules.publisher import service
from peptalk.modules.publisher.documents import InternalApiDocumentStore, LocalDocumentStore
from peptalk.modules.publisher.publisher import Publisher, document_key
from peptalk.modules.publisher.renderer import HtmlDocumentRenderer, render_html
from peptalk.modules.publisher.schemas import EvidenceRow, SectionRow
from peptalk.modules.publisher.store import SqlPageStore
from tests.helpers import sample_page


class FailingEvidenceStore(SqlPageStore):
    """Fails after the peptide row has been written, before sections are replaced."""

    async def replace_evidence(self, peptide_id: str, rows: list[EvidenceRow]) -> None:
        raise StoreError("evidence write rejected")


class FailingUploadStore(LocalDocumentStore):
    async def put(self, key: str, content: bytes, content_type: str) -> str | None:
        raise StoreError("object storage unavailable")


def _publisher(store, document_dir: Path, documents=None) -> Publisher:
    return Publisher(
        store,
        documents or LocalDocumentStore(document_dir),
        HtmlDocumentRenderer(),
    )


async def test_first_publish_writes_everything(page_store, document_dir, session_factory) -> None:
    publisher = _publisher(page_store, document_dir)

    result = await publisher.publish(sample_page(), run_id="run-1")

    assert result.version == 1
    assert result.document_key == "documents/bpc-157/bpc-157-v1.html"
    assert (document_dir / result.document_key).read_bytes().startswith(b"<!DOCTYPE html>")

    async with session_factory() as db:
        page = await service.get_published_page(db, "bpc-157")
        audit = await service.list_audit(db, "bpc-157")
    assert page.peptide.version == 1
    assert page.peptide.evidence_grade == "moderate"
    assert [s.title for s in page.sections] == ["Human Research", "Animal Research"]
    assert [e.source_id for e in page.evidence] == ["PMID:1001", "PMID:1002"]
    assert [(a.action, a.entry_id) for a in audit] == [("publish", "run-1:bpc-157:publish")]


async def test_republish_bumps_version_and_replaces_sections(page_store, document_dir, session_factory) -> None:
    publisher = _publisher(page_store, document_dir)
    await publisher.publish(sample_page(), run_id="run-1")

    page = sample_page()
    page = page.model_copy(update={"sections": page.sections[:1]})
    page = page.model_copy(update={"references": page.references[:1]})
    result = await publisher.publish(page, run_id="run-2")

    assert result.version == 2
    async with session_factory() as db:
        published = await service.get_published_page(db, "bpc-157")
        snapshot = await service.get_snapshot(db, "bpc-157")
    assert published.peptide.version == 2
    assert [s.title for s in published.sections] == ["Human Research"]
    # no section rows of the old version survive
    assert {s.version for s in snapshot.sections} == {2}


async def test_failure_after_upsert_restores_prior_version(session_factory, document_dir) -> None:
    good = SqlPageStore(session_factory)
    await _publisher(good, document_dir).publish(sample_page(), run_id="run-1")
    before = await good.get_snapshot("bpc-157")

    failing = FailingEvidenceStore(session_factory)
    with pytest.raises(PublishError, match="replace_evidence failed") as exc_info:
        await _publisher(failing, document_dir).publish(sample_page(), run_id="run-2")

    assert exc_info.value.stage == "publish"
    assert exc_info.value.rollback_errors == []
    after = await good.get_snapshot("bpc-157")
    assert after == before
    assert not (document_dir / document_key("bpc-157", 2, "html")).exists()


async def test_failure_on_first_publish_leaves_nothing_behind(session_factory, document_dir) -> None:
    failing = FailingEvidenceStore(session_factory)
    with pytest.raises(PublishError):
        await _publisher(failing, document_dir).publish(sample_page(), run_id="run-1")

    snapshot = await failing.get_snapshot("bpc-157")
    assert not snapshot.exists
    assert snapshot.evidence == []
    assert snapshot.sections == []


async def test_upload_failure_rolls_back_relational_writes(session_factory, document_dir) -> None:
    store = SqlPageStore(session_factory)
    await _publisher(store, document_dir).publish(sample_page(), run_id="run-1")
    before = await store.get_snapshot("bpc-157")

    publisher = _publisher(store, document_dir, documents=FailingUploadStore(document_dir))
    with pytest.raises(PublishError, match="upload failed"):
        await publisher.publish(sample_page(), run_id="run-2")

    assert await store.get_snapshot("bpc-157") == before
    async with session_factory() as db:
        audit = await service.list_audit(db, "bpc-157")
    assert [a.action for a in audit] == ["publish", "rollback"]
    assert "upload failed" in audit[-1].details["reason"]


async def test_dry_run_writes_nothing(page_store, document_dir) -> None:
    result = await _publisher(page_store, document_dir).publish(sample_page(), run_id="run-1", dry_run=True)

    assert result.dry_run
    assert result.version is None
    assert result.document_bytes > 0
    assert not (await page_store.get_snapshot("bpc-157")).exists
    assert list(document_dir.iterdir()) == []


async def test_audit_append_is_idempotent(session_factory) -> None:
    from peptalk.modules.publisher.schemas import AuditEntry

    entry = AuditEntry(entry_id="run-1:x:publish", peptide_id="x", version=1, action="publish", run_id="run-1")
    async with session_factory() as db:
        assert await service.append_audit(db, entry)
        assert not await service.append_audit(db, entry)
        await db.commit()
        assert len(await service.list_audit(db, "x")) == 1


async def test_reader_sees_only_current_version_sections(session_factory) -> None:
    page = sample_page()
    from peptalk.modules.publisher.schemas import peptide_row

    async with session_factory() as db:
        row = peptide_row(page.model_copy(update={"version": 1}), run_id="r", document_key="k", document_url=None)
        await service.upsert_peptide(db, row)
        # stale rows from an interrupted writer
        await service.replace_sections(
            db,
            "bpc-157",
            [
                SectionRow(version=1, position=0, title="Current", body_html="<p>a</p>"),
                SectionRow(version=2, position=0, title="Next", body_html="<p>b</p>"),
            ],
        )
        await db.commit()
        published = await service.get_published_page(db, "bpc-157")

    assert [s.title for s in published.sections] == ["Current"]


def test_rendered_html_escapes_text_but_keeps_body_markup() -> None:
    page = sample_page()
    page = page.model_copy(update={"key_points": ["<script>alert(1)</script>"]})
    html = render_html(page)

    assert "<h2>Human Research</h2>" in html
    assert "[PMID:1001]" in html
    assert "&lt;script&gt;" in html
    assert "This content is for educational purposes only." in html


async def test_local_store_rejects_escaping_keys(document_dir) -> None:
    store = LocalDocumentStore(document_dir)
    with pytest.raises(StoreError):
        await store.put("../outside.html", b"x", "text/html")


async def test_internal_api_document_store_sends_secret() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"key": "k", "url": "https://cdn.example.test/k"})

    store = InternalApiDocumentStore(
        "http://site.test",
        "s3cret",
        RetryPolicy(max_attempts=1, base_delay=0.0),
        transport=httpx.MockTransport(handler),
    )
    url = await store.put("documents/a/a-v1.pdf", b"%PDF", "application/pdf")

    assert url == "https://cdn.example.test/k"
    assert seen[0].headers["X-Internal-Secret"] == "s3cret"
    assert seen[0].url.path == "/internal/documents/documents/a/a-v1.pdf"
