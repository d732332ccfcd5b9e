"""Internal write API used by ``InternalApiPageStore`` and ``InternalApiDocumentStore``.

Every endpoint requires the shared ``X-Internal-Secret`` header and is
idempotent: repeating a request after a lost response leaves the same state.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from peptalk.core.config import settings
from peptalk.core.database import get_db
from peptalk.core.exceptions import StoreError
from peptalk.core.security import require_internal_secret
from peptalk.modules.publisher import service
from peptalk.modules.publisher.documents import DocumentStore, LocalDocumentStore
from peptalk.modules.publisher.schemas import (
    AuditEntry,
    EvidenceRow,
    PageSnapshot,
    PeptideRow,
    PublishedPage,
    SectionRow,
)

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_secret)],
)


def get_document_store() -> DocumentStore:
    return LocalDocumentStore(settings.document_dir, settings.document_public_url)


@router.get("/peptides/{peptide_id}", response_model=PageSnapshot)
async def get_peptide(peptide_id: str, db: AsyncSession = Depends(get_db)) -> PageSnapshot:
    snapshot = await service.get_snapshot(db, peptide_id)
    if not snapshot.exists:
        raise HTTPException(status_code=404, detail="Peptide not found")
    return snapshot


@router.get("/peptides/{peptide_id}/page", response_model=PublishedPage)
async def get_page(peptide_id: str, db: AsyncSession = Depends(get_db)) -> PublishedPage:
    page = await service.get_published_page(db, peptide_id)
    if page is None:
        raise HTTPException(status_code=404, detail="Peptide not found")
    return page


@router.put("/peptides/{peptide_id}", response_model=PeptideRow)
async def upsert_peptide(
    peptide_id: str,
    data: PeptideRow,
    db: AsyncSession = Depends(get_db),
) -> PeptideRow:
    if data.id != peptide_id:
        raise HTTPException(status_code=422, detail="Peptide id does not match the path")
    peptide = await service.upsert_peptide(db, data)
    await db.commit()
    return PeptideRow.model_validate(peptide)


@router.put("/peptides/{peptide_id}/evidence")
async def replace_evidence(
    peptide_id: str,
    rows: list[EvidenceRow],
    db: AsyncSession = Depends(get_db),
) -> dict[str, int]:
    count = await service.replace_evidence(db, peptide_id, rows)
    await db.commit()
    return {"count": count}


@router.put("/peptides/{peptide_id}/sections")
async def replace_sections(
    peptide_id: str,
    rows: list[SectionRow],
    db: AsyncSession = Depends(get_db),
) -> dict[str, int]:
    count = await service.replace_sections(db, peptide_id, rows)
    await db.commit()
    return {"count": count}


@router.delete("/peptides/{peptide_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_peptide(peptide_id: str, db: AsyncSession = Depends(get_db)) -> None:
    await service.delete_peptide(db, peptide_id)
    await db.commit()


@router.post("/audit")
async def append_audit(entry: AuditEntry, db: AsyncSession = Depends(get_db)) -> dict[str, bool]:
    created = await service.append_audit(db, entry)
    await db.commit()
    return {"created": created}


@router.get("/audit/{peptide_id}", response_model=list[AuditEntry])
async def list_audit(peptide_id: str, db: AsyncSession = Depends(get_db)) -> list[AuditEntry]:
    return await service.list_audit(db, peptide_id)


@router.put("/documents/{key:path}")
async def put_document(
    key: str,
    request: Request,
    documents: DocumentStore = Depends(get_document_store),
) -> dict[str, str | None]:
    content = await request.body()
    content_type = request.headers.get("content-type", "application/octet-stream")
    try:
        url = await documents.put(key, content, content_type)
    except StoreError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"key": key, "url": url}


@router.delete("/documents/{key:path}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(key: str, documents: DocumentStore = Depends(get_document_store)) -> None:
    try:
        await documents.delete(key)
    except StoreError as e:
        raise HTTPException(status_code=400, detail=str(e))
