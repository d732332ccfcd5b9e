from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from peptalk.modules.publisher.models import (
    AuditLogEntry,
    EvidenceItemRow,
    PageSectionRow,
    Peptide,
)
from peptalk.modules.publisher.schemas import (
    AuditEntry,
    EvidenceRow,
    PageSnapshot,
    PeptideRow,
    PublishedPage,
    SectionRow,
)


async def get_snapshot(db: AsyncSession, peptide_id: str) -> PageSnapshot:
    peptide = await db.get(Peptide, peptide_id)
    if peptide is None:
        return PageSnapshot()

    evidence = await db.execute(
        select(EvidenceItemRow)
        .where(EvidenceItemRow.peptide_id == peptide_id)
        .order_by(EvidenceItemRow.position)
    )
    sections = await db.execute(
        select(PageSectionRow)
        .where(PageSectionRow.peptide_id == peptide_id)
        .order_by(PageSectionRow.version, PageSectionRow.position)
    )
    return PageSnapshot(
        peptide=PeptideRow.model_validate(peptide),
        evidence=[EvidenceRow.model_validate(row) for row in evidence.scalars().all()],
        sections=[SectionRow.model_validate(row) for row in sections.scalars().all()],
    )


async def get_published_page(db: AsyncSession, peptide_id: str) -> PublishedPage | None:
    """Peptide row plus the sections of its current version only."""
    peptide = await db.get(Peptide, peptide_id)
    if peptide is None:
        return None

    sections = await db.execute(
        select(PageSectionRow)
        .where(
            PageSectionRow.peptide_id == peptide_id,
            PageSectionRow.version == peptide.version,
        )
        .order_by(PageSectionRow.position)
    )
    evidence = await db.execute(
        select(EvidenceItemRow)
        .where(EvidenceItemRow.peptide_id == peptide_id)
        .order_by(EvidenceItemRow.position)
    )
    return PublishedPage(
        peptide=PeptideRow.model_validate(peptide),
        sections=[SectionRow.model_validate(row) for row in sections.scalars().all()],
        evidence=[EvidenceRow.model_validate(row) for row in evidence.scalars().all()],
    )


async def upsert_peptide(db: AsyncSession, row: PeptideRow) -> Peptide:
    peptide = await db.get(Peptide, row.id)
    data = row.model_dump()
    if peptide is None:
        peptide = Peptide(**data)
        db.add(peptide)
    else:
        for field, value in data.items():
            setattr(peptide, field, value)
    await db.flush()
    return peptide


async def replace_evidence(db: AsyncSession, peptide_id: str, rows: list[EvidenceRow]) -> int:
    await db.execute(delete(EvidenceItemRow).where(EvidenceItemRow.peptide_id == peptide_id))
    for row in rows:
        db.add(EvidenceItemRow(peptide_id=peptide_id, **row.model_dump()))
    await db.flush()
    return len(rows)


async def replace_sections(db: AsyncSession, peptide_id: str, rows: list[SectionRow]) -> int:
    await db.execute(delete(PageSectionRow).where(PageSectionRow.peptide_id == peptide_id))
    for row in rows:
        db.add(PageSectionRow(peptide_id=peptide_id, **row.model_dump()))
    await db.flush()
    return len(rows)


async def append_audit(db: AsyncSession, entry: AuditEntry) -> bool:
    """Insert an audit entry. Returns False when ``entry_id`` was already recorded."""
    existing = await db.execute(
        select(AuditLogEntry.id).where(AuditLogEntry.entry_id == entry.entry_id)
    )
    if existing.scalar_one_or_none() is not None:
        return False
    db.add(AuditLogEntry(**entry.model_dump()))
    await db.flush()
    return True


async def list_audit(db: AsyncSession, peptide_id: str) -> list[AuditEntry]:
    result = await db.execute(
        select(AuditLogEntry)
        .where(AuditLogEntry.peptide_id == peptide_id)
        .order_by(AuditLogEntry.id)
    )
    return [AuditEntry.model_validate(row) for row in result.scalars().all()]


async def delete_peptide(db: AsyncSession, peptide_id: str) -> bool:
    """Remove a peptide and its evidence and sections. Audit history is kept."""
    peptide = await db.get(Peptide, peptide_id)
    await db.execute(delete(EvidenceItemRow).where(EvidenceItemRow.peptide_id == peptide_id))
    await db.execute(delete(PageSectionRow).where(PageSectionRow.peptide_id == peptide_id))
    if peptide is None:
        return False
    await db.delete(peptide)
    await db.flush()
    return True
