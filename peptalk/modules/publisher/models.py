"""Published-page persistence models.

One ``Peptide`` row per peptide holds the current version. Section rows carry
the version they were written for; readers only take sections whose version
equals the peptide row's, so a half-finished publish never shows a mix of two
versions. ``AuditLogEntry`` is append-only and keyed by ``entry_id`` so a
retried append is a no-op.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from peptalk.core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Peptide(Base):
    __tablename__ = "peptides"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    aliases: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    evidence_grade: Mapped[str] = mapped_column(String(20), nullable=False)
    grade_rule: Mapped[str] = mapped_column(String(50), nullable=False)
    grade_rationale: Mapped[str] = mapped_column(Text, nullable=False, default="")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    summary_html: Mapped[str] = mapped_column(Text, nullable=False, default="")
    counts: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    disclaimers: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    categories: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    key_points: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    limitations: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    document_key: Mapped[Optional[str]] = mapped_column(String(300))
    document_url: Mapped[Optional[str]] = mapped_column(Text)
    run_id: Mapped[Optional[str]] = mapped_column(String(64))
    generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_peptides_grade", "evidence_grade"),)


class EvidenceItemRow(Base):
    __tablename__ = "evidence_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    peptide_id: Mapped[str] = mapped_column(String(100), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    provenance: Mapped[str] = mapped_column(String(20), nullable=False)
    source_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    year: Mapped[Optional[int]] = mapped_column(Integer)
    category: Mapped[str] = mapped_column(String(40), nullable=False)
    sample_size: Mapped[Optional[int]] = mapped_column(Integer)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False, default="unknown")
    url: Mapped[Optional[str]] = mapped_column(Text)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("peptide_id", "provenance", "source_id", name="uq_evidence_identity"),
        Index("idx_evidence_items_peptide", "peptide_id"),
    )


class PageSectionRow(Base):
    __tablename__ = "page_sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    peptide_id: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    body_html: Mapped[str] = mapped_column(Text, nullable=False)
    plain_language_summary: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("peptide_id", "version", "position", name="uq_section_position"),
        Index("idx_page_sections_peptide_version", "peptide_id", "version"),
    )


class AuditLogEntry(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    peptide_id: Mapped[str] = mapped_column(String(100), nullable=False)
    version: Mapped[Optional[int]] = mapped_column(Integer)
    action: Mapped[str] = mapped_column(String(20), nullable=False)  # publish | rollback
    run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_audit_log_peptide", "peptide_id"),)
