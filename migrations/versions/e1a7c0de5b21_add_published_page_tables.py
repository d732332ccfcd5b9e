"""add published page tables

Revision ID: e1a7c0de5b21
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'e1a7c0de5b21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # peptides: one row per peptide, current version only
    op.create_table(
        'peptides',
        sa.Column('id', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('aliases', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('evidence_grade', sa.String(length=20), nullable=False),
        sa.Column('grade_rule', sa.String(length=50), nullable=False),
        sa.Column('grade_rationale', sa.Text(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('summary_html', sa.Text(), nullable=False),
        sa.Column('counts', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('disclaimers', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('categories', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('key_points', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('limitations', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('document_key', sa.String(length=300), nullable=True),
        sa.Column('document_url', sa.Text(), nullable=True),
        sa.Column('run_id', sa.String(length=64), nullable=True),
        sa.Column('generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_peptides_grade', 'peptides', ['evidence_grade'])

    # evidence_items
    op.create_table(
        'evidence_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('peptide_id', sa.String(length=100), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('provenance', sa.String(length=20), nullable=False),
        sa.Column('source_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=True),
        sa.Column('category', sa.String(length=40), nullable=False),
        sa.Column('sample_size', sa.Integer(), nullable=True),
        sa.Column('outcome', sa.String(length=20), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('peptide_id', 'provenance', 'source_id', name='uq_evidence_identity'),
    )
    op.create_index('idx_evidence_items_peptide', 'evidence_items', ['peptide_id'])

    # page_sections: tagged with the version they were written for
    op.create_table(
        'page_sections',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('peptide_id', sa.String(length=100), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=300), nullable=False),
        sa.Column('body_html', sa.Text(), nullable=False),
        sa.Column('plain_language_summary', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('peptide_id', 'version', 'position', name='uq_section_position'),
    )
    op.create_index('idx_page_sections_peptide_version', 'page_sections', ['peptide_id', 'version'])

    # audit_log: append-only
    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('entry_id', sa.String(length=100), nullable=False),
        sa.Column('peptide_id', sa.String(length=100), nullable=False),
        sa.Column('version', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('run_id', sa.String(length=64), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entry_id'),
    )
    op.create_index('idx_audit_log_peptide', 'audit_log', ['peptide_id'])


def downgrade() -> None:
    op.drop_index('idx_audit_log_peptide', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_index('idx_page_sections_peptide_version', table_name='page_sections')
    op.drop_table('page_sections')
    op.drop_index('idx_evidence_items_peptide', table_name='evidence_items')
    op.drop_table('evidence_items')
    op.drop_index('idx_peptides_grade', table_name='peptides')
    op.drop_table('peptides')
