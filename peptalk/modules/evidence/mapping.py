"""Raw provider records -> EvidenceItem, one mapping function per provenance."""

from __future__ import annotations

import re

from peptalk.modules.evidence.classify import (
    classify_literature,
    classify_registry,
    extract_sample_size,
    infer_outcome,
)
from peptalk.modules.evidence.schemas import (
    EvidenceItem,
    LiteratureDetails,
    OutcomeDirection,
    Provenance,
    RegistryDetails,
)

PUBMED_ARTICLE_URL = "https://pubmed.ncbi.nlm.nih.gov/{pmid}/"
TRIAL_URL = "https://clinicaltrials.gov/study/{nct_id}"

_TOKEN = re.compile(r"[a-z]+")


def pmid_identifier(pmid: str) -> str:
    return f"PMID:{pmid}"


def nct_identifier(nct_id: str) -> str:
    return f"NCT:{nct_id}"


def first_author_token(authors: tuple[str, ...] | list[str]) -> str | None:
    """Lowercased surname of the first author ("Sikiric P" -> "sikiric")."""
    if not authors:
        return None
    tokens = _TOKEN.findall(authors[0].lower())
    return tokens[0] if tokens else None


def literature_item(
    details: LiteratureDetails,
    *,
    title: str,
    abstract: str,
    year: int | None,
) -> EvidenceItem:
    text = f"{title} {abstract}"
    return EvidenceItem(
        provenance=Provenance.literature,
        source_id=pmid_identifier(details.pmid),
        title=title,
        summary=abstract,
        year=year,
        category=classify_literature(title, abstract, details.publication_types),
        sample_size=extract_sample_size(text),
        outcome=infer_outcome(text),
        first_author=first_author_token(details.authors),
        url=PUBMED_ARTICLE_URL.format(pmid=details.pmid),
        details=details,
    )


def registry_item(
    details: RegistryDetails,
    *,
    title: str,
    summary: str,
    year: int | None,
) -> EvidenceItem:
    # registry summaries describe the design, not results
    return EvidenceItem(
        provenance=Provenance.trial_registry,
        source_id=nct_identifier(details.nct_id),
        title=title,
        summary=summary,
        year=year,
        category=classify_registry(details.study_type, details.allocation),
        sample_size=details.enrollment if details.enrollment and details.enrollment > 0 else None,
        outcome=OutcomeDirection.unknown,
        first_author=None,
        url=TRIAL_URL.format(nct_id=details.nct_id),
        details=details,
    )
