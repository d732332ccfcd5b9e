"""Evidence normalization: dedup, category inference, ranking.

Two items are duplicates when any of these hold:
  1. same (provenance, source_id)
  2. normalized title similarity above the configured threshold
  3. same (year, first-author token), when both sides have both

The first item seen wins. Each item is compared against the kept set only,
and the ranking is a total order, so normalizing already-normalized output
changes nothing.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher

import structlog

from peptalk.core.config import NormalizerConfig
from peptalk.modules.evidence.classify import classify_mesh, classify_text
from peptalk.modules.evidence.schemas import (
    EvidenceCollection,
    EvidenceItem,
    LiteratureDetails,
    StudyCategory,
)

logger = structlog.get_logger()

CATEGORY_RANK: dict[StudyCategory, int] = {
    StudyCategory.controlled_human_trial: 0,
    StudyCategory.observational_human: 1,
    StudyCategory.animal_model: 2,
    StudyCategory.in_vitro: 3,
    StudyCategory.unknown: 4,
}

_NON_WORD = re.compile(r"[^a-z0-9]+")


def normalize_title(title: str) -> str:
    return _NON_WORD.sub(" ", title.lower()).strip()


def title_similarity(a: str, b: str) -> float:
    # sorted so the score does not depend on argument order
    na, nb = sorted((normalize_title(a), normalize_title(b)))
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    matcher = SequenceMatcher(None, na, nb, autojunk=False)
    # cheap upper bound first
    if matcher.quick_ratio() < 0.5:
        return matcher.quick_ratio()
    return matcher.ratio()


def is_duplicate(a: EvidenceItem, b: EvidenceItem, threshold: float) -> bool:
    if a.key == b.key:
        return True
    if (
        a.year is not None
        and a.first_author
        and a.year == b.year
        and a.first_author == b.first_author
    ):
        return True
    return title_similarity(a.title, b.title) > threshold


def infer_category(item: EvidenceItem) -> EvidenceItem:
    """Fill an unknown category from the item's text, then its MeSH headings.

    Mapped literature already went through the keyword rules, so for ingested
    items only the MeSH fallback can add anything.
    """
    if item.category is not StudyCategory.unknown:
        return item
    category = classify_text(f"{item.title} {item.summary}")
    if category is StudyCategory.unknown and isinstance(item.details, LiteratureDetails):
        category = classify_mesh(item.details.mesh_terms)
    if category is StudyCategory.unknown:
        return item
    return item.model_copy(update={"category": category})


def rank_key(item: EvidenceItem) -> tuple:
    return (
        CATEGORY_RANK[item.category],
        item.sample_size is None,
        -(item.sample_size or 0),
        -(item.year or 0),
        item.provenance.value,
        item.source_id,
    )


def dedupe(items: list[EvidenceItem], threshold: float) -> tuple[list[EvidenceItem], int]:
    """First-seen-wins dedup. Returns (kept, discarded_count)."""
    kept: list[EvidenceItem] = []
    seen_keys: set[tuple[str, str]] = set()
    discarded = 0

    for item in items:
        if item.key in seen_keys or any(is_duplicate(k, item, threshold) for k in kept):
            discarded += 1
            logger.debug("evidence_duplicate_discarded", source_id=item.source_id)
            continue
        kept.append(item)
        seen_keys.add(item.key)

    return kept, discarded


def normalize(
    collection: EvidenceCollection,
    config: NormalizerConfig | None = None,
) -> EvidenceCollection:
    """Return a deduplicated, categorized, ranked copy of ``collection``."""
    config = config or NormalizerConfig()

    kept, discarded = dedupe(collection.items, config.title_similarity_threshold)

    inferred = 0
    categorized: list[EvidenceItem] = []
    for item in kept:
        new_item = infer_category(item)
        if new_item is not item:
            inferred += 1
        categorized.append(new_item)

    ranked = sorted(categorized, key=rank_key)

    metadata = collection.metadata.model_copy(
        update={
            "duplicates_discarded": collection.metadata.duplicates_discarded + discarded,
            "categories_inferred": collection.metadata.categories_inferred + inferred,
        }
    )

    logger.info(
        "evidence_normalized",
        peptide=collection.peptide_id,
        input=len(collection.items),
        kept=len(ranked),
        discarded=discarded,
        inferred=inferred,
    )

    return collection.model_copy(
        update={"items": ranked, "metadata": metadata, "normalized": True}
    )
