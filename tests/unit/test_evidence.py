"""Unit tests for classification, normalization and grading."""

from __future__ import annotations

import pytest

from peptalk.core.config import NormalizerConfig
from peptalk.modules.evidence.classify import (
    classify_literature,
    classify_text,
    extract_sample_size,
    infer_outcome,
)
from peptalk.modules.evidence.grader import grade
from peptalk.modules.evidence.normalizer import normalize, title_similarity
from peptalk.modules.evidence.schemas import (
    GradeLevel,
    GradeRule,
    LiteratureDetails,
    OutcomeDirection,
    StudyCategory,
)
from tests.helpers import collection, lit, trial

CHT = StudyCategory.controlled_human_trial
BENEFIT = OutcomeDirection.benefit
NO_BENEFIT = OutcomeDirection.no_benefit


# ---------------------------------------------------------------------------
# Classification heuristics
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("A randomized, double-blind study in adults", StudyCategory.controlled_human_trial),
        ("Retrospective cohort of patients with ulcers", StudyCategory.observational_human),
        ("Effects on cultured cells in vitro", StudyCategory.in_vitro),
        ("Tendon healing in the rat Achilles model", StudyCategory.animal_model),
        ("A narrative overview of peptide chemistry", StudyCategory.unknown),
    ],
)
def test_classify_text(text: str, expected: StudyCategory) -> None:
    assert classify_text(text) is expected


def test_publication_type_decides_trials() -> None:
    category = classify_literature("Peptide effects in mice", "", ["Randomized Controlled Trial"])
    assert category is StudyCategory.controlled_human_trial


def test_outcome_negation_is_not_benefit() -> None:
    assert infer_outcome("The peptide did not significantly improve healing") is NO_BENEFIT
    assert infer_outcome("Healing was significantly improved") is BENEFIT
    assert infer_outcome("Outcomes are described") is OutcomeDirection.unknown


def test_extract_sample_size_takes_largest_count() -> None:
    assert extract_sample_size("n = 40 in arm A; 1,200 participants screened") == 1200
    assert extract_sample_size("no numbers here") is None


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


def _mixed_items():
    return [
        lit("1", "BPC-157 accelerates tendon healing in rats", category=StudyCategory.animal_model, year=2018),
        lit("2", "BPC 157 accelerates tendon healing in rats.", year=2019),  # near-identical title
        trial("NCT001", sample_size=60, outcome=BENEFIT),
        lit("3", "Gastric lesions and pentadecapeptide therapy", year=2020, first_author="sikiric"),
        lit("4", "A different title by the same group", year=2020, first_author="sikiric"),
        lit("1", "BPC-157 accelerates tendon healing in rats", year=2018),  # same identity
        lit("5", "Cell line response in vitro", year=2017),
        lit("6", "Randomized trial in volunteers", category=CHT, sample_size=120, year=2022),
    ]


def test_normalize_dedupes_first_seen_wins() -> None:
    result = normalize(collection(*_mixed_items()))
    ids = {item.source_id for item in result.items}

    assert "PMID:1" in ids
    assert "PMID:2" not in ids  # title match
    assert "PMID:4" not in ids  # same (year, first author) as PMID:3
    assert result.metadata.duplicates_discarded == 3
    assert result.normalized


def test_normalize_infers_missing_category() -> None:
    result = normalize(collection(*_mixed_items()))
    by_id = result.by_id()
    assert by_id["PMID:5"].category is StudyCategory.in_vitro
    assert result.metadata.categories_inferred >= 1


def test_mesh_headings_fill_a_category_the_text_cannot() -> None:
    cells = lit("7", "Fibroblast migration after pentadecapeptide exposure").model_copy(
        update={"details": LiteratureDetails(pmid="7", mesh_terms=("Humans", "Cells, Cultured"))}
    )
    rodents = lit("8", "Gastric mucosa and a stable pentadecapeptide").model_copy(
        update={"details": LiteratureDetails(pmid="8", mesh_terms=("Animals", "Rats, Wistar", "Cells, Cultured"))}
    )
    plain = lit("9", "Narrative overview of gut peptides")

    result = normalize(collection(cells, rodents, plain))
    by_id = result.by_id()

    assert by_id["PMID:7"].category is StudyCategory.in_vitro
    assert by_id["PMID:8"].category is StudyCategory.animal_model
    assert by_id["PMID:9"].category is StudyCategory.unknown
    assert result.metadata.categories_inferred == 2


def test_normalize_ranks_trials_first_larger_sample_first() -> None:
    result = normalize(collection(*_mixed_items()))
    categories = [item.category for item in result.items]
    assert categories[:2] == [CHT, CHT]
    assert [item.sample_size for item in result.items[:2]] == [120, 60]


def test_normalize_is_idempotent() -> None:
    once = normalize(collection(*_mixed_items()))
    twice = normalize(once)
    assert twice.items == once.items
    assert twice.metadata.duplicates_discarded == once.metadata.duplicates_discarded


def test_title_similarity_is_symmetric() -> None:
    a = "Effect of BPC-157 on muscle healing"
    b = "Effects of BPC 157 in muscle healing"
    assert title_similarity(a, b) == title_similarity(b, a)


def test_threshold_is_configurable() -> None:
    items = [
        lit("1", "Peptide and tendon repair in rats", year=2018),
        lit("2", "Peptide and tendon repair in mice", year=2019),
    ]
    strict = normalize(collection(*items), NormalizerConfig(title_similarity_threshold=0.99))
    loose = normalize(collection(*items), NormalizerConfig(title_similarity_threshold=0.5))
    assert len(strict.items) == 2
    assert len(loose.items) == 1


# ---------------------------------------------------------------------------
# Grader
# ---------------------------------------------------------------------------


def test_zero_evidence_is_very_low() -> None:
    result = grade(collection())
    assert result.level is GradeLevel.very_low
    assert result.rule is GradeRule.no_evidence
    assert result.upgrade_hints == (
        "1 human study to reach low",
        "5 more animal or in-vitro studies to reach low",
    )


def test_one_trial_plus_animal_is_moderate() -> None:
    result = grade(
        collection(
            lit("1", category=CHT, sample_size=80, outcome=BENEFIT),
            lit("2", category=StudyCategory.animal_model),
        )
    )
    assert result.level is GradeLevel.moderate
    assert result.rule is GradeRule.controlled_trial_sample
    assert result.rationale.startswith("moderate (controlled-trial-sample)")
    assert result.upgrade_hints == (
        "1 more controlled human trial(s) with n >= 50 agreeing on outcome to reach high",
    )


def test_two_agreeing_trials_is_high() -> None:
    result = grade(
        collection(
            lit("1", category=CHT, sample_size=60, outcome=BENEFIT),
            trial("NCT002", sample_size=90, outcome=BENEFIT),
        )
    )
    assert result.level is GradeLevel.high
    assert result.rule is GradeRule.replicated_controlled_trials
    assert result.upgrade_hints == ()


def test_conflicting_trials_are_capped_below_high() -> None:
    result = grade(
        collection(
            lit("1", category=CHT, sample_size=60, outcome=BENEFIT),
            lit("2", category=CHT, sample_size=90, outcome=NO_BENEFIT),
        )
    )
    assert result.level is GradeLevel.moderate
    assert GradeRule.cap_conflicting_outcomes in result.caps
    assert result.upgrade_hints[0] == "consistent outcomes across controlled trials to reach high"


def test_majority_missing_sample_sizes_caps_at_low() -> None:
    result = grade(
        collection(
            lit("1", category=CHT, sample_size=200, outcome=BENEFIT),
            lit("2", category=StudyCategory.observational_human),
            lit("3", category=StudyCategory.observational_human),
        )
    )
    assert result.level is GradeLevel.low
    assert result.rule is GradeRule.cap_missing_sample_sizes
    assert result.upgrade_hints == ("sample sizes for 1 more human study(ies) to lift the cap at low",)


def test_preclinical_body_is_low() -> None:
    items = [lit(str(i), f"Rodent study number {i}", category=StudyCategory.animal_model) for i in range(5)]
    assert grade(collection(*items)).level is GradeLevel.low
    assert grade(collection(*items[:4])).level is GradeLevel.very_low


def test_grade_is_deterministic() -> None:
    coll = collection(
        lit("1", category=CHT, sample_size=60, outcome=BENEFIT),
        lit("2", category=StudyCategory.animal_model),
    )
    assert grade(coll) == grade(coll)


@pytest.mark.parametrize(
    "base",
    [
        [],
        [lit("a", category=StudyCategory.animal_model)],
        [lit("a", category=CHT, sample_size=60, outcome=BENEFIT)],
        [lit("a", category=CHT, sample_size=60, outcome=NO_BENEFIT)],
        [lit("a", category=StudyCategory.observational_human), lit("b", category=StudyCategory.observational_human)],
        [lit("a", category=CHT, sample_size=70, outcome=BENEFIT), trial("NCT1", sample_size=80, outcome=BENEFIT)],
    ],
)
def test_adding_a_qualifying_trial_never_lowers_grade(base) -> None:
    before = grade(collection(*base))
    added = trial("NCT999", sample_size=150, outcome=BENEFIT)
    after = grade(collection(*base, added))
    assert after.level.rank >= before.level.rank
