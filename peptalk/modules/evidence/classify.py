"""Keyword heuristics for study category, outcome direction and sample size.

These run on titles and abstracts, so they are deliberately coarse: the
first matching rule wins and anything unmatched stays ``unknown``.
"""

from __future__ import annotations

import re

from peptalk.modules.evidence.schemas import OutcomeDirection, StudyCategory

# ---------------------------------------------------------------------------
# Study category
# ---------------------------------------------------------------------------

# PubMed PublicationType values that decide the category on their own
_TRIAL_PUBLICATION_TYPES = (
    "randomized controlled trial",
    "controlled clinical trial",
    "clinical trial",
    "pragmatic clinical trial",
    "equivalence trial",
)
_OBSERVATIONAL_PUBLICATION_TYPES = (
    "observational study",
    "case reports",
    "comparative study",
)

_CATEGORY_KEYWORDS: list[tuple[StudyCategory, re.Pattern[str]]] = [
    (
        StudyCategory.controlled_human_trial,
        re.compile(
            r"\b(randomi[sz]ed controlled trial|randomi[sz]ed|rct|double[- ]blind|"
            r"placebo[- ]controlled|controlled trial|clinical trial)\b",
            re.IGNORECASE,
        ),
    ),
    (
        StudyCategory.observational_human,
        re.compile(
            r"\b(patients?|human subjects?|cohort|case[- ]control|cross[- ]sectional|"
            r"retrospective|prospective|volunteers?|participants?|case (report|series))\b",
            re.IGNORECASE,
        ),
    ),
    (
        StudyCategory.in_vitro,
        re.compile(
            r"\b(in vitro|cell cultures?|cultured cells|cell lines?|ex vivo)\b",
            re.IGNORECASE,
        ),
    ),
    (
        StudyCategory.animal_model,
        re.compile(
            r"\b(rats?|mouse|mice|murine|rodents?|rabbits?|guinea pigs?|porcine|pigs?|"
            r"canine|dogs?|zebrafish|animal models?|in vivo)\b",
            re.IGNORECASE,
        ),
    ),
]


def classify_text(text: str) -> StudyCategory:
    """Keyword category for free text; first rule in priority order wins."""
    for category, pattern in _CATEGORY_KEYWORDS:
        if pattern.search(text):
            return category
    return StudyCategory.unknown


# MeSH descriptors (exact, case-insensitive); animal headings win over cell work
_MESH_CATEGORIES: list[tuple[StudyCategory, frozenset[str]]] = [
    (
        StudyCategory.animal_model,
        frozenset({"animals", "rats", "mice", "rats, sprague-dawley", "rats, wistar", "disease models, animal"}),
    ),
    (
        StudyCategory.in_vitro,
        frozenset({"cells, cultured", "in vitro techniques", "cell line", "cell line, tumor"}),
    ),
]


def classify_mesh(terms: tuple[str, ...] | list[str]) -> StudyCategory:
    lowered = {t.strip().lower() for t in terms}
    for category, headings in _MESH_CATEGORIES:
        if lowered & headings:
            return category
    return StudyCategory.unknown


def classify_literature(
    title: str,
    abstract: str,
    publication_types: tuple[str, ...] | list[str] = (),
) -> StudyCategory:
    pub_types = [p.lower() for p in publication_types]
    if any(t in p for p in pub_types for t in _TRIAL_PUBLICATION_TYPES):
        return StudyCategory.controlled_human_trial
    if any(t in p for p in pub_types for t in _OBSERVATIONAL_PUBLICATION_TYPES):
        # comparative studies are often animal work, so let keywords decide those
        category = classify_text(f"{title} {abstract}")
        if category is not StudyCategory.unknown:
            return category
        return StudyCategory.observational_human
    return classify_text(f"{title} {abstract}")


def classify_registry(study_type: str | None, allocation: str | None = None) -> StudyCategory:
    """Registry entries are human studies by definition; only the design varies."""
    study_type = (study_type or "").upper()
    if study_type in {"OBSERVATIONAL", "PATIENT_REGISTRY"}:
        return StudyCategory.observational_human
    return StudyCategory.controlled_human_trial


# ---------------------------------------------------------------------------
# Outcome direction
# ---------------------------------------------------------------------------

_HARM = re.compile(
    r"\b(increased mortality|worsen(ed|ing)?|harmful|serious adverse (events|effects) (were|was) "
    r"(more|significantly)|detrimental|toxicity was observed)\b",
    re.IGNORECASE,
)
_NO_BENEFIT = re.compile(
    r"\b(no (statistically )?significant (difference|effect|improvement|change|benefit)s?|"
    r"did not (significantly )?(improve|reduce|increase|differ|affect|change)|"
    r"not significantly different|failed to (improve|show|demonstrate|reduce)|"
    r"no (clinical )?benefit|ineffective)\b",
    re.IGNORECASE,
)
_BENEFIT = re.compile(
    r"\b(significantly (improved|reduced|increased|enhanced|decreased|accelerated|attenuated)|"
    r"significant (improvement|reduction|increase|decrease)|improved|accelerated healing|"
    r"was effective|were effective|beneficial effects?|efficacious|protective effects?)\b",
    re.IGNORECASE,
)


def infer_outcome(text: str) -> OutcomeDirection:
    # "did not significantly improve" must not read as a benefit
    if _HARM.search(text):
        return OutcomeDirection.harm
    if _NO_BENEFIT.search(text):
        return OutcomeDirection.no_benefit
    if _BENEFIT.search(text):
        return OutcomeDirection.benefit
    return OutcomeDirection.unknown


# ---------------------------------------------------------------------------
# Sample size
# ---------------------------------------------------------------------------

_N_EQUALS = re.compile(r"\b[nN]\s*=\s*(\d{1,3}(?:,\d{3})+|\d+)")
_COUNTED = re.compile(
    r"\b(\d{1,3}(?:,\d{3})+|\d+)\s+(?:\w+\s+)?(patients|participants|subjects|volunteers|"
    r"adults|individuals|men|women|children|healthy)\b",
    re.IGNORECASE,
)
_MAX_PLAUSIBLE_SAMPLE = 1_000_000


def extract_sample_size(text: str) -> int | None:
    """Largest participant count mentioned, or None when nothing plausible is found."""
    values: list[int] = []
    for pattern in (_N_EQUALS, _COUNTED):
        for match in pattern.finditer(text):
            value = int(match.group(1).replace(",", ""))
            if 0 < value < _MAX_PLAUSIBLE_SAMPLE:
                values.append(value)
    return max(values) if values else None
