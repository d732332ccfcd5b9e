"""Builders for evidence items, collections and pages used across the suite."""

from __future__ import annotations

from peptalk.modules.evidence.grader import grade
from peptalk.modules.evidence.schemas import (
    EvidenceCollection,
    EvidenceGrade,
    EvidenceItem,
    LiteratureDetails,
    OutcomeDirection,
    Provenance,
    RegistryDetails,
    StudyCategory,
)
from peptalk.modules.synthesis.parser import format_reply
from peptalk.modules.synthesis.schemas import (
    PageCounts,
    PageRecord,
    Section,
    SectionOutline,
    SynthesisRecord,
)

INTERNAL_SECRET = "test-internal-secret"


def lit(
    pmid: str,
    title: str | None = None,
    *,
    category: StudyCategory = StudyCategory.unknown,
    sample_size: int | None = None,
    outcome: OutcomeDirection = OutcomeDirection.unknown,
    year: int | None = None,
    first_author: str | None = None,
    summary: str = "",
) -> EvidenceItem:
    return EvidenceItem(
        provenance=Provenance.literature,
        source_id=f"PMID:{pmid}",
        title=title or f"Study {pmid} of a healing peptide",
        summary=summary,
        year=year,
        category=category,
        sample_size=sample_size,
        outcome=outcome,
        first_author=first_author,
        url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
        details=LiteratureDetails(pmid=pmid, authors=(first_author.title(),) if first_author else ()),
    )


def trial(
    nct_id: str,
    title: str | None = None,
    *,
    sample_size: int | None = None,
    outcome: OutcomeDirection = OutcomeDirection.unknown,
    year: int | None = None,
) -> EvidenceItem:
    return EvidenceItem(
        provenance=Provenance.trial_registry,
        source_id=f"NCT:{nct_id}",
        title=title or f"Registered trial {nct_id}",
        summary="A randomized placebo-controlled trial.",
        year=year,
        category=StudyCategory.controlled_human_trial,
        sample_size=sample_size,
        outcome=outcome,
        url=f"https://clinicaltrials.gov/study/{nct_id}",
        details=RegistryDetails(nct_id=nct_id, study_type="INTERVENTIONAL", enrollment=sample_size),
    )


def collection(*items: EvidenceItem, peptide_id: str = "bpc-157", name: str = "BPC-157") -> EvidenceCollection:
    return EvidenceCollection(
        peptide_id=peptide_id,
        name=name,
        aliases=["Body Protection Compound 157"],
        items=list(items),
    )


def sample_collection() -> EvidenceCollection:
    return collection(
        lit(
            "1001",
            "Randomized trial of BPC-157 in tendon repair",
            category=StudyCategory.controlled_human_trial,
            sample_size=80,
            outcome=OutcomeDirection.benefit,
            year=2021,
            first_author="smith",
        ),
        lit(
            "1002",
            "BPC-157 accelerates Achilles healing in rats",
            category=StudyCategory.animal_model,
            year=2019,
            first_author="jones",
        ),
    )


SAMPLE_BODY = (
    "<p>BPC-157 has limited human data [PMID:1001].</p>\n"
    "<h2>Human Research</h2>\n"
    "<p>One randomized trial with 80 participants reported improved tendon healing [PMID:1001].</p>\n"
    "<h2>Animal Research</h2>\n"
    "<p>Rat studies describe faster Achilles repair [PMID:1002].</p>"
)


def sample_reply(body: str = SAMPLE_BODY, references: list[str] | None = None) -> str:
    record = SynthesisRecord(
        sections=[
            SectionOutline(title="Human Research", plain_language_summary="One human study looked promising."),
            SectionOutline(title="Animal Research", plain_language_summary="Animal studies suggest faster healing."),
        ],
        references=references if references is not None else ["PMID:1001", "PMID:1002"],
        key_points=["Evidence in humans is limited."],
        limitations=["Only one human trial."],
    )
    return format_reply(record, body)


def sample_page(coll: EvidenceCollection | None = None, evidence_grade: EvidenceGrade | None = None) -> PageRecord:
    coll = coll or sample_collection()
    evidence_grade = evidence_grade or grade(coll)
    known = coll.by_id()
    return PageRecord(
        peptide_id=coll.peptide_id,
        name=coll.name,
        aliases=coll.aliases,
        grade=evidence_grade,
        summary="<p>BPC-157 has limited human data [PMID:1001].</p>",
        sections=[
            Section(
                title="Human Research",
                body="<p>One randomized trial with 80 participants reported improved tendon healing [PMID:1001].</p>",
                plain_language_summary="One human study looked promising.",
                order=0,
            ),
            Section(
                title="Animal Research",
                body="<p>Rat studies describe faster Achilles repair [PMID:1002].</p>",
                order=1,
            ),
        ],
        references=[known["PMID:1001"], known["PMID:1002"]],
        counts=PageCounts.from_collection(coll),
        disclaimers=["This content is for educational purposes only."],
        key_points=["Evidence in humans is limited."],
    )
