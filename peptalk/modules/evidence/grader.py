"""Rule-based evidence grade.

Pure function of the collection and the thresholds: no I/O, no clock, no
randomness. The base level is the highest rule that fires:

  high      >= 2 controlled human trials with n >= 50 agreeing on outcome
  moderate  >= 1 controlled human trial, combined n >= 50
  low       any human evidence, or >= 5 animal / in-vitro studies
  very-low  everything else

Caps then lower the base: conflicting trial outcomes cap at moderate, and a
majority of human studies without a sample size caps at low. Every rule only
looks at counts that grow when a qualifying trial is added, so adding one can
never lower the grade.

The grade also carries upgrade hints: what more evidence would lift the
final level one step.
"""

from __future__ import annotations

from collections import Counter

from peptalk.core.config import GraderThresholds
from peptalk.modules.evidence.schemas import (
    HUMAN_CATEGORIES,
    PRECLINICAL_CATEGORIES,
    EvidenceCollection,
    EvidenceGrade,
    EvidenceItem,
    GradeLevel,
    GradeRule,
    OutcomeDirection,
    StudyCategory,
)

_RULE_TEXT: dict[GradeRule, str] = {
    GradeRule.no_evidence: "No usable studies were retrieved.",
    GradeRule.preclinical_only: "Only {preclinical} preclinical or unclassified studies; no human data.",
    GradeRule.limited_human_evidence: (
        "{human} human studies, but controlled trials do not reach a combined sample of {moderate_combined}."
    ),
    GradeRule.preclinical_body: "No qualifying human trials; {preclinical} preclinical studies.",
    GradeRule.controlled_trial_sample: (
        "{trials} controlled human trials with a combined sample of {combined}."
    ),
    GradeRule.replicated_controlled_trials: (
        "{agreeing} controlled human trials with n >= {min_trial_sample} agree on a {direction} outcome."
    ),
    GradeRule.cap_conflicting_outcomes: "Controlled trials report conflicting outcomes ({directions}).",
    GradeRule.cap_missing_sample_sizes: (
        "{missing} of {human} human studies report no sample size."
    ),
}

_CAP_LEVEL: dict[GradeRule, GradeLevel] = {
    GradeRule.cap_conflicting_outcomes: GradeLevel.moderate,
    GradeRule.cap_missing_sample_sizes: GradeLevel.low,
}


def _known_directions(items: list[EvidenceItem]) -> Counter[OutcomeDirection]:
    return Counter(i.outcome for i in items if i.outcome is not OutcomeDirection.unknown)


def grade(
    collection: EvidenceCollection,
    thresholds: GraderThresholds | None = None,
) -> EvidenceGrade:
    t = thresholds or GraderThresholds()
    items = collection.items

    trials = [i for i in items if i.category is StudyCategory.controlled_human_trial]
    human = [i for i in items if i.category in HUMAN_CATEGORIES]
    preclinical = [i for i in items if i.category in PRECLINICAL_CATEGORIES]
    qualifying = [i for i in trials if i.sample_size and i.sample_size >= t.min_trial_sample]
    combined = sum(i.sample_size for i in trials if i.sample_size)

    qualifying_directions = _known_directions(qualifying)
    dominant, agreeing = (None, 0)
    if qualifying_directions:
        dominant, agreeing = qualifying_directions.most_common(1)[0]

    context = {
        "preclinical": len(items) - len(human),
        "human": len(human),
        "trials": len(trials),
        "combined": combined,
        "moderate_combined": t.moderate_combined_sample,
        "min_trial_sample": t.min_trial_sample,
        "agreeing": agreeing,
        "direction": dominant.value if dominant else "",
        "directions": "",
        "missing": 0,
    }

    # Base level
    if not items:
        level, rule = GradeLevel.very_low, GradeRule.no_evidence
    elif agreeing >= t.replication_count:
        level, rule = GradeLevel.high, GradeRule.replicated_controlled_trials
    elif trials and combined >= t.moderate_combined_sample:
        level, rule = GradeLevel.moderate, GradeRule.controlled_trial_sample
    elif human:
        level, rule = GradeLevel.low, GradeRule.limited_human_evidence
    elif len(preclinical) >= t.preclinical_body:
        level, rule = GradeLevel.low, GradeRule.preclinical_body
    else:
        level, rule = GradeLevel.very_low, GradeRule.preclinical_only

    # Caps
    caps: list[GradeRule] = []
    trial_directions = _known_directions(trials)
    if len(trial_directions) > 1:
        caps.append(GradeRule.cap_conflicting_outcomes)
        context["directions"] = " vs ".join(sorted(d.value for d in trial_directions))

    missing = sum(1 for i in human if i.sample_size is None)
    if human and missing * 2 > len(human):
        caps.append(GradeRule.cap_missing_sample_sizes)
        context["missing"] = missing

    final_level, final_rule = level, rule
    for cap in caps:
        cap_level = _CAP_LEVEL[cap]
        if cap_level.rank < final_level.rank:
            final_level, final_rule = cap_level, cap

    sentences = [_RULE_TEXT[rule].format(**context)]
    sentences.extend(_RULE_TEXT[cap].format(**context) for cap in caps)
    rationale = f"{final_level.value} ({final_rule.value}): " + " ".join(sentences)

    hints: list[str] = []
    if final_level is GradeLevel.very_low:
        if not human:
            hints.append("1 human study to reach low")
        short = t.preclinical_body - len(preclinical)
        if short > 0:
            hints.append(f"{short} more animal or in-vitro studies to reach low")
    elif final_level is GradeLevel.low:
        if GradeRule.cap_missing_sample_sizes in caps:
            needed = missing - len(human) // 2
            hints.append(f"sample sizes for {needed} more human study(ies) to lift the cap at low")
        if not trials:
            hints.append(f"1 controlled human trial with n >= {t.moderate_combined_sample} to reach moderate")
        elif combined < t.moderate_combined_sample:
            hints.append(
                f"{t.moderate_combined_sample - combined} more controlled-trial participants to reach moderate"
            )
    elif final_level is GradeLevel.moderate:
        if GradeRule.cap_conflicting_outcomes in caps:
            hints.append("consistent outcomes across controlled trials to reach high")
        needed = t.replication_count - agreeing
        if needed > 0:
            hints.append(
                f"{needed} more controlled human trial(s) with n >= {t.min_trial_sample} "
                "agreeing on outcome to reach high"
            )

    return EvidenceGrade(
        level=final_level,
        rule=final_rule,
        rationale=rationale,
        caps=tuple(caps),
        upgrade_hints=tuple(hints),
    )
