"""Evidence grade from the study designs behind a recommendation."""

from collections import Counter
from collections.abc import Iterable
from typing import Literal, Optional

EvidenceGrade = Literal["A", "B", "C", "D"]

GRADE_LABELS: dict[str, str] = {
    "A": "Strong Evidence",
    "B": "Moderate Evidence",
    "C": "Limited Evidence",
    "D": "Insufficient Evidence",
}

_SYNTHESIS = ("meta-analysis", "systematic-review")


def compute_evidence_grade(study_types: Iterable[Optional[str]]) -> EvidenceGrade:
    """Grade a multiset of study types.

    A: any meta-analysis or systematic review, or two or more RCTs.
    B: one RCT.
    C: two or more citations of lesser designs.
    D: zero or one citation.
    """
    types = list(study_types)
    counts = Counter(types)

    if any(counts[t] for t in _SYNTHESIS) or counts["rct"] >= 2:
        return "A"
    if counts["rct"] == 1:
        return "B"
    if len(types) >= 2:
        return "C"
    return "D"
