"""
Disagreement and recommendation reporting.

ConflictAnalyzer flags where validators disagree:
- decision disagreement when approve/reject/abstain is not unanimous
- any metric area whose population std dev across validators exceeds the
  conflict threshold (0.2 by default)

RecommendationAggregator merges the free-text recommendations of all
validators, folding near-identical strings together, and ranks them by how
many validators raised them.
"""

import re
from typing import Dict, List, Sequence, Tuple

import numpy as np

from quorumgate.core.consensus.constants import (
    CONFLICT_STD_THRESHOLD,
    DEFAULT_RECOMMENDATION_LIMIT,
    DISAGREEMENT_FOLLOW_UP,
)
from quorumgate.core.consensus.decision import tally
from quorumgate.core.consensus.models import CATEGORY_METRICS, ValidationAssessment

_WHITESPACE = re.compile(r"\s+")
_TRAILING = ".!;:, "


class ConflictAnalyzer:
    def __init__(self, std_threshold: float = CONFLICT_STD_THRESHOLD):
        self.std_threshold = std_threshold

    def decision_conflict(self, assessments: Sequence[ValidationAssessment]) -> List[str]:
        counts = tally(assessments)
        present = [(vote, n) for vote, n in counts.items() if n > 0]
        if len(present) <= 1:
            return []
        summary = ", ".join(f"{vote.value}({n})" for vote, n in present)
        return [f"Decision disagreement: {summary}"]

    def metric_dispersion(self, assessments: Sequence[ValidationAssessment]) -> Dict[str, float]:
        """Population std dev of each metric area across assessments."""
        if len(assessments) < 2:
            return {}
        dispersion = {}
        for category, metrics in CATEGORY_METRICS.items():
            for metric in metrics:
                values = np.sort([a.scores.values[category][metric] for a in assessments])
                dispersion[metric] = float(np.std(values))
        return dispersion

    def analyze(
        self,
        decision_set: Sequence[ValidationAssessment],
        scored: Sequence[ValidationAssessment],
    ) -> List[str]:
        """
        Args:
            decision_set: Assessments whose decisions count (incl. implicit abstains)
            scored: Assessments whose scores were aggregated
        """
        conflicts = self.decision_conflict(decision_set)
        for metric, std in self.metric_dispersion(scored).items():
            if std > self.std_threshold:
                conflicts.append(f"High disagreement on {metric} (std dev: {std:.2f})")
        return conflicts


def normalize_recommendation(text: str) -> str:
    """Fold case, whitespace and trailing punctuation."""
    return _WHITESPACE.sub(" ", text).strip().rstrip(_TRAILING).casefold()


class RecommendationAggregator:
    def __init__(self, limit: int = DEFAULT_RECOMMENDATION_LIMIT):
        self.limit = limit

    def rank(self, assessments: Sequence[ValidationAssessment]) -> List[Tuple[str, int]]:
        """
        (recommendation, distinct validator count), most frequent first.

        A validator repeating itself counts once. The first wording seen (in
        validator id order) is kept for display.
        """
        wording: Dict[str, str] = {}
        raised_by: Dict[str, set] = {}
        for assessment in sorted(assessments, key=lambda a: a.validator_id):
            for text in assessment.recommendations:
                key = normalize_recommendation(text)
                if not key:
                    continue
                wording.setdefault(key, _WHITESPACE.sub(" ", text).strip())
                raised_by.setdefault(key, set()).add(assessment.validator_id)

        ranked = sorted(raised_by, key=lambda k: (-len(raised_by[k]), k))
        return [(wording[k], len(raised_by[k])) for k in ranked]

    def aggregate(
        self,
        assessments: Sequence[ValidationAssessment],
        conflicts: Sequence[str] = (),
    ) -> List[str]:
        recommendations = []
        for text, count in self.rank(assessments)[:self.limit]:
            noun = "validator" if count == 1 else "validators"
            recommendations.append(f"{text} (mentioned by {count} {noun})")
        if conflicts:
            recommendations.append(DISAGREEMENT_FOLLOW_UP)
        return recommendations
