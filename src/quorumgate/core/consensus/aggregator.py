"""
Weighted score aggregation.

Weight of an assessment = validator experience x assessment confidence,
renormalized to sum to 1 over the (post-filter) set. Weighting depends only
on validator reliability and assessment confidence, never on the scores
themselves.

Sums use math.fsum over values sorted by validator id, so the result is the
same whatever order the assessments arrived in.
"""

import logging
import math
from typing import Dict, Mapping, Sequence, Tuple

from quorumgate.core.consensus.errors import AggregationError
from quorumgate.core.consensus.models import (
    CATEGORY_METRICS,
    AggregatedScores,
    ValidationAssessment,
    Validator,
)

logger = logging.getLogger(__name__)


def raw_weight(assessment: ValidationAssessment, validator: Validator = None) -> float:
    """experience x confidence; unknown validators weigh by confidence alone."""
    experience = validator.experience if validator is not None else 1.0
    return experience * assessment.confidence


def compute_weights(
    assessments: Sequence[ValidationAssessment],
    validators: Mapping[str, Validator],
) -> Tuple[Dict[str, float], bool]:
    """
    Normalized weight per validator id.

    Returns:
        (weights, uniform) - uniform is True when every raw weight was zero
        and equal weights were used instead
    """
    if not assessments:
        return {}, False

    raw = {a.validator_id: raw_weight(a, validators.get(a.validator_id)) for a in assessments}
    total = math.fsum(raw[k] for k in sorted(raw))

    if total <= 0.0:
        share = 1.0 / len(raw)
        return {k: share for k in raw}, True

    return {k: w / total for k, w in raw.items()}, False


class Aggregator:
    """Reduces a filtered assessment set to per-metric, per-category and overall scores."""

    def aggregate(
        self,
        assessments: Sequence[ValidationAssessment],
        validators: Mapping[str, Validator],
    ) -> AggregatedScores:
        if not assessments:
            raise AggregationError("No assessments left to aggregate")

        ordered = sorted(assessments, key=lambda a: a.validator_id)
        weights, uniform = compute_weights(ordered, validators)
        if uniform:
            logger.warning(f"[AGGREGATE] All {len(ordered)} assessments carry zero weight - "
                           f"using equal weights")

        metrics = {}
        for category, names in CATEGORY_METRICS.items():
            metrics[category] = {
                metric: math.fsum(
                    a.scores.values[category][metric] * weights[a.validator_id]
                    for a in ordered
                )
                for metric in names
            }

        categories = {
            category: math.fsum(values.values()) / len(values)
            for category, values in metrics.items()
        }
        overall = math.fsum(a.overall * weights[a.validator_id] for a in ordered)

        return AggregatedScores(
            metrics=metrics,
            categories=categories,
            overall=min(1.0, max(0.0, overall)),
            weights=weights,
            uniform_weights=uniform,
        )
