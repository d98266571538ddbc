"""
Byzantine Filter

Removes statistically outlying assessments before aggregation so a single
unreliable or adversarial validator cannot drag the aggregate.

Rule:
- Fewer than `min_for_filtering` assessments: keep everything
- Otherwise drop any assessment whose overall score deviates by more than
  deviation_threshold from the mean of the OTHER assessments (leave-one-out),
  so an outlier does not pull the reference point toward itself
- If fewer than min_for_filtering / 2 would survive, keep everything
  (fail open) and flag it

The filter looks at the completed set only, so the outcome does not depend
on arrival order.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np

from quorumgate.core.consensus.constants import DEFAULT_DEVIATION_THRESHOLD, MIN_FOR_FILTERING
from quorumgate.core.consensus.models import ValidationAssessment

logger = logging.getLogger(__name__)


@dataclass
class FilterOutcome:
    kept: List[ValidationAssessment] = field(default_factory=list)
    excluded: List[ValidationAssessment] = field(default_factory=list)
    mean: float = 0.0        # Group mean, reported only
    applied: bool = False    # Filtering was active for this call
    fail_open: bool = False  # Filtering was skipped to avoid a degenerate set

    def to_dict(self) -> dict:
        return {
            "excluded": [a.validator_id for a in self.excluded],
            "mean": self.mean,
            "applied": self.applied,
            "fail_open": self.fail_open,
        }


class ByzantineFilter:
    """
    Leave-one-out deviation outlier filter.

    Usage:
        outcome = ByzantineFilter().filter(assessments)
        aggregate(outcome.kept)
    """

    def __init__(
        self,
        deviation_threshold: float = DEFAULT_DEVIATION_THRESHOLD,
        min_for_filtering: int = MIN_FOR_FILTERING,
    ):
        self.deviation_threshold = deviation_threshold
        self.min_for_filtering = min_for_filtering

    def filter(self, assessments: Sequence[ValidationAssessment]) -> FilterOutcome:
        assessments = list(assessments)
        if not assessments:
            return FilterOutcome()

        overall = np.array([a.overall for a in assessments], dtype=float)
        mean = float(np.mean(np.sort(overall)))

        # A lone assessment has no others to compare against
        if len(assessments) < max(self.min_for_filtering, 2):
            return FilterOutcome(kept=assessments, mean=mean)

        # Each score is compared with the mean of the rest
        total = math.fsum(overall)
        rest_means = (total - overall) / (len(assessments) - 1)
        deviations = np.abs(overall - rest_means)
        keep_mask = deviations <= self.deviation_threshold
        kept = [a for a, keep in zip(assessments, keep_mask) if keep]
        excluded = [a for a, keep in zip(assessments, keep_mask) if not keep]

        if len(kept) < self.min_for_filtering / 2:
            logger.warning(f"[FILTER] Filtering would leave {len(kept)}/{len(assessments)} "
                           f"assessments - skipped (fail open)")
            return FilterOutcome(kept=assessments, mean=mean, applied=True, fail_open=True)

        for a, rest_mean, keep in zip(assessments, rest_means, keep_mask):
            if not keep:
                logger.info(f"[FILTER] Excluded {a.validator_id}: overall={a.overall:.3f}, "
                            f"mean of others={rest_mean:.3f}, threshold={self.deviation_threshold}")

        return FilterOutcome(kept=kept, excluded=excluded, mean=mean, applied=True)
