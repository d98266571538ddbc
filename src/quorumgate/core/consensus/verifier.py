"""
Assessment Verifier

Enforces UNIVERSAL sanity rules on every assessment an assessor returns,
regardless of how it was produced (rules, ML model, human reviewer, remote
service). An assessment that fails a check is treated as a validator error:
the validator is downgraded to an implicit abstain for that request.

Checks:
1. The result is a ValidationAssessment
2. It was produced for the validator that was asked
3. It is a real (not synthetic) assessment
4. Every score and the confidence are finite numbers

Out-of-range values are not failures: the models clamp them into [0, 1]. The
verifier only reports that clamping happened.
"""

import logging
import math
from typing import Any, Tuple

from quorumgate.core.consensus.models import ValidationAssessment

logger = logging.getLogger(__name__)


class AssessmentVerifier:
    """
    Verifies assessments returned by validators.

    Usage:
        verifier = AssessmentVerifier()
        is_valid, reason = verifier.verify(assessment, "qa-engineer")
    """

    def verify(self, assessment: Any, validator_id: str) -> Tuple[bool, str]:
        """
        Verify an assessment.

        Args:
            assessment: Whatever the assessor returned
            validator_id: The validator that was asked

        Returns:
            (is_valid, reason) tuple
        """
        # =====================================================================
        # UNIVERSAL CHECK 1: Type
        # =====================================================================
        if not isinstance(assessment, ValidationAssessment):
            return False, f"Expected ValidationAssessment, got {type(assessment).__name__}"

        # =====================================================================
        # UNIVERSAL CHECK 2: Identity
        # =====================================================================
        if assessment.validator_id != validator_id:
            return False, (
                f"Assessment signed by {assessment.validator_id}, "
                f"expected {validator_id}"
            )

        # =====================================================================
        # UNIVERSAL CHECK 3: Not synthetic
        # =====================================================================
        # Only the collector may create implicit abstains.
        if assessment.implicit:
            return False, "Assessor returned a synthetic assessment"

        # =====================================================================
        # UNIVERSAL CHECK 4: Finite values
        # =====================================================================
        if not assessment.scores.is_finite():
            return False, "Non-finite score in assessment"
        if not math.isfinite(assessment.confidence):
            return False, "Non-finite confidence in assessment"

        if assessment.scores.clamped:
            logger.warning(f"[VERIFY] {validator_id}: scores outside [0, 1] were clamped")

        return True, "Assessment valid"
