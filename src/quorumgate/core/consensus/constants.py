"""
Consensus Gate - Centralized Configuration Constants

This module defines ALL default thresholds and policy literals for the
validator consensus gate. Values are documented here and should be
referenced from here, not hardcoded elsewhere.

=============================================================================
DESIGN PRINCIPLES
=============================================================================

1. NO SINGLE VOTER: A quorum of independent validators is required before
   any decision other than insufficient_consensus is possible.

2. OUTLIERS LOSE WEIGHT, NOT QUORUM: Byzantine filtering removes an
   assessment from aggregation but the validator still counted as a
   responder.

3. FAIL OPEN: If outlier filtering would discard most of the evidence,
   filtering is skipped and the fact is recorded.

4. EXPLICIT POLICY: Every threshold that shapes the decision has a name and
   is copied into the result metadata.

=============================================================================
"""

# =============================================================================
# DECISION THRESHOLDS
# =============================================================================

DEFAULT_CONSENSUS_THRESHOLD = 0.66   # 66% of participants must agree
DEFAULT_QUALITY_THRESHOLD = 0.75     # Aggregate quality needed for approval

# A validator that scores below (quality_threshold - REJECT_MARGIN) rejects;
# between that and the quality threshold it abstains.
REJECT_MARGIN = 0.2

# Approval rate needed to send content back for revision instead of
# declaring no consensus.
REVISION_APPROVAL_RATE = 0.5

# Name of the decision policy implemented by DecisionEngine.decide().
# Bump the suffix whenever the policy table changes.
DECISION_POLICY = "quorum-majority-v1"
VOTING_METHOD = "weighted-agreement"

# Outcome when every participant abstains (unanimous abstain is agreement,
# but not agreement on anything actionable).
ALL_ABSTAIN_OUTCOME = "insufficient_consensus"

# =============================================================================
# QUORUM & SELECTION
# =============================================================================

DEFAULT_MINIMUM_QUORUM = 5           # Responders needed for a valid decision
MIN_VALIDATOR_FLOOR = 2              # Hard floor: below this, refuse the request

# Specialty tags that make a validator a preferred reviewer for each
# content type. Validators are matched if they hold ANY listed specialty.
TYPE_SPECIALTIES = {
    "specification": frozenset({"requirements", "business-value", "architecture", "product-vision"}),
    "design": frozenset({"architecture", "design", "user-experience", "security"}),
    "implementation": frozenset({"implementation", "testing", "security", "architecture"}),
    "documentation": frozenset({"usability", "requirements", "validation", "code-quality"}),
    "code": frozenset({"implementation", "testing", "security"}),
}

# =============================================================================
# BYZANTINE FILTERING
# =============================================================================

DEFAULT_DEVIATION_THRESHOLD = 0.3    # Max |overall - mean| before exclusion
MIN_FOR_FILTERING = 4                # Filtering needs at least 4 assessments

# =============================================================================
# TIMEOUTS
# =============================================================================

DEFAULT_REQUEST_TIMEOUT = 30.0       # Seconds for the whole fan-out
TIMEOUT_LATENCY_MULTIPLIER = 3.0     # Per-validator timeout = mean latency x 3
MIN_VALIDATOR_TIMEOUT = 1.0          # Never give a validator less than 1s

# =============================================================================
# CONFLICTS & RECOMMENDATIONS
# =============================================================================

CONFLICT_STD_THRESHOLD = 0.2         # Std dev above this is a conflict area
DEFAULT_RECOMMENDATION_LIMIT = 5     # Top-N recommendations returned
DISAGREEMENT_FOLLOW_UP = "Address validator disagreements through additional review"

# =============================================================================
# PERFORMANCE TRACKING
# =============================================================================

PERFORMANCE_LEARNING_RATE = 0.1      # EW update: m' = (1 - a) * m + a * observed

# Baseline record for newly registered validators
BASELINE_ACCURACY = 0.9
BASELINE_LATENCY_SECONDS = 0.1
BASELINE_AGREEMENT_RATE = 0.8
BASELINE_FALSE_POSITIVE_RATE = 0.05
BASELINE_FALSE_NEGATIVE_RATE = 0.03


def clamp_unit(value: float) -> float:
    """Clamp a score or rate into [0, 1]."""
    if value < 0.0:
        return 0.0
    if value > 1.0:
        return 1.0
    return float(value)


def specialties_for_type(content_type: str) -> frozenset:
    """
    Get the preferred specialty tags for a content type.

    Unknown content types match no specialty; selection then relies
    entirely on the experience fallback.

    Args:
        content_type: Content type tag (e.g. "code")

    Returns:
        Frozen set of specialty tags (empty if unknown)
    """
    key = getattr(content_type, "value", content_type)
    return TYPE_SPECIALTIES.get(key, frozenset())


def validator_timeout(
    mean_latency: float,
    multiplier: float = TIMEOUT_LATENCY_MULTIPLIER,
    floor: float = MIN_VALIDATOR_TIMEOUT,
) -> float:
    """
    Derive a per-validator timeout from its historical mean latency.

    Examples:
        >>> validator_timeout(0.1)   # Fast validator, floor applies
        1.0
        >>> validator_timeout(2.0)   # Slow validator
        6.0

    Args:
        mean_latency: Historical mean response latency in seconds
        multiplier: Latency multiplier
        floor: Minimum timeout in seconds

    Returns:
        Timeout in seconds
    """
    return max(floor, mean_latency * multiplier)
