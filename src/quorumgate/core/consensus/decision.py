"""
Decision Engine

Applies the "quorum-majority-v1" policy (DECISION_POLICY):

1. quorum_count < minimum_quorum                          -> insufficient_consensus
2. approve_rate >= consensus_threshold
   AND aggregate overall >= quality_threshold             -> approved
3. reject_rate >= consensus_threshold                     -> rejected
4. approve_rate >= REVISION_APPROVAL_RATE (0.5)           -> requires_revision
5. otherwise (including unanimous abstain)                -> insufficient_consensus

Rates are computed over the decision set: filtered assessments plus the
implicit abstains of validators that failed to answer.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Sequence

from quorumgate.core.consensus.constants import (
    DEFAULT_CONSENSUS_THRESHOLD,
    DEFAULT_MINIMUM_QUORUM,
    DEFAULT_QUALITY_THRESHOLD,
    REVISION_APPROVAL_RATE,
)
from quorumgate.core.consensus.models import ConsensusDecision, ValidationAssessment, Vote


def tally(assessments: Sequence[ValidationAssessment]) -> Dict[Vote, int]:
    counts = Counter(a.decision for a in assessments)
    return {vote: counts.get(vote, 0) for vote in Vote}


def consensus_score(assessments: Sequence[ValidationAssessment]) -> float:
    """
    Agreement fraction: size of the largest decision bloc / participants.

    Unanimous abstain scores 1.0; an empty set scores 0.0.
    """
    if not assessments:
        return 0.0
    return max(tally(assessments).values()) / len(assessments)


@dataclass
class DecisionOutcome:
    decision: ConsensusDecision
    consensus_score: float
    approve_rate: float
    reject_rate: float
    counts: Dict[Vote, int] = field(default_factory=dict)
    quorum_met: bool = True

    def to_dict(self) -> dict:
        return {
            "decision": self.decision.value,
            "consensus_score": self.consensus_score,
            "approve_rate": self.approve_rate,
            "reject_rate": self.reject_rate,
            "counts": {vote.value: n for vote, n in self.counts.items()},
            "quorum_met": self.quorum_met,
        }


class DecisionEngine:
    """Turns vote counts and the aggregate score into a consensus decision."""

    def __init__(
        self,
        consensus_threshold: float = DEFAULT_CONSENSUS_THRESHOLD,
        quality_threshold: float = DEFAULT_QUALITY_THRESHOLD,
        minimum_quorum: int = DEFAULT_MINIMUM_QUORUM,
    ):
        self.consensus_threshold = consensus_threshold
        self.quality_threshold = quality_threshold
        self.minimum_quorum = minimum_quorum

    def decide(
        self,
        assessments: Sequence[ValidationAssessment],
        aggregate_overall: float,
        quorum_count: int = None,
    ) -> DecisionOutcome:
        """
        Decide on a decision set.

        Args:
            assessments: Decision set (filtered + implicit abstains)
            aggregate_overall: Weighted aggregate overall score
            quorum_count: Validators that answered (defaults to the number
                of non-implicit assessments in the set)
        """
        if quorum_count is None:
            quorum_count = sum(1 for a in assessments if not a.implicit)

        counts = tally(assessments)
        total = len(assessments)
        approve_rate = counts[Vote.APPROVE] / total if total else 0.0
        reject_rate = counts[Vote.REJECT] / total if total else 0.0
        score = consensus_score(assessments)

        quorum_met = quorum_count >= self.minimum_quorum
        if not quorum_met:
            decision = ConsensusDecision.INSUFFICIENT_CONSENSUS
        elif approve_rate >= self.consensus_threshold and aggregate_overall >= self.quality_threshold:
            decision = ConsensusDecision.APPROVED
        elif reject_rate >= self.consensus_threshold:
            decision = ConsensusDecision.REJECTED
        elif approve_rate >= REVISION_APPROVAL_RATE:
            decision = ConsensusDecision.REQUIRES_REVISION
        else:
            decision = ConsensusDecision.INSUFFICIENT_CONSENSUS

        return DecisionOutcome(
            decision=decision,
            consensus_score=score,
            approve_rate=approve_rate,
            reject_rate=reject_rate,
            counts=counts,
            quorum_met=quorum_met,
        )
