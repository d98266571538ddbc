"""
QuorumGate Consensus Module

Reduces independent assessments from a panel of validator agents to one
approve / reject / revise decision:

1. **ValidatorSelector**: specialists for the content type first, then the
   most experienced remaining validators
2. **ScoreCollector**: concurrent fan-out with per-validator timeouts;
   failures become implicit abstains
3. **ByzantineFilter**: drops assessments too far from the mean
4. **Aggregator**: experience x confidence weighted scores
5. **DecisionEngine**: quorum-majority policy with a 66% agreement threshold
6. **PerformanceTracker**: exponentially-weighted validator performance

Architecture:
=============
- ConsensusValidator orchestrates one round per request id
- Validators are immutable records in a ValidatorRegistry (copy-on-write)
- Assessors are pluggable: plain callables, remote HTTP services, ...
- Observers are notified exactly once per completed request
"""

from quorumgate.core.consensus.aggregator import Aggregator, compute_weights
from quorumgate.core.consensus.analysis import ConflictAnalyzer, RecommendationAggregator
from quorumgate.core.consensus.assessors import (
    Assessor,
    CallableAssessor,
    RemoteAssessor,
    decision_for_score,
)
from quorumgate.core.consensus.byzantine import ByzantineFilter, FilterOutcome
from quorumgate.core.consensus.collector import CollectionOutcome, ScoreCollector
from quorumgate.core.consensus.config import ConsensusConfig
from quorumgate.core.consensus.decision import DecisionEngine, DecisionOutcome
from quorumgate.core.consensus.engine import ConsensusValidator, create_consensus_validator
from quorumgate.core.consensus.errors import (
    AggregationError,
    ConfigurationError,
    ConsensusError,
    InsufficientValidators,
    ValidatorError,
    ValidatorNotFound,
    ValidatorTimeout,
)
from quorumgate.core.consensus.inflight import InFlightTable
from quorumgate.core.consensus.models import (
    AggregatedScores,
    ConsensusDecision,
    ConsensusResult,
    ContentType,
    ValidationAssessment,
    ValidationRequest,
    ValidationScores,
    Validator,
    ValidatorPerformance,
    Vote,
)
from quorumgate.core.consensus.performance import PerformanceTracker
from quorumgate.core.consensus.registry import (
    ValidatorRegistry,
    ValidatorSelector,
    default_validators,
)
from quorumgate.core.consensus.verifier import AssessmentVerifier

__all__ = [
    "AggregatedScores",
    "AggregationError",
    "Aggregator",
    "AssessmentVerifier",
    "Assessor",
    "ByzantineFilter",
    "CallableAssessor",
    "CollectionOutcome",
    "ConfigurationError",
    "ConflictAnalyzer",
    "ConsensusConfig",
    "ConsensusDecision",
    "ConsensusError",
    "ConsensusResult",
    "ConsensusValidator",
    "ContentType",
    "DecisionEngine",
    "DecisionOutcome",
    "FilterOutcome",
    "InFlightTable",
    "InsufficientValidators",
    "PerformanceTracker",
    "RecommendationAggregator",
    "RemoteAssessor",
    "ScoreCollector",
    "ValidationAssessment",
    "ValidationRequest",
    "ValidationScores",
    "Validator",
    "ValidatorError",
    "ValidatorNotFound",
    "ValidatorPerformance",
    "ValidatorRegistry",
    "ValidatorSelector",
    "ValidatorTimeout",
    "Vote",
    "compute_weights",
    "create_consensus_validator",
    "decision_for_score",
    "default_validators",
]
