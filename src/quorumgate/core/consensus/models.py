"""
Consensus Gate Data Models

Dataclasses shared by every stage of the consensus pipeline:

    ValidationRequest -> ValidationAssessment (one per validator)
                      -> AggregatedScores -> ConsensusResult

All scores, rates and confidences are bounded to [0, 1]. Out-of-range values
are clamped on construction; NaN is left untouched so the verifier can reject
the assessment outright.
"""

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

from quorumgate.core.consensus.constants import (
    BASELINE_ACCURACY,
    BASELINE_AGREEMENT_RATE,
    BASELINE_FALSE_NEGATIVE_RATE,
    BASELINE_FALSE_POSITIVE_RATE,
    BASELINE_LATENCY_SECONDS,
    clamp_unit,
)


# Score categories and the metrics each one is made of.
CATEGORY_METRICS = {
    "quality": ("completeness", "accuracy", "clarity", "consistency"),
    "technical": ("feasibility", "performance", "security", "maintainability"),
    "business": ("requirements", "usability", "value", "risk"),
}

METRIC_AREAS = tuple(
    metric for metrics in CATEGORY_METRICS.values() for metric in metrics
)


class ContentType(str, Enum):
    """Kind of artifact submitted for validation."""
    SPECIFICATION = "specification"
    DESIGN = "design"
    IMPLEMENTATION = "implementation"
    DOCUMENTATION = "documentation"
    CODE = "code"


class Vote(str, Enum):
    """A single validator's decision."""
    APPROVE = "approve"
    REJECT = "reject"
    ABSTAIN = "abstain"


class ConsensusDecision(str, Enum):
    """Final outcome of a consensus round."""
    APPROVED = "approved"
    REJECTED = "rejected"
    REQUIRES_REVISION = "requires_revision"
    INSUFFICIENT_CONSENSUS = "insufficient_consensus"


def _bounded(value: float) -> float:
    value = float(value)
    if math.isnan(value):
        return value
    return clamp_unit(value)


@dataclass(frozen=True)
class ValidationScores:
    """
    Per-category metric scores produced by one validator.

    `values` maps category -> metric -> score. Every metric listed in
    CATEGORY_METRICS must be present.
    """
    values: Dict[str, Dict[str, float]]
    clamped: bool = field(default=False, compare=False)

    def __post_init__(self):
        unknown = set(self.values) - set(CATEGORY_METRICS)
        if unknown:
            raise ValueError(f"Unknown score categories: {sorted(unknown)}")

        normalized = {}
        clamped = False
        for category, metrics in CATEGORY_METRICS.items():
            given = self.values.get(category)
            if given is None:
                raise ValueError(f"Missing score category: {category}")
            normalized[category] = {}
            for metric in metrics:
                if metric not in given:
                    raise ValueError(f"Missing metric {category}.{metric}")
                raw = float(given[metric])
                bounded = _bounded(raw)
                if bounded != raw and not math.isnan(raw):
                    clamped = True
                normalized[category][metric] = bounded

        object.__setattr__(self, "values", normalized)
        object.__setattr__(self, "clamped", self.clamped or clamped)

    @classmethod
    def zeros(cls) -> "ValidationScores":
        return cls.from_overall(0.0)

    @classmethod
    def from_overall(cls, score: float) -> "ValidationScores":
        """Every metric set to the same score."""
        return cls({
            category: {metric: score for metric in metrics}
            for category, metrics in CATEGORY_METRICS.items()
        })

    @classmethod
    def from_categories(cls, **category_scores: float) -> "ValidationScores":
        """Every metric of a category set to that category's score."""
        return cls({
            category: {metric: category_scores[category] for metric in metrics}
            for category, metrics in CATEGORY_METRICS.items()
        })

    def flat(self) -> Dict[str, float]:
        """Metric name -> score, across all categories."""
        return {
            metric: score
            for metrics in self.values.values()
            for metric, score in metrics.items()
        }

    def category_mean(self, category: str) -> float:
        metrics = self.values[category]
        return math.fsum(metrics.values()) / len(metrics)

    @property
    def overall(self) -> float:
        """Mean of all metric scores."""
        scores = list(self.flat().values())
        return math.fsum(scores) / len(scores)

    def is_finite(self) -> bool:
        return all(math.isfinite(v) for v in self.flat().values())

    def to_dict(self) -> dict:
        result = {category: dict(metrics) for category, metrics in self.values.items()}
        result["overall"] = self.overall
        return result


@dataclass(frozen=True)
class ValidatorPerformance:
    """Rolling performance record of a validator."""
    accuracy: float = BASELINE_ACCURACY
    mean_latency: float = BASELINE_LATENCY_SECONDS  # seconds
    agreement_rate: float = BASELINE_AGREEMENT_RATE
    false_positive_rate: float = BASELINE_FALSE_POSITIVE_RATE
    false_negative_rate: float = BASELINE_FALSE_NEGATIVE_RATE

    def __post_init__(self):
        for name in ("accuracy", "agreement_rate", "false_positive_rate", "false_negative_rate"):
            object.__setattr__(self, name, clamp_unit(getattr(self, name)))
        object.__setattr__(self, "mean_latency", max(0.0, float(self.mean_latency)))

    def to_dict(self) -> dict:
        return {
            "accuracy": self.accuracy,
            "mean_latency": self.mean_latency,
            "agreement_rate": self.agreement_rate,
            "false_positive_rate": self.false_positive_rate,
            "false_negative_rate": self.false_negative_rate,
        }


@dataclass(frozen=True)
class Validator:
    """
    A validator agent known to the registry.

    Records are immutable: the registry swaps in a new record whenever
    performance is updated or the validator is (de)activated, so snapshots
    handed out earlier never change underneath their readers.
    """
    id: str
    name: str
    specialties: FrozenSet[str] = frozenset()
    experience: float = 0.5
    active: bool = True
    performance: ValidatorPerformance = field(default_factory=ValidatorPerformance)

    def __post_init__(self):
        object.__setattr__(self, "specialties", frozenset(self.specialties))
        object.__setattr__(self, "experience", clamp_unit(self.experience))

    def matches(self, specialties: Iterable[str]) -> bool:
        """Whether this validator holds any of the given specialties."""
        return not self.specialties.isdisjoint(specialties)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "specialties": sorted(self.specialties),
            "experience": self.experience,
            "active": self.active,
            "performance": self.performance.to_dict(),
        }


@dataclass(frozen=True)
class ValidationRequest:
    """
    An artifact submitted for consensus validation.

    `id` is supplied by the caller and used for in-flight deduplication.
    `category_targets` optionally sets a minimum aggregate score per category
    (e.g. {"technical": 0.8}); misses are reported, they do not change the
    decision.
    """
    id: str
    content: str
    content_type: ContentType
    category_targets: Dict[str, float] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "content_type", ContentType(self.content_type))
        unknown = set(self.category_targets) - set(CATEGORY_METRICS)
        if unknown:
            raise ValueError(f"Unknown target categories: {sorted(unknown)}")
        object.__setattr__(self, "category_targets", {
            category: clamp_unit(target)
            for category, target in self.category_targets.items()
        })

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "content_type": self.content_type.value,
            "category_targets": dict(self.category_targets),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ValidationAssessment:
    """
    One validator's assessment of one request.

    Implicit assessments are synthesized by the collector for validators that
    timed out or failed: they abstain with zero confidence and carry the
    failure reason.
    """
    validator_id: str
    scores: ValidationScores
    decision: Vote
    confidence: float
    feedback: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    latency: float = 0.0  # seconds
    implicit: bool = False
    failure: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "decision", Vote(self.decision))
        object.__setattr__(self, "confidence", _bounded(self.confidence))
        object.__setattr__(self, "feedback", list(self.feedback))
        object.__setattr__(self, "recommendations", list(self.recommendations))

    @classmethod
    def implicit_abstain(
        cls,
        validator_id: str,
        failure: str,
        latency: float = 0.0,
    ) -> "ValidationAssessment":
        return cls(
            validator_id=validator_id,
            scores=ValidationScores.zeros(),
            decision=Vote.ABSTAIN,
            confidence=0.0,
            feedback=[f"No assessment ({failure})"],
            latency=latency,
            implicit=True,
            failure=failure,
        )

    @property
    def overall(self) -> float:
        return self.scores.overall

    def to_dict(self) -> dict:
        return {
            "validator_id": self.validator_id,
            "scores": self.scores.to_dict(),
            "decision": self.decision.value,
            "confidence": self.confidence,
            "feedback": list(self.feedback),
            "recommendations": list(self.recommendations),
            "latency": self.latency,
            "implicit": self.implicit,
            "failure": self.failure,
        }


@dataclass
class AggregatedScores:
    """Weighted aggregate of a set of assessments."""
    metrics: Dict[str, Dict[str, float]]
    categories: Dict[str, float]
    overall: float
    weights: Dict[str, float] = field(default_factory=dict)
    uniform_weights: bool = False

    @classmethod
    def empty(cls) -> "AggregatedScores":
        return cls(
            metrics={c: {m: 0.0 for m in ms} for c, ms in CATEGORY_METRICS.items()},
            categories={c: 0.0 for c in CATEGORY_METRICS},
            overall=0.0,
        )

    def to_dict(self) -> dict:
        return {
            "metrics": {c: dict(ms) for c, ms in self.metrics.items()},
            "categories": dict(self.categories),
            "overall": self.overall,
            "weights": dict(self.weights),
            "uniform_weights": self.uniform_weights,
        }


@dataclass
class ConsensusResult:
    """Result of the consensus process for one request."""
    request_id: str
    decision: ConsensusDecision
    consensus_score: float
    quality_score: float
    participating_validators: int
    total_validators: int
    assessments: List[ValidationAssessment] = field(default_factory=list)
    excluded_assessments: List[ValidationAssessment] = field(default_factory=list)
    aggregated_scores: AggregatedScores = field(default_factory=AggregatedScores.empty)
    conflict_areas: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    processing_time: float = 0.0  # seconds
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    @property
    def approved(self) -> bool:
        return self.decision == ConsensusDecision.APPROVED

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "decision": self.decision.value,
            "consensus_score": self.consensus_score,
            "quality_score": self.quality_score,
            "participating_validators": self.participating_validators,
            "total_validators": self.total_validators,
            "assessments": [a.to_dict() for a in self.assessments],
            "excluded_assessments": [a.to_dict() for a in self.excluded_assessments],
            "aggregated_scores": self.aggregated_scores.to_dict(),
            "conflict_areas": list(self.conflict_areas),
            "recommendations": list(self.recommendations),
            "processing_time": self.processing_time,
            "metadata": dict(self.metadata),
        }
