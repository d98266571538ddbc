"""
Multi-Agent Consensus Validation Engine

Reduces independent assessments from a panel of validator agents to a single
accept / reject / revise decision for a generated artifact.

CONSENSUS FLOW:
===============
1. ValidatorSelector picks a panel (specialists first, then most experienced)
2. ScoreCollector polls every panel member concurrently and joins on all of
   them; failures and timeouts become implicit abstains
3. ByzantineFilter drops outlying assessments (when enough answered)
4. Aggregator computes experience x confidence weighted scores
5. DecisionEngine applies the quorum-majority policy
6. ConflictAnalyzer / RecommendationAggregator report disagreement and
   follow-ups
7. PerformanceTracker folds latency and agreement back into the registry
8. Observers are notified once with the finished ConsensusResult

A request id that is already being evaluated never triggers a second
fan-out: duplicate callers share the first evaluation's result.
"""

import asyncio
import inspect
import logging
import time
from collections import Counter
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from quorumgate.core.consensus.aggregator import Aggregator
from quorumgate.core.consensus.analysis import ConflictAnalyzer, RecommendationAggregator
from quorumgate.core.consensus.assessors import Assessor, CallableAssessor, RemoteAssessor
from quorumgate.core.consensus.byzantine import ByzantineFilter, FilterOutcome
from quorumgate.core.consensus.collector import ScoreCollector
from quorumgate.core.consensus.config import ConsensusConfig
from quorumgate.core.consensus.decision import DecisionEngine
from quorumgate.core.consensus.errors import AggregationError
from quorumgate.core.consensus.inflight import InFlightTable
from quorumgate.core.consensus.models import (
    AggregatedScores,
    ConsensusResult,
    ValidationRequest,
    Validator,
)
from quorumgate.core.consensus.performance import PerformanceTracker
from quorumgate.core.consensus.registry import (
    ValidatorRegistry,
    ValidatorSelector,
    default_validators,
)

logger = logging.getLogger(__name__)

ConsensusCallback = Callable[[ConsensusResult], Any]


class ConsensusValidator:
    """
    Coordinates a validator panel for one request at a time per request id.

    Usage:
        engine = ConsensusValidator(registry, assessors={"qa-engineer": qa, ...})
        engine.add_observer(lambda result: print(result.decision))

        result = await engine.validate(request)
    """

    def __init__(
        self,
        registry: ValidatorRegistry,
        assessors: Optional[Mapping[str, Union[Assessor, Callable]]] = None,
        config: Optional[ConsensusConfig] = None,
        inflight: Optional[InFlightTable] = None,
        tracker: Optional[PerformanceTracker] = None,
        **overrides: Any,
    ):
        """
        Initialize the engine.

        Args:
            registry: Validator roster (shared, may be updated concurrently)
            assessors: validator id -> Assessor (plain callables are wrapped)
            config: Validated configuration; keyword overrides are merged in
                and re-validated
            inflight: In-flight request table (one per engine by default)
            tracker: Performance tracker (created over `registry` by default)

        Raises:
            ConfigurationError: invalid thresholds
        """
        if config is None:
            config = ConsensusConfig(**overrides)
        elif overrides:
            config = ConsensusConfig(**{**config.model_dump(), **overrides})
        self.config = config

        self.registry = registry
        self.assessors: Dict[str, Assessor] = {}
        for validator_id, assessor in (assessors or {}).items():
            self.register_assessor(validator_id, assessor)

        self.selector = ValidatorSelector(registry)
        self.collector = ScoreCollector(
            timeout_multiplier=config.timeout_multiplier,
            min_timeout=config.min_validator_timeout,
        )
        self.byzantine = ByzantineFilter(config.deviation_threshold, config.min_for_filtering)
        self.aggregator = Aggregator()
        self.decision_engine = DecisionEngine(
            config.consensus_threshold,
            config.quality_threshold,
            config.minimum_quorum,
        )
        self.conflicts = ConflictAnalyzer(config.conflict_std_threshold)
        self.recommendations = RecommendationAggregator(config.recommendation_limit)
        self.tracker = tracker or PerformanceTracker(registry, config.learning_rate)

        self._inflight = inflight if inflight is not None else InFlightTable()
        self._observers: List[ConsensusCallback] = []
        self._decisions: Counter = Counter()

        logger.info(f"[CONSENSUS] Engine initialized: "
                    f"consensus_threshold={config.consensus_threshold}, "
                    f"quality_threshold={config.quality_threshold}, "
                    f"quorum={config.minimum_quorum}, "
                    f"byzantine={config.byzantine_fault_tolerance}")

    # =========================================================================
    # ASSESSORS & OBSERVERS
    # =========================================================================

    def register_assessor(self, validator_id: str, assessor: Union[Assessor, Callable]) -> None:
        """
        Attach the assessor that answers for `validator_id`.

        Remote assessors derive votes from scores, so they are switched to
        this engine's quality_threshold and reject_margin.
        """
        if isinstance(assessor, RemoteAssessor):
            assessor.quality_threshold = self.config.quality_threshold
            assessor.reject_margin = self.config.reject_margin
        elif not isinstance(assessor, Assessor):
            assessor = CallableAssessor(assessor)
        self.assessors[validator_id] = assessor

    def register_remote_assessor(
        self,
        validator_id: str,
        url: str,
        timeout: float = 10.0,
        session: Any = None,
    ) -> RemoteAssessor:
        assessor = RemoteAssessor(url, validator_id, timeout=timeout, session=session)
        self.register_assessor(validator_id, assessor)
        return assessor

    def add_observer(self, callback: ConsensusCallback) -> None:
        """
        Call `callback(result)` once for every completed request.

        Coroutine observers are awaited before the result is returned to
        callers. Observer exceptions are logged and never reach the caller.
        """
        self._observers.append(callback)

    def remove_observer(self, callback: ConsensusCallback) -> None:
        self._observers.remove(callback)

    async def _notify(self, result: ConsensusResult) -> None:
        for callback in list(self._observers):
            try:
                ret = callback(result)
                if inspect.isawaitable(ret):
                    await ret
            except Exception as e:
                logger.error(f"[CONSENSUS] Observer error for {result.request_id}: {e}")

    # =========================================================================
    # VALIDATION
    # =========================================================================

    async def validate(self, request: ValidationRequest) -> ConsensusResult:
        """
        Validate a request through multi-agent consensus.

        Concurrent calls with the same request id share one evaluation and
        receive the same result object.

        Raises:
            InsufficientValidators: fewer active validators than the floor
            AggregationError: filtering left nothing to aggregate
        """
        future, created = self._inflight.claim(
            request.id,
            lambda: asyncio.ensure_future(self._process(request)),
        )
        if not created:
            logger.info(f"[CONSENSUS] {request.id} already in flight - attaching to it")
        # A cancelled caller must not cancel the evaluation other callers share
        return await asyncio.shield(future)

    async def _process(self, request: ValidationRequest) -> ConsensusResult:
        started = time.monotonic()
        config = self.config
        logger.info(f"[CONSENSUS] Starting consensus validation: "
                    f"{request.content_type.value} ({request.id})")

        panel = self.selector.select(
            request.content_type,
            config.effective_selection_size,
            config.validator_floor,
        )
        validators: Dict[str, Validator] = {v.id: v for v in panel}

        collected = await self.collector.collect(
            request,
            panel,
            self.assessors,
            deadline=config.request_timeout,
        )
        responsive = collected.responsive

        if config.byzantine_fault_tolerance:
            filtered = self.byzantine.filter(responsive)
        else:
            filtered = FilterOutcome(kept=list(responsive))

        if responsive:
            if not filtered.kept:
                raise AggregationError(f"Filtering left no assessments for {request.id}")
            aggregated = self.aggregator.aggregate(filtered.kept, validators)
        else:
            aggregated = AggregatedScores.empty()

        decision_set = filtered.kept + collected.implicit
        outcome = self.decision_engine.decide(
            decision_set,
            aggregated.overall,
            quorum_count=len(responsive),
        )
        conflict_areas = self.conflicts.analyze(decision_set, filtered.kept)
        recommendations = self.recommendations.aggregate(filtered.kept, conflict_areas)

        unmet_criteria = {
            category: {"target": target, "actual": aggregated.categories[category]}
            for category, target in request.category_targets.items()
            if aggregated.categories[category] < target
        }

        metadata = config.policy_metadata()
        metadata.update({
            "responded": len(responsive),
            "quorum_met": outcome.quorum_met,
            "vote_counts": outcome.to_dict()["counts"],
            "byzantine_excluded": [a.validator_id for a in filtered.excluded],
            "filter_applied": filtered.applied,
            "filter_fail_open": filtered.fail_open,
            "timed_out": list(collected.timed_out),
            "errored": dict(collected.errored),
            "deadline_exceeded": collected.deadline_exceeded,
            "uniform_weights": aggregated.uniform_weights,
            "no_responsive_assessments": not responsive,
            "unmet_criteria": unmet_criteria,
        })

        result = ConsensusResult(
            request_id=request.id,
            decision=outcome.decision,
            consensus_score=outcome.consensus_score,
            quality_score=aggregated.overall,
            participating_validators=len(filtered.kept),
            total_validators=len(panel),
            assessments=decision_set,
            excluded_assessments=list(filtered.excluded),
            aggregated_scores=aggregated,
            conflict_areas=conflict_areas,
            recommendations=recommendations,
            processing_time=time.monotonic() - started,
            metadata=metadata,
        )

        logger.info(f"[CONSENSUS] Consensus validation complete: {result.decision.value} "
                    f"({result.processing_time * 1000:.0f}ms) "
                    f"consensus={result.consensus_score:.1%} quality={result.quality_score:.1%} "
                    f"participants={result.participating_validators}/{result.total_validators}")

        if config.track_performance:
            self.tracker.record_consensus(result)

        self._decisions[result.decision] += 1
        await self._notify(result)
        return result

    # =========================================================================
    # PERFORMANCE
    # =========================================================================

    def update_validator_performance(
        self,
        validator_id: str,
        accuracy: Optional[float] = None,
        latency: Optional[float] = None,
        agreement: Optional[float] = None,
        false_positive_rate: Optional[float] = None,
        false_negative_rate: Optional[float] = None,
    ) -> Validator:
        """Apply later feedback (e.g. a human audit) to a validator's record."""
        return self.tracker.update_performance(
            validator_id,
            accuracy=accuracy,
            latency=latency,
            agreement=agreement,
            false_positive_rate=false_positive_rate,
            false_negative_rate=false_negative_rate,
        )

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def get_validator_metrics(self) -> dict:
        """Roster-level averages, specialty coverage and configuration."""
        everyone = self.registry.snapshot(active_only=False)
        active = [v for v in everyone if v.active]

        def average(values: List[float]) -> float:
            return sum(values) / len(values) if values else 0.0

        by_specialty: Dict[str, int] = {}
        for validator in active:
            for specialty in sorted(validator.specialties):
                by_specialty[specialty] = by_specialty.get(specialty, 0) + 1

        return {
            "total_validators": len(everyone),
            "active_validators": len(active),
            "average_experience": average([v.experience for v in active]),
            "average_accuracy": average([v.performance.accuracy for v in active]),
            "validators_by_specialty": by_specialty,
            "performance_metrics": {
                "average_latency": average([v.performance.mean_latency for v in active]),
                "average_agreement_rate": average([v.performance.agreement_rate for v in active]),
                "average_false_positive_rate": average([v.performance.false_positive_rate for v in active]),
                "average_false_negative_rate": average([v.performance.false_negative_rate for v in active]),
            },
            "configuration": self.config.policy_metadata(),
        }

    def get_stats(self) -> dict:
        return {
            "validations_completed": sum(self._decisions.values()),
            "decisions": {d.value: n for d, n in self._decisions.items()},
            "in_flight": len(self._inflight),
            "registered_validators": len(self.registry),
            "active_validators": len(self.registry.snapshot()),
            "assessors": len(self.assessors),
            "observers": len(self._observers),
        }


def create_consensus_validator(
    registry: Optional[ValidatorRegistry] = None,
    assessors: Optional[Mapping[str, Union[Assessor, Callable]]] = None,
    **config: Any,
) -> ConsensusValidator:
    """Create an engine, using the reference roster when no registry is given."""
    if registry is None:
        registry = ValidatorRegistry(default_validators())
    return ConsensusValidator(registry, assessors, **config)
