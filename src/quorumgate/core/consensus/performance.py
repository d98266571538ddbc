"""
Validator performance tracking.

The only write path for Validator performance fields. Each observation moves
the stored metric by an exponentially-weighted step:

    metric' = (1 - alpha) * metric + alpha * observed

Writes are serialized per validator id and applied copy-on-write through the
registry, so a selection running concurrently sees either the old record or
the new one, never a mix.
"""

import logging
import threading
from dataclasses import replace
from typing import Dict, Optional

from quorumgate.core.consensus.constants import PERFORMANCE_LEARNING_RATE, clamp_unit
from quorumgate.core.consensus.models import ConsensusDecision, ConsensusResult, Validator, Vote
from quorumgate.core.consensus.registry import ValidatorRegistry

logger = logging.getLogger(__name__)

# Validator vote that agrees with each final decision
_MAJORITY_VOTE = {
    ConsensusDecision.APPROVED: Vote.APPROVE,
    ConsensusDecision.REJECTED: Vote.REJECT,
}

_RATE_FIELDS = ("accuracy", "agreement_rate", "false_positive_rate", "false_negative_rate")


def ew_update(current: float, observed: float, alpha: float) -> float:
    return (1.0 - alpha) * current + alpha * observed


class PerformanceTracker:
    """
    Usage:
        tracker = PerformanceTracker(registry)
        tracker.update_performance("qa-engineer", accuracy=1.0, latency=0.4)
    """

    def __init__(self, registry: ValidatorRegistry, learning_rate: float = PERFORMANCE_LEARNING_RATE):
        self.registry = registry
        self.learning_rate = learning_rate
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, validator_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(validator_id)
            if lock is None:
                lock = self._locks[validator_id] = threading.Lock()
            return lock

    def update_performance(
        self,
        validator_id: str,
        accuracy: Optional[float] = None,
        latency: Optional[float] = None,
        agreement: Optional[float] = None,
        false_positive_rate: Optional[float] = None,
        false_negative_rate: Optional[float] = None,
    ) -> Validator:
        """
        Fold observed metrics into a validator's record.

        Omitted observations leave their metric unchanged. Rates are clamped
        to [0, 1], latency (seconds) to >= 0.

        Raises:
            ValidatorNotFound: unknown validator id
        """
        alpha = self.learning_rate
        observed = {
            "accuracy": accuracy,
            "agreement_rate": agreement,
            "false_positive_rate": false_positive_rate,
            "false_negative_rate": false_negative_rate,
        }

        def apply(validator: Validator) -> Validator:
            perf = validator.performance
            changes = {}
            for name in _RATE_FIELDS:
                if observed[name] is not None:
                    changes[name] = ew_update(getattr(perf, name), clamp_unit(observed[name]), alpha)
            if latency is not None:
                changes["mean_latency"] = ew_update(perf.mean_latency, max(0.0, latency), alpha)
            return replace(validator, performance=replace(perf, **changes))

        with self._lock_for(validator_id):
            updated = self.registry.replace(validator_id, apply)

        logger.debug(f"[PERF] Updated {validator_id}: {updated.performance.to_dict()}")
        return updated

    def record_consensus(self, result: ConsensusResult) -> int:
        """
        Feed a finished round back into the registry.

        Every validator that answered gets its observed latency; when the
        round ended approved or rejected, it also gets an agreement
        observation (1.0 if its vote matched the outcome, else 0.0).

        Returns:
            Number of validators updated
        """
        majority = _MAJORITY_VOTE.get(result.decision)
        updated = 0
        for assessment in result.assessments + result.excluded_assessments:
            if assessment.implicit or assessment.validator_id not in self.registry:
                continue
            agreement = None
            if majority is not None:
                agreement = 1.0 if assessment.decision == majority else 0.0
            self.update_performance(
                assessment.validator_id,
                latency=assessment.latency,
                agreement=agreement,
            )
            updated += 1
        return updated
