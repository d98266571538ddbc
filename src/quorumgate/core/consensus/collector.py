"""
Score Collector - concurrent fan-out / fan-in of validator assessments.

COLLECTION FLOW:
================
1. One task per selected validator calls its assessor
2. Each call is bounded by its own timeout (mean latency x multiplier,
   never below the floor, never beyond the request deadline)
3. The collector joins on ALL tasks: success, timeout or error
4. If the request deadline passes first, unfinished calls are cancelled

Failures never abort the request. A validator that times out, raises, has no
assessor, or returns an assessment the verifier rejects contributes an
implicit abstain with zero confidence and is logged with its cause.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from quorumgate.core.consensus.assessors import Assessor
from quorumgate.core.consensus.constants import (
    MIN_VALIDATOR_TIMEOUT,
    TIMEOUT_LATENCY_MULTIPLIER,
    validator_timeout,
)
from quorumgate.core.consensus.errors import ConsensusError, ValidatorError, ValidatorTimeout
from quorumgate.core.consensus.models import ValidationAssessment, ValidationRequest, Validator
from quorumgate.core.consensus.verifier import AssessmentVerifier

logger = logging.getLogger(__name__)


@dataclass
class CollectionOutcome:
    """Everything the fan-out produced, in selection order."""
    assessments: List[ValidationAssessment] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)
    errored: Dict[str, str] = field(default_factory=dict)  # validator_id -> cause
    deadline_exceeded: bool = False

    @property
    def responsive(self) -> List[ValidationAssessment]:
        """Real assessments (validators that answered)."""
        return [a for a in self.assessments if not a.implicit]

    @property
    def implicit(self) -> List[ValidationAssessment]:
        return [a for a in self.assessments if a.implicit]

    def to_dict(self) -> dict:
        return {
            "responded": [a.validator_id for a in self.responsive],
            "timed_out": list(self.timed_out),
            "errored": dict(self.errored),
            "deadline_exceeded": self.deadline_exceeded,
        }


class ScoreCollector:
    """
    Invokes every selected validator's assessor concurrently.

    Usage:
        collector = ScoreCollector()
        outcome = await collector.collect(request, validators, assessors, deadline=30.0)
    """

    def __init__(
        self,
        verifier: Optional[AssessmentVerifier] = None,
        timeout_multiplier: float = TIMEOUT_LATENCY_MULTIPLIER,
        min_timeout: float = MIN_VALIDATOR_TIMEOUT,
    ):
        self.verifier = verifier or AssessmentVerifier()
        self.timeout_multiplier = timeout_multiplier
        self.min_timeout = min_timeout

    def timeout_for(self, validator: Validator) -> float:
        """Per-validator timeout derived from historical latency."""
        return validator_timeout(
            validator.performance.mean_latency,
            self.timeout_multiplier,
            self.min_timeout,
        )

    async def collect(
        self,
        request: ValidationRequest,
        validators: Sequence[Validator],
        assessors: Mapping[str, Assessor],
        per_validator_timeout: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> CollectionOutcome:
        """
        Collect one assessment per validator.

        Args:
            request: The request being validated
            validators: Selected panel (order is preserved in the outcome)
            assessors: validator id -> Assessor
            per_validator_timeout: Fixed timeout for every call (default:
                derived per validator from its mean latency)
            deadline: Overall deadline in seconds for the whole fan-out

        Returns:
            CollectionOutcome with exactly one assessment per validator
        """
        started = time.monotonic()
        tasks: Dict[str, asyncio.Task] = {}
        for validator in validators:
            timeout = per_validator_timeout or self.timeout_for(validator)
            if deadline is not None:
                timeout = min(timeout, deadline)
            tasks[validator.id] = asyncio.ensure_future(
                self._assess_one(request, validator, assessors.get(validator.id), timeout)
            )

        pending = set()
        if tasks:
            _, pending = await asyncio.wait(tasks.values(), timeout=deadline)
            for task in pending:
                task.cancel()
            if pending:
                # Let cancellation settle before moving on
                await asyncio.gather(*pending, return_exceptions=True)

        outcome = CollectionOutcome(deadline_exceeded=bool(pending))
        elapsed = time.monotonic() - started
        for validator in validators:
            task = tasks[validator.id]
            if task in pending:
                logger.warning(f"[COLLECT] {validator.id}: request deadline "
                               f"({deadline:.2f}s) passed before it answered",
                               extra={"failure": "deadline", "validator_id": validator.id})
                outcome.timed_out.append(validator.id)
                outcome.assessments.append(
                    ValidationAssessment.implicit_abstain(validator.id, "deadline", elapsed)
                )
                continue

            assessment, failure = task.result()
            if isinstance(failure, ValidatorTimeout):
                outcome.timed_out.append(validator.id)
            elif failure is not None:
                outcome.errored[validator.id] = str(failure)
            outcome.assessments.append(assessment)

        logger.info(f"[COLLECT] {request.id}: {len(outcome.responsive)}/{len(validators)} "
                    f"responded in {elapsed:.2f}s "
                    f"(timeouts={len(outcome.timed_out)}, errors={len(outcome.errored)})")
        return outcome

    async def _assess_one(
        self,
        request: ValidationRequest,
        validator: Validator,
        assessor: Optional[Assessor],
        timeout: float,
    ) -> Tuple[ValidationAssessment, Optional[ConsensusError]]:
        """Run one assessor call; failures become implicit abstains."""
        started = time.monotonic()
        try:
            if assessor is None:
                raise ValidatorError(validator.id, "no assessor registered")

            assessment = await asyncio.wait_for(assessor.assess(request), timeout)

            is_valid, reason = self.verifier.verify(assessment, validator.id)
            if not is_valid:
                raise ValidatorError(validator.id, reason)

            if not assessment.latency:
                assessment = replace(assessment, latency=time.monotonic() - started)
            return assessment, None

        except asyncio.TimeoutError:
            failure = ValidatorTimeout(validator.id, timeout)
            kind = "timeout"
        except ValidatorError as e:
            failure = e
            kind = "error"
        except Exception as e:
            failure = ValidatorError(validator.id, f"{type(e).__name__}: {e}")
            kind = "error"

        logger.warning(f"[COLLECT] {failure} - counted as abstain",
                       extra={"failure": kind, "validator_id": validator.id})
        latency = time.monotonic() - started
        return ValidationAssessment.implicit_abstain(validator.id, kind, latency), failure
