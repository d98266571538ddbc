"""
Assessment capability adapters.

The consensus core never judges content itself. Each validator is backed by
an Assessor that turns a ValidationRequest into a ValidationAssessment: a rule
engine, an ML scorer, a human-review queue, or a remote service.

- Assessor: the abstract contract
- CallableAssessor: wraps a plain (sync or async) function
- RemoteAssessor: posts the request to an HTTP endpoint
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

import requests

from quorumgate.core.consensus.constants import DEFAULT_QUALITY_THRESHOLD, REJECT_MARGIN
from quorumgate.core.consensus.models import (
    ValidationAssessment,
    ValidationRequest,
    ValidationScores,
    Vote,
)

logger = logging.getLogger(__name__)


def decision_for_score(
    overall: float,
    quality_threshold: float = DEFAULT_QUALITY_THRESHOLD,
    reject_margin: float = REJECT_MARGIN,
) -> Vote:
    """
    Derive a validator decision from its overall score.

    - overall >= quality_threshold                  -> approve
    - overall <  quality_threshold - reject_margin  -> reject
    - in between                                    -> abstain

    Examples:
        >>> decision_for_score(0.80)
        <Vote.APPROVE: 'approve'>
        >>> decision_for_score(0.60)
        <Vote.ABSTAIN: 'abstain'>
        >>> decision_for_score(0.50)
        <Vote.REJECT: 'reject'>
    """
    if overall >= quality_threshold:
        return Vote.APPROVE
    if overall < quality_threshold - reject_margin:
        return Vote.REJECT
    return Vote.ABSTAIN


class Assessor(ABC):
    """Produces one validator's assessment of a request."""

    @abstractmethod
    async def assess(self, request: ValidationRequest) -> ValidationAssessment:
        """Assess the request. May raise or run past its timeout."""


class CallableAssessor(Assessor):
    """
    Adapts a function into an Assessor.

    The function receives the request and returns a ValidationAssessment
    (or an awaitable of one).
    """

    def __init__(self, fn: Callable[[ValidationRequest], Any]):
        self.fn = fn

    async def assess(self, request: ValidationRequest) -> ValidationAssessment:
        result = self.fn(request)
        if inspect.isawaitable(result):
            result = await result
        return result


def assessment_from_payload(
    validator_id: str,
    payload: Dict[str, Any],
    quality_threshold: float = DEFAULT_QUALITY_THRESHOLD,
    reject_margin: float = REJECT_MARGIN,
) -> ValidationAssessment:
    """
    Build an assessment from a JSON reply.

    Expected shape:
        {
          "scores": {"quality": {...}, "technical": {...}, "business": {...}}
                    or a single number applied to every metric,
          "decision": "approve" | "reject" | "abstain",   (optional)
          "confidence": 0.0-1.0,                          (optional, 0.5)
          "feedback": [...], "recommendations": [...]     (optional)
        }
    """
    raw_scores = payload["scores"]
    if isinstance(raw_scores, (int, float)):
        scores = ValidationScores.from_overall(raw_scores)
    else:
        scores = ValidationScores(raw_scores)

    decision = payload.get("decision")
    if decision is None:
        decision = decision_for_score(scores.overall, quality_threshold, reject_margin)

    return ValidationAssessment(
        validator_id=validator_id,
        scores=scores,
        decision=decision,
        confidence=payload.get("confidence", 0.5),
        feedback=payload.get("feedback", []),
        recommendations=payload.get("recommendations", []),
        latency=float(payload.get("latency", 0.0)),
    )


class RemoteAssessor(Assessor):
    """
    Delegates assessment to an HTTP service.

    The blocking `requests` call runs in a worker thread so concurrent
    validators do not serialize on each other. No retries: a failed call is
    simply a failed assessment.

    Usage:
        assessor = RemoteAssessor("http://reviewer:8000/assess", "security-expert")
        assessment = await assessor.assess(request)
    """

    def __init__(
        self,
        url: str,
        validator_id: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        quality_threshold: float = DEFAULT_QUALITY_THRESHOLD,
        reject_margin: float = REJECT_MARGIN,
    ):
        self.url = url
        self.validator_id = validator_id
        self.timeout = timeout
        self.session = session
        self.quality_threshold = quality_threshold
        self.reject_margin = reject_margin

    def _post(self, request: ValidationRequest) -> ValidationAssessment:
        http = self.session or requests
        response = http.post(
            self.url,
            json={"validator_id": self.validator_id, "request": request.to_dict()},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return assessment_from_payload(
            self.validator_id,
            response.json(),
            self.quality_threshold,
            self.reject_margin,
        )

    async def assess(self, request: ValidationRequest) -> ValidationAssessment:
        logger.debug(f"[REMOTE] {self.validator_id} -> {self.url} ({request.id})")
        return await asyncio.to_thread(self._post, request)
