"""
Shared pytest fixtures for test suite.

Provides:
- Validator roster / registry factories
- Stub assessors (fixed score, slow, failing, counting)
- Request factory
"""

import pytest
import asyncio
import os
import sys
from typing import Dict, List, Optional

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from quorumgate.core.consensus.assessors import decision_for_score
from quorumgate.core.consensus.models import (
    ContentType,
    ValidationAssessment,
    ValidationRequest,
    ValidationScores,
    Validator,
    Vote,
)
from quorumgate.core.consensus.registry import ValidatorRegistry, default_validators


# =============================================================================
# ASSESSMENTS
# =============================================================================

def make_assessment(
    validator_id: str,
    overall: float,
    decision: Optional[Vote] = None,
    confidence: float = 0.9,
    recommendations: List[str] = (),
    latency: float = 0.05,
) -> ValidationAssessment:
    """Assessment with every metric set to `overall`."""
    if decision is None:
        decision = decision_for_score(overall)
    return ValidationAssessment(
        validator_id=validator_id,
        scores=ValidationScores.from_overall(overall),
        decision=decision,
        confidence=confidence,
        recommendations=list(recommendations),
        latency=latency,
    )


# =============================================================================
# STUB ASSESSORS
# =============================================================================

def fixed_assessor(validator_id: str, overall: float, **kwargs):
    """Async assessor that always returns the same assessment."""
    async def assess(request):
        return make_assessment(validator_id, overall, **kwargs)
    return assess


def slow_assessor(validator_id: str, delay: float, overall: float = 0.9):
    async def assess(request):
        await asyncio.sleep(delay)
        return make_assessment(validator_id, overall)
    return assess


def failing_assessor(exc: Exception):
    async def assess(request):
        raise exc
    return assess


class CountingAssessors:
    """Fixed-score assessors that record every call."""

    def __init__(self, scores: Dict[str, float], delay: float = 0.0):
        self.scores = scores
        self.delay = delay
        self.calls: List[str] = []

    def _make(self, validator_id: str):
        async def assess(request):
            self.calls.append(validator_id)
            if self.delay:
                await asyncio.sleep(self.delay)
            return make_assessment(validator_id, self.scores[validator_id])
        return assess

    def as_dict(self):
        return {vid: self._make(vid) for vid in self.scores}


# =============================================================================
# VALIDATORS
# =============================================================================

def uniform_validators(count: int, experience: float = 0.9) -> List[Validator]:
    """`count` validators v1..vN with equal experience and no specialties."""
    return [
        Validator(id=f"v{i}", name=f"Validator {i}", experience=experience)
        for i in range(1, count + 1)
    ]


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def roster():
    """The reference eight-member roster."""
    return default_validators()


@pytest.fixture
def registry(roster):
    return ValidatorRegistry(roster)


@pytest.fixture
def registry_factory():
    def create(count: int = 5, experience: float = 0.9) -> ValidatorRegistry:
        return ValidatorRegistry(uniform_validators(count, experience))
    return create


@pytest.fixture
def make_request():
    def create(
        request_id: str = "req-1",
        content_type: ContentType = ContentType.CODE,
        **kwargs,
    ) -> ValidationRequest:
        return ValidationRequest(
            id=request_id,
            content="def add(a, b):\n    return a + b\n",
            content_type=content_type,
            **kwargs,
        )
    return create


@pytest.fixture
def event_loop():
    """Create an event loop for async tests."""
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()
