"""
Consensus gate configuration.

Validated eagerly at construction: an out-of-range threshold is a
ConfigurationError when the engine is built, never at call time.
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quorumgate.core.consensus.constants import (
    ALL_ABSTAIN_OUTCOME,
    CONFLICT_STD_THRESHOLD,
    DECISION_POLICY,
    DEFAULT_CONSENSUS_THRESHOLD,
    DEFAULT_DEVIATION_THRESHOLD,
    DEFAULT_MINIMUM_QUORUM,
    DEFAULT_QUALITY_THRESHOLD,
    DEFAULT_RECOMMENDATION_LIMIT,
    DEFAULT_REQUEST_TIMEOUT,
    MIN_FOR_FILTERING,
    MIN_VALIDATOR_FLOOR,
    MIN_VALIDATOR_TIMEOUT,
    PERFORMANCE_LEARNING_RATE,
    REJECT_MARGIN,
    REVISION_APPROVAL_RATE,
    TIMEOUT_LATENCY_MULTIPLIER,
    VOTING_METHOD,
)
from quorumgate.core.consensus.errors import ConfigurationError

ENV_PREFIX = "QUORUMGATE_"


class ConsensusConfig(BaseModel):
    """Thresholds and policy knobs of a ConsensusValidator."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    consensus_threshold: float = Field(DEFAULT_CONSENSUS_THRESHOLD, ge=0.0, le=1.0)
    quality_threshold: float = Field(DEFAULT_QUALITY_THRESHOLD, ge=0.0, le=1.0)
    byzantine_fault_tolerance: bool = True
    minimum_quorum: int = Field(DEFAULT_MINIMUM_QUORUM, ge=2)
    deviation_threshold: float = Field(DEFAULT_DEVIATION_THRESHOLD, gt=0.0, le=1.0)
    min_for_filtering: int = Field(MIN_FOR_FILTERING, ge=1)
    selection_size: Optional[int] = Field(None, ge=2, description="Validators to poll (defaults to minimum_quorum)")
    validator_floor: int = Field(MIN_VALIDATOR_FLOOR, ge=1)
    request_timeout: float = Field(DEFAULT_REQUEST_TIMEOUT, gt=0.0, description="Overall deadline in seconds")
    timeout_multiplier: float = Field(TIMEOUT_LATENCY_MULTIPLIER, gt=0.0)
    min_validator_timeout: float = Field(MIN_VALIDATOR_TIMEOUT, gt=0.0)
    conflict_std_threshold: float = Field(CONFLICT_STD_THRESHOLD, gt=0.0, le=1.0)
    recommendation_limit: int = Field(DEFAULT_RECOMMENDATION_LIMIT, ge=1)
    learning_rate: float = Field(PERFORMANCE_LEARNING_RATE, gt=0.0, le=1.0)
    track_performance: bool = True
    reject_margin: float = Field(REJECT_MARGIN, ge=0.0, le=1.0)

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid consensus configuration: {e}") from e

    @property
    def effective_selection_size(self) -> int:
        """Validators to poll: never fewer than the quorum."""
        return max(self.selection_size or self.minimum_quorum, self.minimum_quorum)

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides: Any) -> "ConsensusConfig":
        """
        Build a config from environment variables.

        Each field is read from ``{prefix}{FIELD_NAME}`` (e.g.
        QUORUMGATE_CONSENSUS_THRESHOLD=0.8). Explicit keyword overrides win
        over the environment. Values are parsed by pydantic, so "true"/"1"
        work for booleans.
        """
        data: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is not None and raw != "":
                data[name] = raw
        data.update(overrides)
        return cls(**data)

    def policy_metadata(self) -> Dict[str, Any]:
        """Thresholds and policy constants recorded on every result."""
        return {
            "voting_method": VOTING_METHOD,
            "decision_policy": DECISION_POLICY,
            "consensus_threshold": self.consensus_threshold,
            "quality_threshold": self.quality_threshold,
            "byzantine_fault_tolerance": self.byzantine_fault_tolerance,
            "minimum_quorum": self.minimum_quorum,
            "deviation_threshold": self.deviation_threshold,
            "min_for_filtering": self.min_for_filtering,
            "revision_approval_rate": REVISION_APPROVAL_RATE,
            "reject_margin": self.reject_margin,
            "all_abstain_outcome": ALL_ABSTAIN_OUTCOME,
        }
