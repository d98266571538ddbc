"""
Consensus gate error taxonomy.

Structural failures (not enough validators, nothing to aggregate, bad
configuration) propagate to the caller. Per-validator failures
(ValidatorTimeout, ValidatorError) are absorbed by the collector and turned
into implicit abstains.
"""

from typing import Optional


class ConsensusError(Exception):
    """Base class for all consensus gate errors."""


class InsufficientValidators(ConsensusError):
    """Fewer validators available than the hard floor."""

    def __init__(self, available: int, required: int, content_type: Optional[str] = None):
        self.available = available
        self.required = required
        self.content_type = content_type
        super().__init__(
            f"Only {available} validator(s) available for "
            f"{content_type or 'request'} (need at least {required})"
        )


class ValidatorTimeout(ConsensusError):
    """A validator did not answer within its timeout."""

    def __init__(self, validator_id: str, timeout: float):
        self.validator_id = validator_id
        self.timeout = timeout
        super().__init__(f"Validator {validator_id} timed out after {timeout:.2f}s")


class ValidatorError(ConsensusError):
    """A validator raised or returned an unusable assessment."""

    def __init__(self, validator_id: str, cause: str):
        self.validator_id = validator_id
        self.cause = cause
        super().__init__(f"Validator {validator_id} failed: {cause}")


class AggregationError(ConsensusError):
    """Nothing left to aggregate after filtering."""


class ConfigurationError(ConsensusError, ValueError):
    """Configuration value outside its valid range."""


class ValidatorNotFound(ConsensusError, KeyError):
    """No validator registered under the given id."""

    def __init__(self, validator_id: str):
        self.validator_id = validator_id
        super().__init__(f"Validator {validator_id} not found")

    def __str__(self) -> str:
        return f"Validator {self.validator_id} not found"
