"""
Validator Registry and Selection

REGISTRY:
=========
The registry is the only shared mutable state of the consensus gate. It maps
validator id -> immutable Validator record. Updates swap in a new record under
the registry lock (copy-on-write), so:

- snapshot() returns a consistent view that later writes never touch
- a reader never observes a half-updated performance record
- validators are never deleted, only deactivated (audit trail preserved)

SELECTION:
==========
1. Active validators whose specialties match the request's content type
   (TYPE_SPECIALTIES table), highest experience first
2. Highest-experience remaining active validators until min_quorum is met
3. Fewer than the hard floor selected -> InsufficientValidators
"""

import logging
import threading
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from quorumgate.core.consensus.constants import (
    DEFAULT_MINIMUM_QUORUM,
    MIN_VALIDATOR_FLOOR,
    specialties_for_type,
)
from quorumgate.core.consensus.errors import InsufficientValidators, ValidatorNotFound
from quorumgate.core.consensus.models import Validator

logger = logging.getLogger(__name__)


class ValidatorRegistry:
    """
    Thread-safe store of validator records.

    Usage:
        registry = ValidatorRegistry(default_validators())
        registry.deactivate("ux-specialist")
        roster = registry.snapshot()
    """

    def __init__(self, validators: Optional[Iterable[Validator]] = None):
        self._validators: Dict[str, Validator] = {}
        self._lock = threading.RLock()
        for validator in validators or ():
            self.register(validator)

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register(self, validator: Validator) -> Validator:
        """
        Register a validator, or refresh an existing one.

        Re-registering an id keeps its accumulated performance record, so a
        roster reload never resets history.
        """
        with self._lock:
            existing = self._validators.get(validator.id)
            if existing is not None:
                validator = replace(validator, performance=existing.performance)
            self._validators[validator.id] = validator

        logger.info(f"[REGISTRY] Validator registered: {validator.id} "
                    f"(experience={validator.experience:.2f}, active={validator.active})")
        return validator

    def deactivate(self, validator_id: str) -> Validator:
        """Take a validator out of selection without deleting it."""
        return self.replace(validator_id, lambda v: replace(v, active=False))

    def activate(self, validator_id: str) -> Validator:
        return self.replace(validator_id, lambda v: replace(v, active=True))

    def replace(self, validator_id: str, update: Callable[[Validator], Validator]) -> Validator:
        """
        Atomically swap a validator record for update(record).

        Used by PerformanceTracker; the update function must return a new
        record and must not block.
        """
        with self._lock:
            current = self._validators.get(validator_id)
            if current is None:
                raise ValidatorNotFound(validator_id)
            updated = update(current)
            if updated.id != validator_id:
                raise ValueError(f"Update changed validator id {validator_id} -> {updated.id}")
            self._validators[validator_id] = updated
            return updated

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get(self, validator_id: str) -> Validator:
        with self._lock:
            validator = self._validators.get(validator_id)
        if validator is None:
            raise ValidatorNotFound(validator_id)
        return validator

    def snapshot(self, active_only: bool = True) -> Tuple[Validator, ...]:
        """Consistent view of the roster at this instant."""
        with self._lock:
            validators = tuple(self._validators.values())
        if active_only:
            return tuple(v for v in validators if v.active)
        return validators

    def __len__(self) -> int:
        with self._lock:
            return len(self._validators)

    def __contains__(self, validator_id: str) -> bool:
        with self._lock:
            return validator_id in self._validators


def _by_experience(validator: Validator):
    return (-validator.experience, validator.id)


class ValidatorSelector:
    """
    Picks the validator panel for a request from a registry snapshot.

    Selection has no side effects; the same snapshot always yields the same
    ordered panel.
    """

    def __init__(self, registry: ValidatorRegistry):
        self.registry = registry

    def select(
        self,
        request_type,
        min_quorum: int = DEFAULT_MINIMUM_QUORUM,
        floor: int = MIN_VALIDATOR_FLOOR,
    ) -> List[Validator]:
        """
        Select validators for a content type.

        Args:
            request_type: Content type tag; unknown types match no specialty
            min_quorum: Target panel size
            floor: Minimum acceptable panel size

        Returns:
            Ordered list of active validators (specialists first)

        Raises:
            InsufficientValidators: fewer than `floor` validators available
        """
        roster = self.registry.snapshot(active_only=True)
        wanted = specialties_for_type(request_type)

        specialists = sorted((v for v in roster if v.matches(wanted)), key=_by_experience)
        chosen = {v.id for v in specialists}
        fallbacks = sorted((v for v in roster if v.id not in chosen), key=_by_experience)

        selected = list(specialists)
        shortfall = max(0, min_quorum - len(selected))
        selected.extend(fallbacks[:shortfall])

        type_name = getattr(request_type, "value", request_type)
        if len(selected) < floor:
            logger.warning(f"[SELECT] Only {len(selected)} active validators for "
                           f"{type_name} (floor={floor})")
            raise InsufficientValidators(len(selected), floor, type_name)

        logger.debug(f"[SELECT] {type_name}: {len(specialists)} specialists + "
                     f"{len(selected) - len(specialists)} fallbacks: "
                     f"{[v.id for v in selected]}")
        return selected


def default_validators() -> List[Validator]:
    """
    The reference eight-member validator roster.

    Experience levels reflect seniority; every validator starts from the
    baseline performance record.
    """
    roster = [
        ("tech-architect", "Technical Architect",
         {"architecture", "scalability", "performance", "security"}, 0.95),
        ("senior-dev", "Senior Developer",
         {"implementation", "code-quality", "maintainability", "testing"}, 0.88),
        ("security-expert", "Security Expert",
         {"security", "compliance", "risk", "privacy"}, 0.92),
        ("ux-specialist", "UX Specialist",
         {"usability", "user-experience", "accessibility", "design"}, 0.85),
        ("business-analyst", "Business Analyst",
         {"requirements", "business-value", "stakeholder", "process"}, 0.87),
        ("qa-engineer", "QA Engineer",
         {"testing", "quality-assurance", "validation", "automation"}, 0.91),
        ("devops-expert", "DevOps Expert",
         {"deployment", "infrastructure", "monitoring", "scalability"}, 0.89),
        ("product-owner", "Product Owner",
         {"product-vision", "user-value", "market-fit", "prioritization"}, 0.83),
    ]
    return [
        Validator(id=vid, name=name, specialties=frozenset(tags), experience=exp)
        for vid, name, tags, exp in roster
    ]
