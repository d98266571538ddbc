"""
End-to-end tests for the consensus engine.

Covers the reference scenarios:
- A: one adversarial validator among five is filtered out, content approved
- B: four validators abstain, no actionable consensus
- C: empty roster, request refused
- D: one of five validators times out, round still completes
plus in-flight deduplication, observer notification and result bounds.
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from quorumgate.core.consensus.assessors import RemoteAssessor
from quorumgate.core.consensus.config import ConsensusConfig
from quorumgate.core.consensus.constants import DECISION_POLICY, DISAGREEMENT_FOLLOW_UP
from quorumgate.core.consensus.engine import ConsensusValidator, create_consensus_validator
from quorumgate.core.consensus.errors import ConfigurationError, InsufficientValidators, ValidatorNotFound
from quorumgate.core.consensus.inflight import InFlightTable
from quorumgate.core.consensus.models import ConsensusDecision, ContentType, Vote
from quorumgate.core.consensus.registry import ValidatorRegistry

from conftest import (
    CountingAssessors,
    failing_assessor,
    fixed_assessor,
    slow_assessor,
    uniform_validators,
)


SCENARIO_A_SCORES = {"v1": 0.90, "v2": 0.85, "v3": 0.88, "v4": 0.92, "v5": 0.10}

TIER_RANK = {
    ConsensusDecision.REJECTED: 0,
    ConsensusDecision.INSUFFICIENT_CONSENSUS: 1,
    ConsensusDecision.REQUIRES_REVISION: 2,
    ConsensusDecision.APPROVED: 3,
}


def engine_for(scores, **config):
    registry = ValidatorRegistry(uniform_validators(len(scores)))
    assessors = {vid: fixed_assessor(vid, s) for vid, s in scores.items()}
    return ConsensusValidator(registry, assessors, **config)


class TestScenarios:

    def test_adversarial_validator_is_filtered_and_content_approved(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES, deviation_threshold=0.3,
                            consensus_threshold=0.66, quality_threshold=0.75)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert result.decision == ConsensusDecision.APPROVED
        assert result.quality_score == pytest.approx(0.8875)
        assert result.consensus_score == 1.0
        assert result.participating_validators == 4
        assert result.total_validators == 5
        assert [a.validator_id for a in result.excluded_assessments] == ["v5"]
        assert result.metadata["byzantine_excluded"] == ["v5"]
        assert result.metadata["decision_policy"] == DECISION_POLICY
        assert result.conflict_areas == []

    def test_unanimous_abstain_is_insufficient_consensus(self, event_loop, make_request):
        engine = engine_for({f"v{i}": 0.6 for i in range(1, 5)}, minimum_quorum=4)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert all(a.decision == Vote.ABSTAIN for a in result.assessments)
        assert result.decision == ConsensusDecision.INSUFFICIENT_CONSENSUS
        assert result.consensus_score == 1.0

    def test_empty_roster_refuses_request(self, event_loop, make_request):
        engine = ConsensusValidator(ValidatorRegistry(), {})
        notified = []
        engine.add_observer(notified.append)

        with pytest.raises(InsufficientValidators):
            event_loop.run_until_complete(
                engine.validate(make_request(content_type=ContentType.DOCUMENTATION))
            )

        assert notified == []
        assert engine.get_stats()["validations_completed"] == 0

    def test_one_timeout_still_reaches_a_decision(self, event_loop, make_request):
        registry = ValidatorRegistry(uniform_validators(5))
        assessors = {f"v{i}": fixed_assessor(f"v{i}", 0.9) for i in range(1, 5)}
        assessors["v5"] = slow_assessor("v5", 5.0)
        engine = ConsensusValidator(registry, assessors, minimum_quorum=4, selection_size=5,
                                    timeout_multiplier=1.0, min_validator_timeout=0.05)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert len([a for a in result.assessments if not a.implicit]) == 4
        timed_out = [a for a in result.assessments if a.implicit]
        assert [a.validator_id for a in timed_out] == ["v5"]
        assert timed_out[0].decision == Vote.ABSTAIN
        assert result.metadata["timed_out"] == ["v5"]
        assert result.metadata["responded"] == 4
        assert result.decision == ConsensusDecision.APPROVED
        assert result.consensus_score == pytest.approx(0.8)

    def test_one_timeout_below_quorum(self, event_loop, make_request):
        registry = ValidatorRegistry(uniform_validators(5))
        assessors = {f"v{i}": fixed_assessor(f"v{i}", 0.9) for i in range(1, 5)}
        assessors["v5"] = slow_assessor("v5", 5.0)
        engine = ConsensusValidator(registry, assessors, minimum_quorum=5,
                                    timeout_multiplier=1.0, min_validator_timeout=0.05)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert result.decision == ConsensusDecision.INSUFFICIENT_CONSENSUS
        assert result.metadata["quorum_met"] is False


class TestFailures:

    def test_nobody_answers(self, event_loop, make_request):
        registry = ValidatorRegistry(uniform_validators(3))
        assessors = {f"v{i}": failing_assessor(RuntimeError("down")) for i in range(1, 4)}
        engine = ConsensusValidator(registry, assessors, minimum_quorum=3)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert result.decision == ConsensusDecision.INSUFFICIENT_CONSENSUS
        assert result.quality_score == 0.0
        assert result.participating_validators == 0
        assert result.metadata["no_responsive_assessments"] is True
        assert sorted(result.metadata["errored"]) == ["v1", "v2", "v3"]

    def test_request_deadline(self, event_loop, make_request):
        registry = ValidatorRegistry(uniform_validators(3))
        assessors = {f"v{i}": slow_assessor(f"v{i}", 5.0) for i in range(1, 4)}
        engine = ConsensusValidator(registry, assessors, minimum_quorum=3,
                                    request_timeout=0.1, min_validator_timeout=10.0)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert result.decision == ConsensusDecision.INSUFFICIENT_CONSENSUS
        assert sorted(result.metadata["timed_out"]) == ["v1", "v2", "v3"]
        assert result.processing_time < 5.0

    def test_invalid_configuration_fails_at_construction(self):
        with pytest.raises(ConfigurationError):
            ConsensusValidator(ValidatorRegistry(), {}, consensus_threshold=1.2)

    def test_overrides_are_merged_into_config(self):
        engine = ConsensusValidator(ValidatorRegistry(), {},
                                    config=ConsensusConfig(minimum_quorum=3),
                                    quality_threshold=0.9)

        assert engine.config.minimum_quorum == 3
        assert engine.config.quality_threshold == 0.9


class TestDeduplication:

    def test_concurrent_duplicates_share_one_evaluation(self, event_loop, make_request):
        counting = CountingAssessors(SCENARIO_A_SCORES, delay=0.05)
        engine = ConsensusValidator(ValidatorRegistry(uniform_validators(5)), counting.as_dict())
        notified = []
        engine.add_observer(notified.append)
        request = make_request("dup-1")

        async def run():
            return await asyncio.gather(engine.validate(request), engine.validate(request))

        first, second = event_loop.run_until_complete(run())

        assert first is second
        assert sorted(counting.calls) == ["v1", "v2", "v3", "v4", "v5"]
        assert notified == [first]
        assert engine.get_stats()["in_flight"] == 0

    def test_sequential_requests_are_evaluated_again(self, event_loop, make_request):
        counting = CountingAssessors(SCENARIO_A_SCORES)
        engine = ConsensusValidator(ValidatorRegistry(uniform_validators(5)), counting.as_dict())

        event_loop.run_until_complete(engine.validate(make_request("r")))
        event_loop.run_until_complete(engine.validate(make_request("r")))

        assert len(counting.calls) == 10

    def test_engines_do_not_share_in_flight_state(self, event_loop, make_request):
        counting = CountingAssessors(SCENARIO_A_SCORES, delay=0.05)
        first = ConsensusValidator(ValidatorRegistry(uniform_validators(5)), counting.as_dict())
        second = ConsensusValidator(ValidatorRegistry(uniform_validators(5)), counting.as_dict())
        request = make_request("shared-id")

        async def run():
            return await asyncio.gather(first.validate(request), second.validate(request))

        a, b = event_loop.run_until_complete(run())

        assert a is not b
        assert len(counting.calls) == 10

    def test_injected_table_is_used(self, event_loop, make_request):
        table = InFlightTable()
        seen = []
        engine = engine_for(SCENARIO_A_SCORES, inflight=table)
        engine.add_observer(lambda result: seen.append(table.ids()))

        event_loop.run_until_complete(engine.validate(make_request("tracked")))

        # Observers run while the evaluation is still in flight
        assert seen == [["tracked"]]
        assert len(table) == 0


class TestInFlightTable:

    def test_claim_is_atomic(self, event_loop):
        async def scenario():
            table = InFlightTable()
            calls = []

            def factory():
                calls.append(1)
                return asyncio.ensure_future(asyncio.sleep(0.01, result="done"))

            f1, created1 = table.claim("r", factory)
            f2, created2 = table.claim("r", factory)
            assert f1 is f2
            assert (created1, created2) == (True, False)
            assert "r" in table

            assert await f1 == "done"
            await asyncio.sleep(0)
            return table, calls

        table, calls = event_loop.run_until_complete(scenario())

        assert calls == [1]
        assert "r" not in table
        assert table.get("r") is None


class TestObservers:

    def test_observer_errors_are_contained(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES)
        received = []

        def broken(result):
            raise RuntimeError("observer bug")

        engine.add_observer(broken)
        engine.add_observer(received.append)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert received == [result]

    def test_removed_observer_is_not_called(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES)
        received = []
        engine.add_observer(received.append)
        engine.remove_observer(received.append)

        event_loop.run_until_complete(engine.validate(make_request()))

        assert received == []

    def test_coroutine_observer_is_awaited(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES)
        received = []

        async def observer(result):
            await asyncio.sleep(0)
            received.append(result)

        engine.add_observer(observer)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert received == [result]

    def test_coroutine_observer_errors_are_contained(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES)
        received = []

        async def broken(result):
            raise RuntimeError("observer bug")

        engine.add_observer(broken)
        engine.add_observer(received.append)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert result.decision == ConsensusDecision.APPROVED
        assert received == [result]


class TestMonotonicity:

    @pytest.mark.parametrize("scores, config", [
        (SCENARIO_A_SCORES, {}),
        (SCENARIO_A_SCORES, {"byzantine_fault_tolerance": False}),
        ({"v1": 0.72, "v2": 0.74, "v3": 0.71, "v4": 0.73, "v5": 0.72}, {}),
        ({"v1": 0.31, "v2": 0.36, "v3": 0.33, "v4": 0.41, "v5": 0.38}, {}),
    ])
    def test_raising_every_score_never_lowers_the_outcome(self, event_loop, make_request, scores, config):
        outcomes = []
        for step in (0.0, 0.05, 0.1, 0.25, 0.5):
            shifted = {vid: min(1.0, s + step) for vid, s in scores.items()}
            engine = engine_for(shifted, **config)
            result = event_loop.run_until_complete(engine.validate(make_request()))
            outcomes.append((result.quality_score, TIER_RANK[result.decision]))

        qualities = [q for q, _ in outcomes]
        tiers = [t for _, t in outcomes]
        assert qualities == sorted(qualities)
        assert tiers == sorted(tiers)
        assert tiers[-1] == TIER_RANK[ConsensusDecision.APPROVED]


class TestRemoteAssessors:

    def remote_session(self, payload):
        session = MagicMock()
        session.post.return_value.json.return_value = payload
        return session

    def test_engine_vote_bands_apply_to_remote_replies(self, event_loop, make_request):
        engine = ConsensusValidator(ValidatorRegistry(uniform_validators(5)), {}, reject_margin=0.5)
        session = self.remote_session({"scores": 0.4})
        for i in range(1, 6):
            engine.register_remote_assessor(f"v{i}", f"http://reviewer-{i}/assess", session=session)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        # 0.4 is above 0.75 - 0.5, so every reply is an abstain rather than a reject
        assert [a.decision for a in result.assessments] == [Vote.ABSTAIN] * 5
        assert result.decision == ConsensusDecision.INSUFFICIENT_CONSENSUS
        assert result.metadata["reject_margin"] == 0.5
        assert session.post.call_count == 5

    def test_default_margin_rejects_the_same_reply(self, event_loop, make_request):
        engine = ConsensusValidator(ValidatorRegistry(uniform_validators(5)), {})
        session = self.remote_session({"scores": 0.4})
        for i in range(1, 6):
            engine.register_remote_assessor(f"v{i}", "http://reviewer/assess", session=session)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert result.decision == ConsensusDecision.REJECTED

    def test_constructor_assessors_take_engine_thresholds(self):
        remote = RemoteAssessor("http://reviewer/assess", "v1")

        engine = ConsensusValidator(ValidatorRegistry(uniform_validators(1)), {"v1": remote},
                                    quality_threshold=0.9, reject_margin=0.3)

        assert engine.assessors["v1"] is remote
        assert remote.quality_threshold == 0.9
        assert remote.reject_margin == 0.3


class TestResultContents:

    def test_bounds(self, event_loop, make_request):
        engine = engine_for({"v1": 0.95, "v2": 0.3, "v3": 0.7, "v4": 0.55, "v5": 1.0})

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert 0.0 <= result.consensus_score <= 1.0
        assert 0.0 <= result.quality_score <= 1.0
        assert result.participating_validators <= result.total_validators
        assert len(result.assessments) + len(result.excluded_assessments) == result.total_validators

    def test_disagreement_produces_conflicts_and_follow_up(self, event_loop, make_request):
        registry = ValidatorRegistry(uniform_validators(5))
        assessors = {
            "v1": fixed_assessor("v1", 0.9, recommendations=["Add integration tests"]),
            "v2": fixed_assessor("v2", 0.85, recommendations=["add integration tests."]),
            "v3": fixed_assessor("v3", 0.8),
            "v4": fixed_assessor("v4", 0.65),
            "v5": fixed_assessor("v5", 0.6),
        }
        engine = ConsensusValidator(registry, assessors)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert result.decision == ConsensusDecision.REQUIRES_REVISION
        assert any(c.startswith("Decision disagreement") for c in result.conflict_areas)
        assert result.recommendations == [
            "Add integration tests (mentioned by 2 validators)",
            DISAGREEMENT_FOLLOW_UP,
        ]

    def test_unmet_category_targets_are_reported(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES)
        request = make_request(category_targets={"technical": 0.95, "quality": 0.5})

        result = event_loop.run_until_complete(engine.validate(request))

        assert list(result.metadata["unmet_criteria"]) == ["technical"]
        assert result.metadata["unmet_criteria"]["technical"]["target"] == 0.95

    def test_filter_can_be_disabled(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES, byzantine_fault_tolerance=False)

        result = event_loop.run_until_complete(engine.validate(make_request()))

        assert result.excluded_assessments == []
        assert result.quality_score == pytest.approx(0.73)
        assert result.decision == ConsensusDecision.REQUIRES_REVISION

    def test_to_dict_is_serializable(self, event_loop, make_request):
        import json

        engine = engine_for(SCENARIO_A_SCORES)
        result = event_loop.run_until_complete(engine.validate(make_request()))

        data = json.loads(json.dumps(result.to_dict()))
        assert data["decision"] == "approved"
        assert data["metadata"]["vote_counts"]["approve"] == 4


class TestPerformanceFeedback:

    def test_round_updates_agreement(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES)

        event_loop.run_until_complete(engine.validate(make_request()))

        assert engine.registry.get("v1").performance.agreement_rate == pytest.approx(0.82)
        # The outlier voted reject on approved content
        assert engine.registry.get("v5").performance.agreement_rate == pytest.approx(0.72)

    def test_tracking_can_be_disabled(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES, track_performance=False)

        event_loop.run_until_complete(engine.validate(make_request()))

        assert engine.registry.get("v1").performance.agreement_rate == pytest.approx(0.8)

    def test_manual_feedback(self):
        engine = create_consensus_validator()
        updated = engine.update_validator_performance("qa-engineer", accuracy=0.0)

        assert updated.performance.accuracy == pytest.approx(0.81)
        with pytest.raises(ValidatorNotFound):
            engine.update_validator_performance("ghost", accuracy=1.0)


class TestMetrics:

    def test_validator_metrics_for_reference_roster(self):
        engine = create_consensus_validator()
        engine.registry.deactivate("product-owner")

        metrics = engine.get_validator_metrics()

        assert metrics["total_validators"] == 8
        assert metrics["active_validators"] == 7
        assert metrics["validators_by_specialty"]["security"] == 2
        assert "product-vision" not in metrics["validators_by_specialty"]
        assert metrics["average_accuracy"] == pytest.approx(0.9)
        assert metrics["configuration"]["minimum_quorum"] == 5

    def test_stats_count_decisions(self, event_loop, make_request):
        engine = engine_for(SCENARIO_A_SCORES)
        event_loop.run_until_complete(engine.validate(make_request("a")))
        event_loop.run_until_complete(engine.validate(make_request("b")))

        stats = engine.get_stats()

        assert stats["validations_completed"] == 2
        assert stats["decisions"] == {"approved": 2}
        assert stats["in_flight"] == 0
        assert stats["registered_validators"] == 5
