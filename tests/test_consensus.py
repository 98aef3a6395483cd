"""Tests for the consensus engine state machine."""
import threading
import time
import unittest

from trivium.agents.base import AgentRequest, AgentVote, Role, Score, Veto
from trivium.consensus import (
    ConsensusConfig,
    ConsensusEngine,
    Decision,
    EngineState,
    FailureReason,
    Outcome,
    decide,
    weighted_score,
)
from trivium.errors import (
    AgentInternalError,
    ConfigError,
    ConsensusThresholdNotMet,
    ConsensusVetoed,
)


class ScriptedAgent:
    """Returns a fixed confidence (or a veto, or raises) every round."""

    def __init__(self, role, confidence=0.9, content=None, veto=None, raises=None, delay=0.0):
        self.role = role
        self.confidence = confidence
        self.content = content if content is not None else f"{role.value} draft"
        self.veto = veto
        self.raises = raises
        self.delay = delay
        self.requests = []
        self._lock = threading.Lock()

    def evaluate(self, request: AgentRequest) -> AgentVote:
        with self._lock:
            self.requests.append(request)
        if self.delay:
            time.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        if self.veto is not None:
            return AgentVote(role=self.role, assessment=Veto(self.veto))
        return AgentVote(role=self.role, assessment=Score(self.confidence), content=self.content, reasoning="because")


def make_agents(pathos=0.9, logos=0.9, ethos=0.9, **overrides):
    agents = {
        Role.PATHOS: ScriptedAgent(Role.PATHOS, pathos),
        Role.LOGOS: ScriptedAgent(Role.LOGOS, logos),
        Role.ETHOS: ScriptedAgent(Role.ETHOS, ethos),
    }
    agents.update(overrides)
    return agents


def votes(pathos, logos, ethos):
    return {
        Role.PATHOS: AgentVote(role=Role.PATHOS, assessment=Score(pathos), content="p"),
        Role.LOGOS: AgentVote(role=Role.LOGOS, assessment=Score(logos), content="l"),
        Role.ETHOS: AgentVote(role=Role.ETHOS, assessment=Score(ethos)),
    }


class TestDecisionRule(unittest.TestCase):
    def setUp(self):
        self.weights = ConsensusConfig().weights

    def test_documented_example_passes(self):
        decision, score = decide(votes(0.94, 0.91, 0.96), self.weights, 0.85, 1, 3)
        self.assertEqual(decision, Decision.PASS)
        self.assertAlmostEqual(score, 0.9367, places=4)

    def test_score_equal_to_threshold_passes(self):
        decision, _ = decide(votes(0.85, 0.85, 0.85), self.weights, 0.85, 1, 3)
        self.assertEqual(decision, Decision.PASS)
        decision, _ = decide(votes(0.9, 0.9, 0.9), self.weights, 0.9, 1, 3)
        self.assertEqual(decision, Decision.PASS)

    def test_below_threshold_retries_then_fails(self):
        self.assertEqual(decide(votes(0.5, 0.5, 0.5), self.weights, 0.85, 2, 3)[0], Decision.RETRY)
        self.assertEqual(decide(votes(0.5, 0.5, 0.5), self.weights, 0.85, 3, 3)[0], Decision.THRESHOLD_NOT_MET)

    def test_veto_beats_any_confidence(self):
        vote_set = votes(0.99, 0.99, 0.99)
        vote_set[Role.ETHOS] = AgentVote(role=Role.ETHOS, assessment=Veto("unsafe"))
        for round_number in (1, 2, 3):
            self.assertEqual(decide(vote_set, self.weights, 0.0, round_number, 3)[0], Decision.VETO)

    def test_abstention_stays_in_denominator(self):
        vote_set = votes(1.0, 1.0, 1.0)
        vote_set[Role.LOGOS] = AgentVote.abstain(Role.LOGOS, "timeout")
        self.assertAlmostEqual(weighted_score(vote_set, self.weights), 0.666667)
        self.assertEqual(decide(vote_set, self.weights, 0.85, 3, 3)[0], Decision.THRESHOLD_NOT_MET)

    def test_incomplete_round_rejected(self):
        vote_set = votes(0.9, 0.9, 0.9)
        del vote_set[Role.ETHOS]
        with self.assertRaises(ValueError):
            decide(vote_set, self.weights, 0.85, 1, 3)

    def test_vote_order_does_not_matter(self):
        forward = votes(0.94, 0.91, 0.96)
        backward = dict(reversed(list(forward.items())))
        self.assertEqual(decide(forward, self.weights, 0.85, 1, 3), decide(backward, self.weights, 0.85, 1, 3))


class TestConsensusConfig(unittest.TestCase):
    def test_rejects_weights_not_summing_to_one(self):
        config = ConsensusConfig(weights={Role.PATHOS: 0.5, Role.LOGOS: 0.5, Role.ETHOS: 0.5})
        with self.assertRaises(ConfigError):
            config.validate()

    def test_rejects_bad_values(self):
        for kwargs in ({"threshold": 1.5}, {"max_rounds": 0}, {"strategy": "random"}, {"agent_timeout": 0}):
            with self.assertRaises(ConfigError):
                ConsensusConfig(**kwargs).validate()


class TestConsensusEngine(unittest.TestCase):
    def test_veto_fails_regardless_of_confidence(self):
        agents = make_agents(0.99, 0.99, ethos=None)
        agents[Role.ETHOS] = ScriptedAgent(Role.ETHOS, veto="destructive command")
        result = ConsensusEngine(agents).run("q")
        self.assertEqual(result.outcome, Outcome.FAILED)
        self.assertEqual(result.reason, FailureReason.VETO)
        self.assertEqual(result.round_count, 1)
        self.assertIsNone(result.draft)
        self.assertIn("unsafe", result.message)
        with self.assertRaises(ConsensusVetoed):
            result.raise_for_outcome()

    def test_pass_releases_logos_draft(self):
        result = ConsensusEngine(make_agents(0.94, 0.91, 0.96)).run("q")
        self.assertTrue(result.passed)
        self.assertEqual(result.draft, "logos draft")
        self.assertEqual(result.draft_role, Role.LOGOS)
        self.assertAlmostEqual(result.score, 0.9367, places=4)
        result.raise_for_outcome()

    def test_exactly_max_rounds_before_threshold_failure(self):
        agents = make_agents(0.5, 0.5, 0.5)
        engine = ConsensusEngine(agents)
        result = engine.run("q")
        self.assertEqual(result.reason, FailureReason.THRESHOLD_NOT_MET)
        self.assertEqual(result.round_count, 3)
        for agent in agents.values():
            self.assertEqual(len(agent.requests), 3)
        self.assertEqual(engine.transitions[-1], (EngineState.FAILED, 3))
        self.assertIn("after 3 round(s)", result.message)
        with self.assertRaises(ConsensusThresholdNotMet) as ctx:
            result.raise_for_outcome()
        self.assertEqual(ctx.exception.rounds, 3)

    def test_state_sequence(self):
        engine = ConsensusEngine(make_agents(0.5, 0.5, 0.5), ConsensusConfig(max_rounds=2))
        engine.run("q")
        self.assertEqual(engine.transitions, [
            (EngineState.COLLECTING_VOTES, 1),
            (EngineState.EVALUATING, 1),
            (EngineState.RETRY_NEEDED, 2),
            (EngineState.COLLECTING_VOTES, 2),
            (EngineState.EVALUATING, 2),
            (EngineState.FAILED, 2),
        ])

    def test_timeout_counts_as_zero(self):
        agents = make_agents(0.95, 0.95, 0.95)
        agents[Role.LOGOS] = ScriptedAgent(Role.LOGOS, 0.95, delay=0.5)
        config = ConsensusConfig(max_rounds=1, agent_timeout=0.05)
        result = ConsensusEngine(agents, config).run("q")
        self.assertFalse(result.passed)
        logos_vote = result.rounds[0].votes[Role.LOGOS]
        self.assertTrue(logos_vote.abstained)
        self.assertTrue(logos_vote.error.startswith("timeout"))
        self.assertAlmostEqual(result.score, 0.633333, places=5)

    def test_sequential_timeout_only_abstains_slow_role(self):
        agents = make_agents(0.95, 0.95, 0.95)
        agents[Role.PATHOS] = ScriptedAgent(Role.PATHOS, 0.95, delay=0.5)
        config = ConsensusConfig(max_rounds=1, agent_timeout=0.1, strategy="sequential")
        result = ConsensusEngine(agents, config).run("q")
        round_votes = result.rounds[0].votes
        self.assertTrue(round_votes[Role.PATHOS].abstained)
        self.assertFalse(round_votes[Role.LOGOS].abstained)
        self.assertFalse(round_votes[Role.ETHOS].abstained)
        self.assertEqual(result.rounds[0].abstentions, [Role.PATHOS])
        self.assertTrue(agents[Role.LOGOS].requests[0].pathos_view.abstained)
        self.assertAlmostEqual(result.score, 0.633333, places=5)

    def test_late_ethos_result_is_discarded(self):
        agents = make_agents(0.95, 0.95)
        agents[Role.ETHOS] = ScriptedAgent(Role.ETHOS, 0.95, delay=0.3)
        config = ConsensusConfig(max_rounds=1, agent_timeout=0.05)
        result = ConsensusEngine(agents, config).run("q")
        time.sleep(0.4)
        self.assertEqual(len(agents[Role.ETHOS].requests), 1)
        ethos_vote = result.rounds[0].votes[Role.ETHOS]
        self.assertTrue(ethos_vote.abstained)
        self.assertTrue(ethos_vote.error.startswith("timeout"))
        self.assertEqual(result.outcome, Outcome.FAILED)
        self.assertEqual(result.reason, FailureReason.THRESHOLD_NOT_MET)

    def test_veto_issues_no_further_calls(self):
        agents = make_agents(0.99, 0.99)
        agents[Role.ETHOS] = ScriptedAgent(Role.ETHOS, veto="unsafe")
        result = ConsensusEngine(agents, ConsensusConfig(max_rounds=3)).run("q")
        self.assertEqual(result.reason, FailureReason.VETO)
        for agent in agents.values():
            self.assertEqual(len(agent.requests), 1)

    def test_agent_failure_becomes_abstention(self):
        agents = make_agents()
        agents[Role.PATHOS] = ScriptedAgent(Role.PATHOS, raises=AgentInternalError("pathos", "bad json"))
        agents[Role.LOGOS] = ScriptedAgent(Role.LOGOS, raises=RuntimeError("boom"))
        result = ConsensusEngine(agents, ConsensusConfig(max_rounds=1)).run("q")
        round_votes = result.rounds[0].votes
        self.assertEqual(round_votes[Role.PATHOS].error, "internal: bad json")
        self.assertEqual(round_votes[Role.LOGOS].error, "internal: boom")
        self.assertEqual(result.rounds[0].abstentions, [Role.PATHOS, Role.LOGOS])

    def test_falls_back_to_pathos_draft(self):
        agents = make_agents(1.0, 0.0, 1.0)
        agents[Role.LOGOS] = ScriptedAgent(Role.LOGOS, raises=AgentInternalError("logos", "down"))
        config = ConsensusConfig(weights={Role.PATHOS: 0.5, Role.LOGOS: 0.0, Role.ETHOS: 0.5})
        result = ConsensusEngine(agents, config).run("q")
        self.assertTrue(result.passed)
        self.assertEqual(result.draft_role, Role.PATHOS)
        self.assertEqual(result.draft, "pathos draft")

    def test_retry_feeds_back_previous_round(self):
        agents = make_agents(0.5, 0.5, 0.5)
        ConsensusEngine(agents, ConsensusConfig(max_rounds=2)).run("q")
        first, second = agents[Role.LOGOS].requests
        self.assertEqual(first.feedback, ())
        self.assertTrue(second.feedback)
        self.assertIn("Round 1 scored 0.50", second.feedback[0])
        self.assertEqual(second.round_number, 2)

    def test_feedback_can_be_disabled(self):
        agents = make_agents(0.5, 0.5, 0.5)
        ConsensusEngine(agents, ConsensusConfig(max_rounds=2, feedback=False)).run("q")
        self.assertEqual(agents[Role.LOGOS].requests[1].feedback, ())

    def test_ethos_sees_drafts_in_parallel_mode(self):
        agents = make_agents()
        ConsensusEngine(agents).run("q")
        ethos_request = agents[Role.ETHOS].requests[0]
        self.assertEqual([d.role for d in ethos_request.drafts], [Role.PATHOS, Role.LOGOS])

    def test_sequential_passes_pathos_view_to_logos(self):
        agents = make_agents(0.94, 0.91, 0.96)
        result = ConsensusEngine(agents, ConsensusConfig(strategy="sequential")).run("q")
        self.assertTrue(result.passed)
        logos_request = agents[Role.LOGOS].requests[0]
        self.assertEqual(logos_request.pathos_view.content, "pathos draft")

    def test_observer_sees_every_round(self):
        seen = []
        ConsensusEngine(make_agents(0.5, 0.5, 0.5), observer=seen.append).run("q")
        self.assertEqual([r.number for r in seen], [1, 2, 3])

    def test_missing_agent_rejected(self):
        agents = make_agents()
        del agents[Role.ETHOS]
        with self.assertRaises(ConfigError):
            ConsensusEngine(agents)


if __name__ == "__main__":
    unittest.main()
