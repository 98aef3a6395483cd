"""Tripartite consensus engine.

Each query runs a bounded loop of rounds. A round collects one vote per role
(an abstention when the agent times out or fails), then evaluates the
complete vote set:

1. an Ethos veto fails the query outright;
2. otherwise the weighted score is compared with the threshold (``>=``);
3. below threshold the engine retries with feedback until ``max_rounds``.
"""
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
import logging
import time

from trivium.agents.base import ROLES, AgentRequest, AgentVote, Role
from trivium.errors import (
    AgentError,
    AgentInternalError,
    AgentTimeoutError,
    ConfigError,
    ConsensusThresholdNotMet,
    ConsensusVetoed,
)

logger = logging.getLogger(__name__)

STRATEGIES = ("parallel", "sequential")
SCORE_PRECISION = 6


class EngineState(str, Enum):
    COLLECTING_VOTES = "collecting_votes"
    EVALUATING = "evaluating"
    RETRY_NEEDED = "retry_needed"
    PASSED = "passed"
    FAILED = "failed"


class Decision(str, Enum):
    PASS = "pass"
    RETRY = "retry"
    VETO = "veto"
    THRESHOLD_NOT_MET = "threshold_not_met"


class Outcome(str, Enum):
    PASSED = "passed"
    FAILED = "failed"


class FailureReason(str, Enum):
    VETO = "veto"
    THRESHOLD_NOT_MET = "threshold_not_met"


def equal_weights() -> Dict[Role, float]:
    return {role: 1.0 / len(ROLES) for role in ROLES}


@dataclass
class ConsensusConfig:
    threshold: float = 0.85
    max_rounds: int = 3
    weights: Dict[Role, float] = field(default_factory=equal_weights)
    strategy: str = "parallel"
    agent_timeout: float = 60.0
    feedback: bool = True

    def validate(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ConfigError(f"consensus.threshold must be within [0, 1], got {self.threshold}")
        if self.max_rounds < 1:
            raise ConfigError(f"consensus.max_rounds must be at least 1, got {self.max_rounds}")
        if set(self.weights) != set(ROLES):
            raise ConfigError("consensus.weights must name pathos, logos and ethos")
        if any(w < 0 for w in self.weights.values()):
            raise ConfigError("consensus.weights cannot be negative")
        if abs(sum(self.weights.values()) - 1.0) > 1e-6:
            raise ConfigError(f"consensus.weights must sum to 1, got {sum(self.weights.values()):.4f}")
        if self.strategy not in STRATEGIES:
            raise ConfigError(f"consensus.strategy must be one of {', '.join(STRATEGIES)}")
        if self.agent_timeout <= 0:
            raise ConfigError("consensus.agent_timeout_seconds must be positive")


@dataclass(frozen=True)
class ConsensusRound:
    number: int
    votes: Dict[Role, AgentVote]
    score: float
    decision: Decision
    duration_ms: float = 0.0

    @property
    def abstentions(self) -> List[Role]:
        return [role for role in ROLES if self.votes[role].abstained]

    def summary(self) -> Dict[str, Any]:
        return {
            "round": self.number,
            "score": self.score,
            "decision": self.decision.value,
            "duration_ms": round(self.duration_ms, 1),
            "votes": [self.votes[role].summary() for role in ROLES],
        }


@dataclass
class ConsensusResult:
    outcome: Outcome
    score: float
    rounds: List[ConsensusRound]
    draft: Optional[str] = None
    draft_role: Optional[Role] = None
    reason: Optional[FailureReason] = None
    veto_reason: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.outcome is Outcome.PASSED

    @property
    def round_count(self) -> int:
        return len(self.rounds)

    @property
    def message(self) -> str:
        if self.passed:
            return f"consensus reached in {self.round_count} round(s) with score {self.score:.4f}"
        if self.reason is FailureReason.VETO:
            return f"vetoed as unsafe: {self.veto_reason}. Rephrase the request."
        return (
            f"insufficient confidence after {self.round_count} round(s) "
            f"(best score {self.best_score:.4f}). Add context to the request."
        )

    @property
    def best_score(self) -> float:
        return max((r.score for r in self.rounds), default=0.0)

    def raise_for_outcome(self) -> None:
        if self.passed:
            return
        if self.reason is FailureReason.VETO:
            raise ConsensusVetoed(self.message, rounds=self.round_count, score=self.score)
        raise ConsensusThresholdNotMet(self.message, rounds=self.round_count, score=self.score)

    def summary(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason.value if self.reason else None,
            "score": self.score,
            "rounds": self.round_count,
            "draft_role": self.draft_role.value if self.draft_role else None,
        }


def weighted_score(votes: Mapping[Role, AgentVote], weights: Mapping[Role, float]) -> float:
    """Sum of weight * confidence over all three roles.

    Abstentions contribute 0 and stay in the denominator. The sum is rounded
    so that scores equal to the threshold compare equal.
    """
    total = sum(weights[role] * votes[role].confidence for role in ROLES)
    return round(total, SCORE_PRECISION)


def select_draft(votes: Mapping[Role, AgentVote]) -> Tuple[Optional[Role], Optional[str]]:
    for role in (Role.LOGOS, Role.PATHOS):
        vote = votes.get(role)
        if vote is not None and not vote.abstained and vote.content:
            return role, vote.content
    return None, None


def decide(
    votes: Mapping[Role, AgentVote],
    weights: Mapping[Role, float],
    threshold: float,
    round_number: int,
    max_rounds: int,
) -> Tuple[Decision, float]:
    """Pure decision rule for one complete round."""
    missing = [role.value for role in ROLES if role not in votes]
    if missing:
        raise ValueError(f"round {round_number} is missing votes for: {', '.join(missing)}")
    score = weighted_score(votes, weights)
    if votes[Role.ETHOS].vetoed:
        return Decision.VETO, score
    draft_role, _ = select_draft(votes)
    if score >= round(threshold, SCORE_PRECISION) and draft_role is not None:
        return Decision.PASS, score
    if round_number < max_rounds:
        return Decision.RETRY, score
    return Decision.THRESHOLD_NOT_MET, score


def round_feedback(consensus_round: ConsensusRound, threshold: float) -> Tuple[str, ...]:
    """Notes for the next round, lowest-confidence roles first."""
    notes: List[str] = [
        f"Round {consensus_round.number} scored {consensus_round.score:.2f}, below the {threshold:.2f} threshold."
    ]
    ranked = sorted(ROLES, key=lambda role: consensus_round.votes[role].confidence)
    for role in ranked:
        vote = consensus_round.votes[role]
        if vote.abstained:
            notes.append(f"{role.display_name} did not respond ({vote.error}).")
            continue
        if vote.confidence >= threshold:
            continue
        detail = vote.reasoning.strip()
        issues = vote.metadata.get("issues") or []
        if issues:
            detail = "; ".join(str(i) for i in issues)
        if detail:
            notes.append(f"{role.display_name} ({vote.confidence:.2f}) flagged: {detail[:300]}")
        else:
            notes.append(f"{role.display_name} was only {vote.confidence:.2f} confident.")
    return tuple(notes)


class ConsensusEngine:
    """Runs the round loop for one query at a time.

    ``agents`` maps each role to an object with ``evaluate(AgentRequest)``;
    the Ethos agent may also expose ``prefetch(AgentRequest)``.
    """

    def __init__(
        self,
        agents: Mapping[Role, Any],
        config: Optional[ConsensusConfig] = None,
        observer: Optional[Callable[[ConsensusRound], None]] = None,
    ) -> None:
        missing = [role.value for role in ROLES if role not in agents]
        if missing:
            raise ConfigError(f"missing agents for roles: {', '.join(missing)}")
        self.agents = dict(agents)
        self.config = config or ConsensusConfig()
        self.config.validate()
        self.observer = observer
        self.state = EngineState.COLLECTING_VOTES
        self.transitions: List[Tuple[EngineState, int]] = []

    def run(self, query: str) -> ConsensusResult:
        cfg = self.config
        rounds: List[ConsensusRound] = []
        feedback: Tuple[str, ...] = ()
        self.transitions = []
        round_number = 1
        self._enter(EngineState.COLLECTING_VOTES, round_number)
        while True:
            started = time.perf_counter()
            request = AgentRequest(query=query, round_number=round_number, feedback=feedback)
            votes = self._collect(request)

            self._enter(EngineState.EVALUATING, round_number)
            decision, score = decide(votes, cfg.weights, cfg.threshold, round_number, cfg.max_rounds)
            current = ConsensusRound(
                number=round_number,
                votes=votes,
                score=score,
                decision=decision,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            rounds.append(current)
            logger.info(f"Round {round_number}: score={score:.4f} decision={decision.value}")
            if self.observer is not None:
                self.observer(current)

            if decision is Decision.PASS:
                self._enter(EngineState.PASSED, round_number)
                draft_role, draft = select_draft(votes)
                return ConsensusResult(
                    outcome=Outcome.PASSED,
                    score=score,
                    rounds=rounds,
                    draft=draft,
                    draft_role=draft_role,
                )
            if decision is Decision.VETO:
                self._enter(EngineState.FAILED, round_number)
                veto = votes[Role.ETHOS].assessment
                return ConsensusResult(
                    outcome=Outcome.FAILED,
                    score=score,
                    rounds=rounds,
                    reason=FailureReason.VETO,
                    veto_reason=getattr(veto, "reason", None),
                )
            if decision is Decision.THRESHOLD_NOT_MET:
                self._enter(EngineState.FAILED, round_number)
                return ConsensusResult(
                    outcome=Outcome.FAILED,
                    score=score,
                    rounds=rounds,
                    reason=FailureReason.THRESHOLD_NOT_MET,
                )

            self._enter(EngineState.RETRY_NEEDED, round_number + 1)
            feedback = round_feedback(current, cfg.threshold) if cfg.feedback else ()
            round_number += 1
            self._enter(EngineState.COLLECTING_VOTES, round_number)

    def _enter(self, state: EngineState, round_number: int) -> None:
        self.state = state
        self.transitions.append((state, round_number))
        logger.debug(f"Consensus state -> {state.value}({round_number})")

    def _collect(self, request: AgentRequest) -> Dict[Role, AgentVote]:
        if self.config.strategy == "sequential":
            return self._collect_sequential(request)
        return self._collect_parallel(request)

    def _collect_parallel(self, request: AgentRequest) -> Dict[Role, AgentVote]:
        # Pathos, Logos and the Ethos query scan run together; Ethos then
        # reviews the drafts. In-flight calls are never cancelled, and late
        # results are discarded once the executor is abandoned.
        executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix=f"trivium-r{request.round_number}")
        try:
            futures: Dict[Role, Future] = {
                Role.PATHOS: executor.submit(self.agents[Role.PATHOS].evaluate, request),
                Role.LOGOS: executor.submit(self.agents[Role.LOGOS].evaluate, request),
            }
            prefetch_future: Optional[Future] = None
            prefetch = getattr(self.agents[Role.ETHOS], "prefetch", None)
            if callable(prefetch):
                prefetch_future = executor.submit(prefetch, request)
            pending = list(futures.values()) + ([prefetch_future] if prefetch_future else [])
            wait(pending, timeout=self.config.agent_timeout)

            votes = {role: self._resolve(role, future) for role, future in futures.items()}
            prefetched = None
            if prefetch_future is not None and prefetch_future.done() and prefetch_future.exception() is None:
                prefetched = prefetch_future.result()
            elif prefetch_future is not None:
                logger.warning("Ethos prefetch did not complete; verifying without it")

            ethos_request = AgentRequest(
                query=request.query,
                round_number=request.round_number,
                feedback=request.feedback,
                drafts=(votes[Role.PATHOS], votes[Role.LOGOS]),
                prefetch=prefetched,
            )
            ethos_future = executor.submit(self.agents[Role.ETHOS].evaluate, ethos_request)
            wait([ethos_future], timeout=self.config.agent_timeout)
            votes[Role.ETHOS] = self._resolve(Role.ETHOS, ethos_future)
            return votes
        finally:
            executor.shutdown(wait=False)

    def _collect_sequential(self, request: AgentRequest) -> Dict[Role, AgentVote]:
        pathos = self._call(Role.PATHOS, request)
        logos_request = AgentRequest(
            query=request.query,
            round_number=request.round_number,
            feedback=request.feedback,
            pathos_view=pathos,
        )
        logos = self._call(Role.LOGOS, logos_request)
        ethos_request = AgentRequest(
            query=request.query,
            round_number=request.round_number,
            feedback=request.feedback,
            drafts=(pathos, logos),
        )
        ethos = self._call(Role.ETHOS, ethos_request)
        return {Role.PATHOS: pathos, Role.LOGOS: logos, Role.ETHOS: ethos}

    def _call(self, role: Role, request: AgentRequest) -> AgentVote:
        # One worker per call, so a timed-out agent keeps its own thread and
        # the next role starts on time.
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"trivium-r{request.round_number}-{role.value}")
        try:
            future = executor.submit(self.agents[role].evaluate, request)
            wait([future], timeout=self.config.agent_timeout)
            return self._resolve(role, future)
        finally:
            executor.shutdown(wait=False)

    def _resolve(self, role: Role, future: Future) -> AgentVote:
        """Turn a finished, failed or still-running call into a vote."""
        if not future.done():
            # Drops the call if it never started; a running call finishes and is ignored.
            future.cancel()
            exc: AgentError = AgentTimeoutError(role.value, f"no vote within {self.config.agent_timeout:g}s")
            logger.warning(f"{role.display_name} abstained: {exc.message}")
            return AgentVote.abstain(role, f"timeout: {exc.message}")
        error = future.exception()
        if error is None:
            vote = future.result()
            if not isinstance(vote, AgentVote) or vote.role is not role:
                logger.warning(f"{role.display_name} returned an invalid vote; counting as abstention")
                return AgentVote.abstain(role, "internal: invalid vote")
            return vote
        if isinstance(error, AgentTimeoutError):
            logger.warning(f"{role.display_name} abstained: {error.message}")
            return AgentVote.abstain(role, f"timeout: {error.message}")
        if isinstance(error, AgentError):
            logger.warning(f"{role.display_name} abstained: {error.message}")
            return AgentVote.abstain(role, f"internal: {error.message}")
        wrapped = AgentInternalError(role.value, str(error) or type(error).__name__)
        logger.warning(f"{role.display_name} failed", exc_info=error)
        return AgentVote.abstain(role, f"internal: {wrapped.message}")
