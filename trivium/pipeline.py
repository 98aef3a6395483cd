"""Core query pipeline for Trivium.

One query moves through strictly ordered phases:

    redact (vault writes) -> consensus (vault sealed) -> reinflate (vault reads)

The session, and with it the token vault, outlives a single query; call
``close()`` when the session ends.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional
import logging
import time
import uuid

from trivium.agents.base import Role
from trivium.agents.ethos import EthosAgent
from trivium.agents.logos import LogosAgent
from trivium.agents.pathos import PathosAgent
from trivium.audit import AuditLog
from trivium.config import Config
from trivium.consensus import ConsensusConfig, ConsensusEngine, ConsensusResult, ConsensusRound
from trivium.metrics import MetricsStore
from trivium.models.manifest import HardwareManifest, ModelHandle, resolve_role_models
from trivium.models.ollama import OllamaClient
from trivium.privacy.patterns import PatternSet
from trivium.privacy.redactor import Redaction
from trivium.rag import build_knowledge
from trivium.session import Session

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    query_id: str
    consensus: ConsensusResult
    answer: Optional[str] = None
    redactions: List[Redaction] = field(default_factory=list)
    unresolved_tokens: List[str] = field(default_factory=list)
    latency_ms: float = 0.0

    @property
    def passed(self) -> bool:
        return self.consensus.passed

    @property
    def score(self) -> float:
        return self.consensus.score

    def to_dict(self, show_redactions: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "query_id": self.query_id,
            **self.consensus.summary(),
            "message": self.consensus.message,
            "answer": self.answer,
            "latency_ms": round(self.latency_ms, 1),
            "round_detail": [r.summary() for r in self.consensus.rounds],
            "redaction_count": len(self.redactions),
        }
        if self.unresolved_tokens:
            data["unresolved_tokens"] = list(self.unresolved_tokens)
        if show_redactions:
            data["redactions"] = [
                {"token": r.token, "category": r.category, "original": r.original} for r in self.redactions
            ]
        return data


def consensus_config_from(config: Config) -> ConsensusConfig:
    return ConsensusConfig(
        threshold=config.threshold,
        max_rounds=config.max_rounds,
        weights={Role(role): weight for role, weight in config.weights.items()},
        strategy=config.strategy,
        agent_timeout=config.agent_timeout_seconds,
        feedback=config.feedback,
    )


def build_agents(
    config: Config,
    backend: Any,
    handles: Dict[str, ModelHandle],
    knowledge: Any = None,
) -> Dict[Role, Any]:
    def _opts(role: str) -> Dict[str, Any]:
        section = config.agents.get(role) or {}
        opts: Dict[str, Any] = {"temperature": float(section.get("temperature", 0.2))}
        if section.get("max_tokens") is not None:
            opts["max_tokens"] = int(section["max_tokens"])
        return opts

    return {
        Role.PATHOS: PathosAgent(backend, handles["pathos"].tag, **_opts("pathos")),
        Role.LOGOS: LogosAgent(
            backend,
            handles["logos"].tag,
            knowledge=knowledge if knowledge is not None else build_knowledge(config.rag),
            context_limit=int(config.rag.get("limit", 5)),
            **_opts("logos"),
        ),
        Role.ETHOS: EthosAgent(backend, handles["ethos"].tag, **_opts("ethos")),
    }


class TriviumPipeline:
    def __init__(
        self,
        config: Config,
        backend: Any = None,
        knowledge: Any = None,
        agents: Optional[Dict[Role, Any]] = None,
        session: Optional[Session] = None,
    ) -> None:
        config.validate()
        self.config = config
        # Pattern and model errors are fatal here, before any query runs.
        self.patterns = PatternSet.from_config(config.privacy)
        self.session = session or Session(self.patterns)
        self.session.start()
        if agents is None:
            manifest = HardwareManifest.load(config.manifest_path) if config.manifest_path else None
            handles = resolve_role_models(config.agents, manifest)
            backend = backend or OllamaClient(config.ollama_url, timeout=config.ollama_timeout)
            agents = build_agents(config, backend, handles, knowledge)
        self.agents = agents
        self.consensus_config = consensus_config_from(config)
        self.consensus_config.validate()
        audit_enabled = bool((config.raw.get("audit", {}) or {}).get("enabled", True))
        self.audit: AuditLog | None = (
            AuditLog(config.data_dir / "audit.jsonl", session_id=self.session.session_id) if audit_enabled else None
        )
        self.metrics = MetricsStore.from_data_dir(config.data_dir)

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "TriviumPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _log(self, event: str, data: Dict[str, Any]) -> None:
        if self.audit is None:
            return
        try:
            self.audit.log(event, data)
        except OSError:
            logger.warning(f"Failed to write audit event {event}", exc_info=True)

    def run(self, query: str, overrides: Optional[Dict[str, Any]] = None) -> PipelineResult:
        query_id = uuid.uuid4().hex[:12]
        started = time.perf_counter()
        consensus_config = self.consensus_config
        if overrides:
            consensus_config = replace(consensus_config, **overrides)
            consensus_config.validate()

        # Phase 1: redaction. The only phase allowed to write the vault.
        redaction = self.session.redact(query)
        self._log("query.redacted", {
            "query_id": query_id,
            "count": redaction.count,
            "categories": redaction.by_category(),
            "tokens": redaction.tokens(),
        })

        def _observe(consensus_round: ConsensusRound) -> None:
            self._log("round.complete", {"query_id": query_id, **consensus_round.summary()})

        # Phase 2: consensus over redacted text only.
        engine = ConsensusEngine(self.agents, consensus_config, observer=_observe)
        with self.session.sealed():
            result = engine.run(redaction.text)

        # Phase 3: reinflation, after consensus is final.
        answer: Optional[str] = None
        unresolved: List[str] = []
        if result.passed and result.draft is not None:
            seen = len(self.session.reinflator.unresolved)
            answer = self.session.reinflate(result.draft)
            unresolved = self.session.reinflator.unresolved[seen:]
            if unresolved:
                self._log("reinflate.warning", {"query_id": query_id, "tokens": unresolved})

        latency = (time.perf_counter() - started) * 1000
        self._log("consensus.result", {"query_id": query_id, **result.summary(), "latency_ms": round(latency, 1)})
        abstentions = sorted({role.value for r in result.rounds for role in r.abstentions})
        try:
            self.metrics.record({
                "query_id": query_id,
                "outcome": result.outcome.value,
                "reason": result.reason.value if result.reason else None,
                "rounds": result.round_count,
                "score": result.score,
                "latency_ms": round(latency, 1),
                "abstentions": abstentions,
                "redactions": redaction.count,
            })
        except OSError:
            logger.warning("Failed to record metrics", exc_info=True)
        logger.info(f"Query {query_id}: {result.outcome.value} after {result.round_count} round(s)")
        return PipelineResult(
            query_id=query_id,
            consensus=result,
            answer=answer,
            redactions=redaction.redactions,
            unresolved_tokens=list(unresolved),
            latency_ms=latency,
        )
