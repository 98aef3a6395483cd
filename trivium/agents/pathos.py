"""Pathos: what does the user actually need?"""
from __future__ import annotations

from typing import Any, Dict, List

from trivium.agents.base import (
    AgentRequest,
    AgentVote,
    Role,
    RoleAgent,
    Score,
    coerce_confidence,
    format_feedback,
)
from trivium.errors import AgentInternalError

QUERY_TYPES: Dict[str, tuple[str, ...]] = {
    "generate": ("create", "generate", "write", "make"),
    "analyze": ("analyze", "review", "check", "audit"),
    "transform": ("convert", "transform", "change"),
    "verify": ("verify", "validate", "test"),
}

SYSTEM_PROMPT = """You are Pathos, the intent role of a three-part council.
Your job is to restate what the user actually needs, not to answer it.
Values shown as [CATEGORY_NNNN] are redacted placeholders; keep them verbatim.
Reply with JSON only:
{"interpretation": "...", "constraints": ["..."], "confidence": 0.0-1.0}
confidence is how sure you are that the interpretation matches the user's need."""


def detect_query_type(query: str) -> str:
    lowered = query.lower()
    for query_type, keywords in QUERY_TYPES.items():
        if any(word in lowered for word in keywords):
            return query_type
    return "explain"


def clarity_score(query: str, query_type: str, constraints: List[str]) -> float:
    """Rough prior on how unambiguous a query is."""
    score = 1.0
    if len(query.split()) < 5:
        score -= 0.15
    if query_type == "generate" and not constraints:
        score -= 0.10
    return max(0.0, min(1.0, score))


class PathosAgent(RoleAgent):
    role = Role.PATHOS
    system_prompt = SYSTEM_PROMPT

    def build_prompt(self, request: AgentRequest) -> str:
        query_type = detect_query_type(request.query)
        return (
            f"Query type (heuristic): {query_type}\n"
            f"{format_feedback(request.feedback)}"
            f"\nUser query:\n{request.query}\n"
        )

    def parse_vote(self, text: str, request: AgentRequest) -> AgentVote:
        payload = self._payload(text)
        interpretation = str(payload.get("interpretation") or "").strip()
        if not interpretation:
            raise AgentInternalError(self.role.value, "missing interpretation")
        constraints = payload.get("constraints") or []
        if not isinstance(constraints, list):
            constraints = [str(constraints)]
        constraints = [str(item) for item in constraints if str(item).strip()]
        query_type = detect_query_type(request.query)
        confidence = coerce_confidence(payload.get("confidence"))
        if confidence is None:
            confidence = clarity_score(request.query, query_type, constraints)
        metadata: Dict[str, Any] = {"query_type": query_type, "constraints": constraints}
        return AgentVote(
            role=self.role,
            assessment=Score(confidence),
            content=interpretation,
            reasoning=str(payload.get("reasoning") or ""),
            metadata=metadata,
        )
