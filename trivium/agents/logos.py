"""Logos: reason over retrieved context and draft the answer."""
from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Optional

from trivium.agents.base import (
    AgentRequest,
    AgentVote,
    ModelBackend,
    Role,
    RoleAgent,
    Score,
    coerce_confidence,
    format_feedback,
)
from trivium.errors import AgentInternalError
from trivium.rag import Chunk, NullKnowledge

SYSTEM_PROMPT = """You are Logos, the reasoning role of a three-part council.
Answer the user's query step by step, grounded in the provided context when it is relevant.
Values shown as [CATEGORY_NNNN] are redacted placeholders; keep them verbatim in your answer.
Reply with JSON only:
{"answer": "...", "reasoning": "...", "confidence": 0.0-1.0}
confidence is your certainty in the reasoning chain behind the answer."""

MAX_CHUNK_CHARS = 1200


class LogosAgent(RoleAgent):
    role = Role.LOGOS
    system_prompt = SYSTEM_PROMPT

    def __init__(
        self,
        backend: ModelBackend,
        model: str,
        knowledge: Any = None,
        context_limit: int = 5,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> None:
        super().__init__(backend, model, temperature=temperature, max_tokens=max_tokens)
        self.knowledge = knowledge or NullKnowledge()
        self.context_limit = context_limit

    def retrieve(self, query: str) -> List[Chunk]:
        chunks = list(self.knowledge.search(query, limit=self.context_limit) or [])
        chunks.sort(key=lambda c: c.score, reverse=True)
        return chunks[: self.context_limit]

    def evaluate(self, request: AgentRequest) -> AgentVote:
        chunks = self.retrieve(request.query)
        prompt = self.build_prompt(request, chunks)
        text = self._generate(prompt)
        vote = self.parse_vote(text, request)
        return replace(vote, metadata={**vote.metadata, "sources": [chunk.source for chunk in chunks]})

    def build_prompt(self, request: AgentRequest, chunks: Optional[List[Chunk]] = None) -> str:
        parts: List[str] = []
        if chunks:
            parts.append("Retrieved context:")
            for idx, chunk in enumerate(chunks, start=1):
                parts.append(f"[{idx}] ({chunk.source})\n{chunk.content[:MAX_CHUNK_CHARS]}")
            parts.append("")
        if request.pathos_view is not None and not request.pathos_view.abstained:
            parts.append(f"Intent (from Pathos): {request.pathos_view.content}\n")
        feedback = format_feedback(request.feedback)
        if feedback:
            parts.append(feedback)
        parts.append(f"User query:\n{request.query}")
        return "\n".join(parts)

    def parse_vote(self, text: str, request: AgentRequest) -> AgentVote:
        payload = self._payload(text)
        answer = str(payload.get("answer") or "").strip()
        if not answer:
            raise AgentInternalError(self.role.value, "missing answer")
        confidence = coerce_confidence(payload.get("confidence"))
        if confidence is None:
            raise AgentInternalError(self.role.value, "missing or invalid confidence")
        return AgentVote(
            role=self.role,
            assessment=Score(confidence),
            content=answer,
            reasoning=str(payload.get("reasoning") or ""),
            metadata={},
        )
