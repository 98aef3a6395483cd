"""Shared role-agent capability: request in, vote out."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, Union
import json
import logging

from trivium.errors import AgentInternalError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    PATHOS = "pathos"
    LOGOS = "logos"
    ETHOS = "ethos"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


ROLES: Tuple[Role, ...] = (Role.PATHOS, Role.LOGOS, Role.ETHOS)


@dataclass(frozen=True)
class Score:
    value: float

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.value) <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.value}")


@dataclass(frozen=True)
class Veto:
    reason: str


Assessment = Union[Score, Veto]


@dataclass(frozen=True)
class AgentVote:
    """One role's vote for one round. Immutable once built."""

    role: Role
    assessment: Assessment
    content: str = ""
    reasoning: str = ""
    abstained: bool = False
    error: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        if isinstance(self.assessment, Veto) and self.role is not Role.ETHOS:
            raise ValueError(f"only ethos may veto, got a veto from {self.role.value}")

    @classmethod
    def abstain(cls, role: Role, error: str) -> "AgentVote":
        return cls(role=role, assessment=Score(0.0), abstained=True, error=error)

    @property
    def vetoed(self) -> bool:
        return isinstance(self.assessment, Veto)

    @property
    def confidence(self) -> float:
        if self.abstained or isinstance(self.assessment, Veto):
            return 0.0
        return float(self.assessment.value)

    def summary(self) -> Dict[str, Any]:
        """Non-sensitive view used for audit and JSON output."""
        data: Dict[str, Any] = {
            "role": self.role.value,
            "confidence": round(self.confidence, 4),
            "abstained": self.abstained,
            "vetoed": self.vetoed,
        }
        if self.vetoed:
            data["veto_reason"] = self.assessment.reason
        if self.error:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class AgentRequest:
    query: str
    round_number: int = 1
    feedback: Tuple[str, ...] = ()
    pathos_view: Optional[AgentVote] = None
    drafts: Tuple[AgentVote, ...] = ()
    prefetch: Any = None


class ModelBackend(Protocol):
    def generate(
        self,
        model: str,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> Any:
        ...


def parse_json_payload(text: str) -> Dict[str, Any] | None:
    if not text:
        return None
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except Exception:
        pass
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    blob = text[start:end + 1]
    try:
        data = json.loads(blob)
    except Exception:
        return None
    return data if isinstance(data, dict) else None


def coerce_confidence(value: Any) -> float | None:
    """Accept 0-1 floats, 0-100 percentages and numeric strings."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip().rstrip("%")
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:
        return None
    if 1.0 < number <= 100.0:
        number = number / 100.0
    return max(0.0, min(1.0, number))


def format_feedback(feedback: Tuple[str, ...]) -> str:
    if not feedback:
        return ""
    lines = "\n".join(f"- {item}" for item in feedback)
    return f"\nFeedback from the previous round:\n{lines}\n"


class RoleAgent:
    """Base class for the three roles.

    Subclasses set ``role`` and ``system_prompt`` and implement
    ``build_prompt`` and ``parse_vote``. ``evaluate`` raises ``AgentError``
    subclasses on failure; the consensus engine turns them into abstentions.
    """

    role: Role
    system_prompt: str = ""

    def __init__(
        self,
        backend: ModelBackend,
        model: str,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def evaluate(self, request: AgentRequest) -> AgentVote:
        prompt = self.build_prompt(request)
        text = self._generate(prompt)
        vote = self.parse_vote(text, request)
        logger.debug(f"{self.role.display_name} round {request.round_number}: confidence={vote.confidence:.3f}")
        return vote

    def build_prompt(self, request: AgentRequest) -> str:
        raise NotImplementedError

    def parse_vote(self, text: str, request: AgentRequest) -> AgentVote:
        raise NotImplementedError

    def _generate(self, prompt: str) -> str:
        result = self.backend.generate(
            self.model,
            prompt,
            system=self.system_prompt or None,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            json_mode=True,
        )
        if not getattr(result, "ok", False):
            raise AgentInternalError(self.role.value, getattr(result, "error", None) or "model call failed")
        return result.text or ""

    def _payload(self, text: str) -> Dict[str, Any]:
        payload = parse_json_payload(text)
        if payload is None:
            raise AgentInternalError(self.role.value, "model output was not a JSON object")
        return payload
