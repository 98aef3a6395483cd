"""Ethos: verify the drafts, or veto them.

Verification runs in two passes. A deterministic scan of the drafts looks
for destructive commands (critical, always a veto), hardcoded credentials
(errors) and overconfident claims (warnings). The model then reviews the
drafts and returns approve, revise or veto.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging
import re

from trivium.agents.base import (
    AgentRequest,
    AgentVote,
    Role,
    RoleAgent,
    Score,
    Veto,
    coerce_confidence,
    format_feedback,
)
from trivium.errors import AgentInternalError

logger = logging.getLogger(__name__)

CRITICAL = "critical"
ERROR = "error"
WARNING = "warning"

# (rule, severity, expression, message)
SAFETY_RULES: List[Tuple[str, str, str, str]] = [
    ("rm_root", CRITICAL, r"rm\s+-rf\s+/(?:\s|$|\*)", "recursive delete of the filesystem root"),
    ("rm_home", CRITICAL, r"rm\s+-rf\s+\$HOME", "recursive delete of the home directory"),
    ("rm_tilde", CRITICAL, r"rm\s+-rf\s+~", "recursive delete of the home directory"),
    ("dd_zero", CRITICAL, r"dd\s+if=/dev/zero", "overwrites a device with zeros"),
    ("fork_bomb", CRITICAL, r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:", "fork bomb"),
    ("curl_pipe_shell", CRITICAL, r"curl[^\n|]*\|\s*(?:sudo\s+)?(?:sh|bash)\b", "pipes a download straight into a shell"),
    ("wget_pipe_shell", CRITICAL, r"wget[^\n|]*\|\s*(?:sudo\s+)?(?:sh|bash)\b", "pipes a download straight into a shell"),
    ("eval_curl", CRITICAL, r"eval\s*\(?\s*[\"'`$(]*\s*curl", "evaluates remote content"),
    ("write_system_path", CRITICAL, r"echo[^\n]*>\s*(?:/etc/|/usr/bin/|/usr/sbin/|/boot/)", "writes into a system path"),
    ("chmod_777_system", CRITICAL, r"chmod\s+(?:-R\s+)?777\s+(?:/etc|/usr|/var|/boot)\b", "world-writable system directory"),
    ("hardcoded_credential", ERROR, r"(?:password|api_key|secret)\s*=\s*['\"][^'\"]+['\"]", "hardcoded credential"),
    ("bearer_token", ERROR, r"\b(?:Bearer|Token)\s+[A-Za-z0-9]{20,}", "literal bearer token"),
]

OVERCONFIDENT_PHRASES = (
    "will definitely succeed",
    "guaranteed to work",
    "100% success rate",
    "cannot fail",
    "zero risk",
)

SYSTEM_PROMPT = """You are Ethos, the verification role of a three-part council.
Review the draft answer for safety, accuracy and feasibility.
Values shown as [CATEGORY_NNNN] are redacted placeholders and are not errors.
Reply with JSON only:
{"verdict": "approve" | "revise" | "veto", "confidence": 0.0-1.0, "issues": ["..."], "reason": "..."}
Use "veto" only when the draft is unsafe or would cause harm if followed."""


@dataclass(frozen=True)
class Finding:
    rule: str
    severity: str
    message: str


@dataclass
class EthosPrefetch:
    """Query-side findings gathered while the drafts are being written."""

    findings: List[Finding] = field(default_factory=list)

    def notes(self) -> List[str]:
        return [f"{f.severity}: {f.message}" for f in self.findings]


def _compile_rules(rules: List[Tuple[str, str, str, str]]) -> List[Tuple[str, str, re.Pattern, str]]:
    return [(rule, severity, re.compile(expr, re.IGNORECASE), message) for rule, severity, expr, message in rules]


def rule_confidence(findings: List[Finding]) -> float:
    if any(f.severity == CRITICAL for f in findings):
        return 0.0
    errors = sum(1 for f in findings if f.severity == ERROR)
    warnings = sum(1 for f in findings if f.severity == WARNING)
    return max(0.0, min(1.0, 1.0 - 0.3 * errors - 0.1 * warnings))


class EthosAgent(RoleAgent):
    role = Role.ETHOS
    system_prompt = SYSTEM_PROMPT

    def __init__(self, *args: Any, rules: Optional[List[Tuple[str, str, str, str]]] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.rules = _compile_rules(rules if rules is not None else SAFETY_RULES)

    def scan(self, text: str) -> List[Finding]:
        findings: List[Finding] = []
        for rule, severity, regex, message in self.rules:
            if regex.search(text):
                findings.append(Finding(rule, severity, message))
        lowered = text.lower()
        for phrase in OVERCONFIDENT_PHRASES:
            if phrase in lowered:
                findings.append(Finding("overconfident", WARNING, f"overconfident claim: '{phrase}'"))
        return findings

    def prefetch(self, request: AgentRequest) -> EthosPrefetch:
        """Scan the query itself. Runs alongside Pathos and Logos."""
        findings = self.scan(request.query)
        if findings:
            logger.debug(f"Ethos prefetch flagged {len(findings)} query findings")
        return EthosPrefetch(findings=findings)

    def evaluate(self, request: AgentRequest) -> AgentVote:
        drafts = [d for d in request.drafts if not d.abstained and d.content]
        if not drafts:
            raise AgentInternalError(self.role.value, "no drafts to verify")
        findings: List[Finding] = []
        for draft in drafts:
            findings.extend(self.scan(draft.content))
        critical = [f for f in findings if f.severity == CRITICAL]
        if critical:
            reason = "; ".join(sorted({f.message for f in critical}))
            logger.info(f"Ethos veto from safety scan: {[f.rule for f in critical]}")
            return AgentVote(
                role=self.role,
                assessment=Veto(reason),
                reasoning=reason,
                metadata={"findings": [f.rule for f in findings], "source": "safety-scan"},
            )
        prompt = self.build_prompt(request, findings)
        text = self._generate(prompt)
        vote = self.parse_vote(text, request)
        if vote.vetoed:
            return vote
        rules_score = rule_confidence(findings)
        confidence = min(vote.confidence, rules_score)
        issues = list(vote.metadata.get("issues", [])) + [f.message for f in findings]
        return AgentVote(
            role=self.role,
            assessment=Score(confidence),
            reasoning=vote.reasoning,
            metadata={
                "verdict": vote.metadata.get("verdict"),
                "issues": issues,
                "findings": [f.rule for f in findings],
            },
        )

    def build_prompt(self, request: AgentRequest, findings: Optional[List[Finding]] = None) -> str:
        parts: List[str] = [f"User query:\n{request.query}\n"]
        for draft in request.drafts:
            if draft.abstained or not draft.content:
                continue
            parts.append(f"{draft.role.display_name} draft:\n{draft.content}\n")
        notes: List[str] = []
        if isinstance(request.prefetch, EthosPrefetch):
            notes.extend(request.prefetch.notes())
        notes.extend(f"{f.severity}: {f.message}" for f in findings or [])
        if notes:
            parts.append("Automated checks:\n" + "\n".join(f"- {n}" for n in notes) + "\n")
        feedback = format_feedback(request.feedback)
        if feedback:
            parts.append(feedback)
        return "\n".join(parts)

    def parse_vote(self, text: str, request: AgentRequest) -> AgentVote:
        payload = self._payload(text)
        verdict = str(payload.get("verdict") or "").strip().lower()
        reason = str(payload.get("reason") or "").strip()
        issues = payload.get("issues") or []
        if not isinstance(issues, list):
            issues = [str(issues)]
        issues = [str(item) for item in issues if str(item).strip()]
        if verdict == "veto":
            return AgentVote(
                role=self.role,
                assessment=Veto(reason or "; ".join(issues) or "vetoed by verification"),
                reasoning=reason,
                metadata={"verdict": verdict, "issues": issues, "source": "model"},
            )
        if verdict not in {"approve", "revise"}:
            raise AgentInternalError(self.role.value, f"unknown verdict: {verdict or 'missing'}")
        confidence = coerce_confidence(payload.get("confidence"))
        if confidence is None:
            raise AgentInternalError(self.role.value, "missing or invalid confidence")
        return AgentVote(
            role=self.role,
            assessment=Score(confidence),
            reasoning=reason or "; ".join(issues),
            metadata={"verdict": verdict, "issues": issues},
        )
