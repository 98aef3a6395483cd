"""Redaction pattern catalogue.

Patterns are checked in a fixed order: priority descending, ties broken by
declaration order. A pattern may declare a named group ``value``; only that
group is replaced, so ``api_key=sk_...`` becomes ``api_key=[APIKEY_0001]``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional
import logging
import re

from trivium.errors import RedactionConfigError

logger = logging.getLogger(__name__)

CATEGORY_RE = re.compile(r"^[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*$")
DEFAULT_PRIORITY = 50

# privacy.redact_<toggle> -> categories it governs
CATEGORY_TOGGLES: Dict[str, tuple[str, ...]] = {
    "redact_emails": ("EMAIL",),
    "redact_phones": ("PHONE",),
    "redact_ssns": ("SSN",),
    "redact_credit_cards": ("CARD",),
    "redact_api_keys": ("APIKEY", "AWSKEY", "SECRET"),
    "redact_ips": ("IP",),
    "redact_paths": ("PATH",),
    "redact_urls": ("URL",),
}


@dataclass
class RedactionPattern:
    id: str
    regex: re.Pattern
    category: str
    priority: int = DEFAULT_PRIORITY
    enabled: bool = True

    @classmethod
    def compile(
        cls,
        pattern_id: str,
        expression: str,
        category: str,
        priority: int = DEFAULT_PRIORITY,
        flags: int = 0,
    ) -> "RedactionPattern":
        if not pattern_id:
            raise RedactionConfigError("pattern id cannot be empty")
        if not isinstance(category, str) or not CATEGORY_RE.match(category):
            raise RedactionConfigError(
                f"pattern '{pattern_id}': category must be upper-case letters, digits and underscores, got {category!r}"
            )
        if not isinstance(expression, str) or not expression:
            raise RedactionConfigError(f"pattern '{pattern_id}': expression cannot be empty")
        try:
            regex = re.compile(expression, flags)
        except re.error as exc:
            raise RedactionConfigError(f"pattern '{pattern_id}': invalid regular expression: {exc}") from exc
        if regex.match(""):
            raise RedactionConfigError(f"pattern '{pattern_id}': expression matches the empty string")
        try:
            priority = int(priority)
        except (TypeError, ValueError) as exc:
            raise RedactionConfigError(f"pattern '{pattern_id}': priority must be an integer") from exc
        return cls(id=pattern_id, regex=regex, category=category, priority=priority)

    def spans(self, text: str) -> Iterable[tuple[int, int]]:
        """Yield the (start, end) spans this pattern would replace."""
        if not self.enabled:
            return
        has_value_group = "value" in self.regex.groupindex
        for match in self.regex.finditer(text):
            if has_value_group and match.group("value") is not None:
                start, end = match.span("value")
            else:
                start, end = match.span()
            if end > start:
                yield start, end


@dataclass(frozen=True)
class PatternMatch:
    pattern_id: str
    category: str
    start: int
    end: int
    value: str


# (id, category, priority, expression, flags)
BUILTIN_PATTERNS: List[tuple[str, str, int, str, int]] = [
    ("private_key", "SECRET", 100,
     r"-----BEGIN[A-Z ]*PRIVATE KEY-----(?:[\s\S]*?-----END[A-Z ]*PRIVATE KEY-----)?", 0),
    ("ssn", "SSN", 95, r"\b\d{3}-\d{2}-\d{4}\b", 0),
    ("api_key_sk", "APIKEY", 93, r"\bsk[_-][A-Za-z0-9_-]{20,}\b", 0),
    ("github_api_key", "APIKEY", 92, r"\b(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9]{36}\b", 0),
    ("credit_card", "CARD", 90,
     r"\b(?:4\d{12}(?:\d{3})?|5[1-5]\d{14}|3[47]\d{13}|6(?:011|5\d{2})\d{12})\b", 0),
    ("aws_access_key", "AWSKEY", 90, r"\b(?:A3T[A-Z0-9]|AKIA|AGPA|AIDA|AROA|AIPA|ANPA|ANVA|ASIA)[A-Z0-9]{16}\b", 0),
    ("aws_secret_key", "AWSKEY", 90,
     r"aws[_-]?secret[_-]?(?:access[_-]?)?key\s*[=:]\s*['\"]?(?P<value>[A-Za-z0-9/+=]{40})", re.I),
    ("slack_token", "APIKEY", 90, r"\bxox[abprs]-[A-Za-z0-9-]{10,}\b", 0),
    ("api_key", "APIKEY", 85,
     r"(?:api[_-]?key|apikey|api[_-]?token|access[_-]?token)\s*[=:]\s*['\"]?(?P<value>[A-Za-z0-9_\-]{20,})", re.I),
    ("password", "SECRET", 85, r"(?:password|passwd|pwd)\s*[=:]\s*['\"]?(?P<value>[^\s'\"]{4,})", re.I),
    ("email", "EMAIL", 80, r"[A-Za-z0-9_.%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}", 0),
    ("url_token", "URL", 75,
     r"https?://[^\s]+[?&](?:token|key|api_key|apikey|secret|password|auth)=[^\s&]+", re.I),
    ("phone_us", "PHONE", 70, r"(?<![\w+])(?:\+1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]\d{4}\b", 0),
    ("phone_intl", "PHONE", 65, r"(?<!\w)\+[1-9]\d{7,14}\b", 0),
    ("ipv4", "IP", 60,
     r"\b(?:(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\.){3}(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\b", 0),
    ("ipv6", "IP", 60, r"\b(?:[0-9a-f]{1,4}:){7}[0-9a-f]{1,4}\b", re.I),
    ("path_unix", "PATH", 50, r"/(?:home|Users|users|var|etc|opt|usr|root)/[A-Za-z0-9._/-]+", 0),
    ("path_windows", "PATH", 50, r"\b[A-Za-z]:\\(?:[^\\/:*?\"<>|\r\n\s]+\\)*[^\\/:*?\"<>|\r\n\s]*", 0),
]


class PatternSet:
    """Ordered collection of redaction patterns."""

    def __init__(self, patterns: Optional[Iterable[RedactionPattern]] = None) -> None:
        self._patterns: List[RedactionPattern] = []
        for pattern in patterns or []:
            self.add(pattern)

    @classmethod
    def builtin(cls) -> "PatternSet":
        patterns = [
            RedactionPattern.compile(pattern_id, expression, category, priority, flags)
            for pattern_id, category, priority, expression, flags in BUILTIN_PATTERNS
        ]
        return cls(patterns)

    @classmethod
    def from_config(cls, privacy: Dict[str, Any]) -> "PatternSet":
        """Build the pattern set for a ``privacy`` config section.

        Raises RedactionConfigError for unknown toggles or malformed custom
        patterns, so bad configuration fails at load time.
        """
        privacy = privacy or {}
        if not isinstance(privacy, dict):
            raise RedactionConfigError("privacy configuration must be a mapping")
        patterns = cls.builtin()
        for key, value in privacy.items():
            if key == "custom_patterns":
                continue
            if key not in CATEGORY_TOGGLES:
                if key.startswith("redact_"):
                    raise RedactionConfigError(f"unknown privacy toggle: {key}")
                continue
            for category in CATEGORY_TOGGLES[key]:
                patterns.set_category_enabled(category, bool(value))

        custom = privacy.get("custom_patterns") or []
        if not isinstance(custom, list):
            raise RedactionConfigError("privacy.custom_patterns must be a list")
        for idx, entry in enumerate(custom):
            if not isinstance(entry, dict):
                raise RedactionConfigError(f"custom pattern #{idx} must be a mapping")
            name = str(entry.get("name") or "").strip()
            if not name:
                raise RedactionConfigError(f"custom pattern #{idx} is missing a name")
            category = str(entry.get("category") or name).upper().replace("-", "_")
            patterns.add(
                RedactionPattern.compile(
                    f"custom:{name}",
                    entry.get("pattern"),
                    category,
                    entry.get("priority", DEFAULT_PRIORITY),
                )
            )
        logger.debug(f"Loaded {len(patterns)} redaction patterns ({len(patterns.enabled())} enabled)")
        return patterns

    def add(self, pattern: RedactionPattern) -> None:
        if any(existing.id == pattern.id for existing in self._patterns):
            raise RedactionConfigError(f"duplicate pattern id: {pattern.id}")
        self._patterns.append(pattern)
        # Stable sort keeps declaration order among equal priorities.
        self._patterns.sort(key=lambda p: -p.priority)

    def set_category_enabled(self, category: str, enabled: bool) -> None:
        for pattern in self._patterns:
            if pattern.category == category:
                pattern.enabled = enabled

    def enabled(self) -> List[RedactionPattern]:
        return [p for p in self._patterns if p.enabled]

    def categories(self) -> List[str]:
        seen: List[str] = []
        for pattern in self._patterns:
            if pattern.category not in seen:
                seen.append(pattern.category)
        return seen

    def find_matches(self, text: str) -> List[PatternMatch]:
        """Return non-overlapping matches in text order.

        Higher-priority patterns claim their spans first; a lower-priority
        match that overlaps a claimed span is dropped.
        """
        claimed: List[PatternMatch] = []
        for pattern in self.enabled():
            for start, end in pattern.spans(text):
                if any(start < c.end and c.start < end for c in claimed):
                    continue
                claimed.append(PatternMatch(pattern.id, pattern.category, start, end, text[start:end]))
        claimed.sort(key=lambda m: m.start)
        return claimed

    def contains_sensitive(self, text: str) -> bool:
        return any(True for p in self.enabled() for _ in p.spans(text))

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self):
        return iter(list(self._patterns))
