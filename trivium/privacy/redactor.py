"""Redaction and reinflation of sensitive values."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List
import logging
import re

from trivium.errors import VaultLookupError
from trivium.privacy.patterns import PatternMatch, PatternSet
from trivium.privacy.vault import TokenVault

logger = logging.getLogger(__name__)

TOKEN_RE = re.compile(r"\[([A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*)_(\d{4,})\]")
LITERAL_CATEGORY = "LITERAL"


@dataclass(frozen=True)
class Redaction:
    token: str
    category: str
    original: str

    def __repr__(self) -> str:
        return f"Redaction(token={self.token!r}, category={self.category!r})"


@dataclass
class RedactionResult:
    text: str
    redactions: List[Redaction] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.redactions)

    def by_category(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.redactions:
            counts[item.category] = counts.get(item.category, 0) + 1
        return counts

    def tokens(self) -> List[str]:
        seen: List[str] = []
        for item in self.redactions:
            if item.token not in seen:
                seen.append(item.token)
        return seen


class Redactor:
    """Replace sensitive substrings with vault tokens."""

    def __init__(self, patterns: PatternSet, vault: TokenVault) -> None:
        self.patterns = patterns
        self.vault = vault

    def redact(self, text: str) -> RedactionResult:
        matches = self._matches(text)
        if not matches:
            return RedactionResult(text=text)
        pieces: List[str] = []
        redactions: List[Redaction] = []
        cursor = 0
        for match in matches:
            pieces.append(text[cursor:match.start])
            token = self.vault.register(match.value, match.category)
            pieces.append(token)
            redactions.append(Redaction(token=token, category=match.category, original=match.value))
            cursor = match.end
        pieces.append(text[cursor:])
        result = RedactionResult(text="".join(pieces), redactions=redactions)
        logger.debug(f"Redacted {result.count} values: {result.by_category()}")
        return result

    def _matches(self, text: str) -> List[PatternMatch]:
        # Token-shaped text already in the input gets a LITERAL token of its
        # own, so reinflation restores it verbatim instead of resolving it.
        literals = [
            PatternMatch("literal", LITERAL_CATEGORY, m.start(), m.end(), m.group(0))
            for m in TOKEN_RE.finditer(text)
        ]
        matches = literals + [
            m for m in self.patterns.find_matches(text)
            if not any(m.start < lit.end and lit.start < m.end for lit in literals)
        ]
        matches.sort(key=lambda m: m.start)
        return matches

    def preview(self, text: str) -> List[PatternMatch]:
        """Matches that redact() would replace, without touching the vault."""
        return self.patterns.find_matches(text)

    def contains_sensitive(self, text: str) -> bool:
        return self.patterns.contains_sensitive(text)


class Reinflator:
    """Restore original values for tokens found in model output."""

    def __init__(self, vault: TokenVault) -> None:
        self.vault = vault
        self.unresolved: List[str] = []

    def reinflate(self, text: str) -> str:
        def _replace(match: re.Match) -> str:
            token = match.group(0)
            try:
                return self.vault.lookup(token)
            except VaultLookupError:
                # Left verbatim so the loss is visible, never dropped.
                logger.warning(f"Reinflation consistency warning: {token} has no vault entry")
                self.unresolved.append(token)
                return token

        return TOKEN_RE.sub(_replace, text)
