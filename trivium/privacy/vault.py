"""Session-scoped token vault.

Maps placeholder tokens such as ``[EMAIL_0001]`` back to the values they
replaced. The vault lives in memory only: it is never written to disk and
never shared between sessions.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple
import logging

from trivium.errors import (
    SessionClosedError,
    VaultCorruptionError,
    VaultLookupError,
    VaultSealedError,
)

logger = logging.getLogger(__name__)


def format_token(category: str, number: int) -> str:
    return f"[{category}_{number:04d}]"


@dataclass(frozen=True)
class TokenVaultEntry:
    token: str
    value: str
    category: str
    order: int

    def __repr__(self) -> str:
        # Keep original values out of logs and tracebacks.
        return f"TokenVaultEntry(token={self.token!r}, category={self.category!r}, order={self.order})"


class TokenVault:
    """Bidirectional token <-> value store for one session.

    Writes are only allowed while the vault is unsealed; the pipeline seals
    it once redaction of a query is complete and unseals it after
    reinflation.
    """

    def __init__(self) -> None:
        self._by_token: Dict[str, TokenVaultEntry] = {}
        self._by_value: Dict[Tuple[str, str], str] = {}
        self._counters: Dict[str, int] = {}
        self._order = 0
        self._sealed = False
        self._destroyed = False

    def register(self, value: str, category: str) -> str:
        """Return the token for value, minting ``[CATEGORY_NNNN]`` if new."""
        self._check_open()
        if self._sealed:
            raise VaultSealedError("vault is sealed; register is only allowed during redaction")
        key = (category, value)
        existing = self._by_value.get(key)
        if existing is not None:
            return existing
        number = self._counters.get(category, 0) + 1
        token = format_token(category, number)
        if token in self._by_token:
            raise VaultCorruptionError(f"token {token} already minted for another value")
        self._counters[category] = number
        self._order += 1
        self._by_token[token] = TokenVaultEntry(token=token, value=value, category=category, order=self._order)
        self._by_value[key] = token
        logger.debug(f"Minted {token}")
        return token

    def lookup(self, token: str) -> str:
        entry = self._by_token.get(token)
        if entry is None:
            raise VaultLookupError(token)
        return entry.value

    def get(self, token: str) -> str | None:
        entry = self._by_token.get(token)
        return entry.value if entry else None

    def reset(self) -> None:
        """Clear every mapping and counter. Called once at session start."""
        self._check_open()
        self._by_token.clear()
        self._by_value.clear()
        self._counters.clear()
        self._order = 0
        self._sealed = False

    def destroy(self) -> None:
        """Drop all mappings at session end; the vault cannot be reused."""
        self._by_token.clear()
        self._by_value.clear()
        self._counters.clear()
        self._order = 0
        self._destroyed = True

    def seal(self) -> None:
        self._check_open()
        self._sealed = True

    def unseal(self) -> None:
        self._check_open()
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def verify(self) -> None:
        """Check that the forward and reverse maps agree."""
        if len(self._by_token) != len(self._by_value):
            raise VaultCorruptionError(
                f"vault maps disagree: {len(self._by_token)} tokens vs {len(self._by_value)} values"
            )
        for (category, value), token in self._by_value.items():
            entry = self._by_token.get(token)
            if entry is None or entry.value != value or entry.category != category:
                raise VaultCorruptionError(f"vault entry for {token} is inconsistent")
        for category, counter in self._counters.items():
            minted = sum(1 for e in self._by_token.values() if e.category == category)
            if minted != counter:
                raise VaultCorruptionError(f"counter for {category} is {counter} but {minted} tokens exist")

    def entries(self) -> List[TokenVaultEntry]:
        return sorted(self._by_token.values(), key=lambda e: e.order)

    def stats(self) -> Dict[str, int]:
        return dict(self._counters)

    def __contains__(self, token: object) -> bool:
        return token in self._by_token

    def __len__(self) -> int:
        return len(self._by_token)

    def _check_open(self) -> None:
        if self._destroyed:
            raise SessionClosedError("token vault was destroyed at session end")
