"""Session lifetime: one vault, one redactor, one reinflator."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional
import logging
import uuid

from trivium.errors import SessionClosedError
from trivium.privacy.patterns import PatternSet
from trivium.privacy.redactor import RedactionResult, Redactor, Reinflator
from trivium.privacy.vault import TokenVault

logger = logging.getLogger(__name__)


class Session:
    """Owns the token vault for a single user session.

    The vault is reset exactly once, in ``start()``, and destroyed in
    ``close()``. Within a query the phases must run in order: ``redact`` while
    the vault is open, agents while it is ``sealed()``, then ``reinflate``.
    """

    def __init__(self, patterns: Optional[PatternSet] = None, session_id: Optional[str] = None) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.vault = TokenVault()
        self.redactor = Redactor(patterns or PatternSet.builtin(), self.vault)
        self.reinflator = Reinflator(self.vault)
        self._started = False
        self._closed = False

    def start(self) -> "Session":
        if self._closed:
            raise SessionClosedError(f"session {self.session_id} is closed")
        if not self._started:
            self.vault.reset()
            self._started = True
            logger.debug(f"Session {self.session_id} started")
        return self

    def close(self) -> None:
        if self._closed:
            return
        self.vault.destroy()
        self._closed = True
        logger.debug(f"Session {self.session_id} closed")

    @property
    def active(self) -> bool:
        return self._started and not self._closed

    def __enter__(self) -> "Session":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def redact(self, text: str) -> RedactionResult:
        self._require_active()
        return self.redactor.redact(text)

    @contextmanager
    def sealed(self) -> Iterator[TokenVault]:
        """Block vault writes for the duration of the agent phase."""
        self._require_active()
        self.vault.seal()
        try:
            yield self.vault
        finally:
            if not self.vault.destroyed:
                self.vault.unseal()

    def reinflate(self, text: str) -> str:
        self._require_active()
        self.vault.verify()
        return self.reinflator.reinflate(text)

    def _require_active(self) -> None:
        if self._closed:
            raise SessionClosedError(f"session {self.session_id} is closed")
        if not self._started:
            self.start()
