"""Error taxonomy for Trivium."""
from __future__ import annotations


class TriviumError(Exception):
    """Base class for all Trivium errors."""
    pass


class ConfigError(TriviumError):
    """Raised when configuration is invalid. Fatal at startup."""
    pass


class RedactionConfigError(ConfigError):
    """Raised when a redaction pattern is malformed."""
    pass


class ManifestError(ConfigError):
    """Raised when a hardware/model manifest cannot be loaded or is invalid."""
    pass


class VaultError(TriviumError):
    """Base class for token vault errors."""
    pass


class VaultLookupError(VaultError, KeyError):
    """Raised when a token has no entry in the vault."""

    def __init__(self, token: str) -> None:
        super().__init__(token)
        self.token = token

    def __str__(self) -> str:
        return f"token not found in vault: {self.token}"


class VaultSealedError(VaultError):
    """Raised when the vault is written to outside the redaction phase."""
    pass


class VaultCorruptionError(VaultError):
    """Raised when the vault's forward and reverse maps disagree. Fatal."""
    pass


class SessionClosedError(VaultError):
    """Raised when a closed session is used again."""
    pass


class AgentError(TriviumError):
    """Base class for role agent failures. Recovered as an abstention."""

    def __init__(self, role: str, message: str) -> None:
        super().__init__(f"{role}: {message}")
        self.role = role
        self.message = message


class AgentTimeoutError(AgentError):
    """Raised when a role agent exceeds its time budget."""
    pass


class AgentInternalError(AgentError):
    """Raised when a role agent fails or returns unusable output."""
    pass


class ConsensusFailed(TriviumError):
    """Base class for terminal consensus failures."""

    def __init__(self, message: str, rounds: int, score: float | None = None) -> None:
        super().__init__(message)
        self.rounds = rounds
        self.score = score


class ConsensusVetoed(ConsensusFailed):
    """The verification role vetoed the response."""
    pass


class ConsensusThresholdNotMet(ConsensusFailed):
    """The weighted score stayed below the threshold for every round."""
    pass
