"""Configuration loader for Trivium."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict
import os
import yaml

from trivium.errors import ConfigError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "trivium" / "config.yaml"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def load_config(user_path: Path | None = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if DEFAULT_CONFIG_PATH.exists():
        data = _read_yaml(DEFAULT_CONFIG_PATH)
    user_path = user_path or USER_CONFIG_PATH
    if user_path.exists():
        data = _deep_merge(data, _read_yaml(user_path))

    # Environment overrides - Consensus
    threshold = os.getenv("TRIVIUM_THRESHOLD")
    if threshold:
        try:
            data.setdefault("consensus", {})["threshold"] = float(threshold)
        except ValueError:
            pass

    max_rounds = os.getenv("TRIVIUM_MAX_ROUNDS")
    if max_rounds:
        try:
            data.setdefault("consensus", {})["max_rounds"] = int(max_rounds)
        except ValueError:
            pass

    agent_timeout = os.getenv("TRIVIUM_AGENT_TIMEOUT")
    if agent_timeout:
        try:
            data.setdefault("consensus", {})["agent_timeout_seconds"] = float(agent_timeout)
        except ValueError:
            pass

    strategy = os.getenv("TRIVIUM_STRATEGY")
    if strategy:
        data.setdefault("consensus", {})["strategy"] = strategy.strip().lower()

    # Environment overrides - Data directory
    data_dir = os.getenv("TRIVIUM_DATA_DIR")
    if data_dir:
        data["data_dir"] = data_dir

    # Environment overrides - Backends
    ollama_url = os.getenv("TRIVIUM_OLLAMA_URL")
    if ollama_url:
        data.setdefault("ollama", {})["base_url"] = ollama_url

    rag_url = os.getenv("TRIVIUM_RAG_URL")
    if rag_url:
        data.setdefault("rag", {})["base_url"] = rag_url
        data["rag"]["enabled"] = True

    manifest = os.getenv("TRIVIUM_MANIFEST")
    if manifest:
        data["manifest_path"] = manifest

    log_level = os.getenv("TRIVIUM_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level.upper()

    return data


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def consensus(self) -> Dict[str, Any]:
        return self.raw.get("consensus", {}) or {}

    @property
    def threshold(self) -> float:
        return float(self.consensus.get("threshold", 0.85))

    @property
    def max_rounds(self) -> int:
        return int(self.consensus.get("max_rounds", 3))

    @property
    def weights(self) -> Dict[str, float]:
        """Per-role weights. Equal weighting unless configured."""
        configured = self.consensus.get("weights") or {}
        roles = ("pathos", "logos", "ethos")
        if not configured:
            return {role: 1.0 / len(roles) for role in roles}
        return {role: float(configured.get(role, 0.0)) for role in roles}

    @property
    def strategy(self) -> str:
        return str(self.consensus.get("strategy", "parallel"))

    @property
    def agent_timeout_seconds(self) -> float:
        """Per-agent time budget for one round. Default 60 seconds."""
        return float(self.consensus.get("agent_timeout_seconds", 60))

    @property
    def feedback(self) -> bool:
        return bool(self.consensus.get("feedback", True))

    @property
    def privacy(self) -> Dict[str, Any]:
        return self.raw.get("privacy", {}) or {}

    @property
    def agents(self) -> Dict[str, Any]:
        return self.raw.get("agents", {}) or {}

    @property
    def rag(self) -> Dict[str, Any]:
        return self.raw.get("rag", {}) or {}

    @property
    def ollama_url(self) -> str:
        return str((self.raw.get("ollama", {}) or {}).get("base_url", "http://localhost:11434"))

    @property
    def ollama_timeout(self) -> float:
        return float((self.raw.get("ollama", {}) or {}).get("timeout_seconds", 120))

    @property
    def manifest_path(self) -> Path | None:
        path = self.raw.get("manifest_path")
        return Path(path).expanduser() if path else None

    @property
    def data_dir(self) -> Path:
        default = str(Path.home() / ".trivium")
        return Path(self.raw.get("data_dir", default)).expanduser()

    @property
    def log_level(self) -> str:
        return str((self.raw.get("logging", {}) or {}).get("level", "WARNING")).upper()

    def validate(self) -> None:
        try:
            threshold = self.threshold
            max_rounds = self.max_rounds
            weights = self.weights
            timeout = self.agent_timeout_seconds
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid consensus setting: {exc}") from exc
        if not 0.0 <= threshold <= 1.0:
            raise ConfigError(f"consensus.threshold must be within [0, 1], got {threshold}")
        if max_rounds < 1:
            raise ConfigError(f"consensus.max_rounds must be at least 1, got {max_rounds}")
        if any(w < 0 for w in weights.values()):
            raise ConfigError("consensus.weights cannot be negative")
        if abs(sum(weights.values()) - 1.0) > 1e-6:
            raise ConfigError(f"consensus.weights must sum to 1, got {sum(weights.values()):.4f}")
        if self.strategy not in ("parallel", "sequential"):
            raise ConfigError(f"unknown consensus.strategy: {self.strategy}")
        if timeout <= 0:
            raise ConfigError("consensus.agent_timeout_seconds must be positive")
        if not isinstance(self.privacy, dict):
            raise ConfigError("privacy must be a mapping")


def get_config() -> Config:
    return Config(load_config())
