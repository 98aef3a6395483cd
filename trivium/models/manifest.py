"""Hardware/model manifests and per-role model resolution."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import json
import logging

from trivium.errors import ConfigError, ManifestError
from trivium.models.ollama import MODEL_PREFIX, model_tag

logger = logging.getLogger(__name__)

QUANTIZATIONS = ("Q4", "Q5", "Q8", "F16")
RECOMMENDATION_ROLES = ("pathos", "logos", "ethos", "embeddings")
AGENT_ROLES = ("pathos", "logos", "ethos")
MAX_CONTEXT_SIZE = 131072


def format_bytes(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{int(value)} B" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


@dataclass
class ModelRecommendation:
    model: str
    quantization: str
    repo_id: str
    filename: str
    size_bytes: int = 0
    sha256: Optional[str] = None

    @classmethod
    def from_dict(cls, role: str, data: Any) -> "ModelRecommendation":
        if not isinstance(data, dict):
            raise ManifestError(f"{role} recommendation must be an object")
        try:
            size = int(data.get("size_bytes", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise ManifestError(f"{role} size_bytes must be an integer") from exc
        return cls(
            model=str(data.get("model") or ""),
            quantization=str(data.get("quantization") or ""),
            repo_id=str(data.get("repo_id") or ""),
            filename=str(data.get("filename") or ""),
            size_bytes=size,
            sha256=data.get("sha256"),
        )

    def validate(self, role: str) -> None:
        if not self.model:
            raise ManifestError(f"{role} model name cannot be empty")
        if not self.repo_id:
            raise ManifestError(f"{role} repo_id cannot be empty")
        if not self.filename:
            raise ManifestError(f"{role} filename cannot be empty")
        if self.quantization not in QUANTIZATIONS:
            raise ManifestError(f"{role} quantization must be one of {', '.join(QUANTIZATIONS)}")
        # 0 marks a model shared with another role
        if self.size_bytes < 0 or 0 < self.size_bytes < 1024:
            raise ManifestError(f"{role} size_bytes seems too small (< 1KB)")


@dataclass(frozen=True)
class ModelHandle:
    role: str
    model_id: str
    quantization: Optional[str] = None
    context_size: Optional[int] = None
    gpu_layers: int = 0
    source: str = "config"

    @property
    def tag(self) -> str:
        return model_tag(self.model_id)


@dataclass
class HardwareManifest:
    name: str
    description: str
    min_ram_bytes: int
    min_vram_bytes: int
    gpu_layers: int
    context_size: int
    recommendations: Dict[str, ModelRecommendation]

    @classmethod
    def from_dict(cls, data: Any) -> "HardwareManifest":
        if not isinstance(data, dict):
            raise ManifestError("manifest must be a JSON object")
        recs = data.get("recommendations")
        if not isinstance(recs, dict):
            raise ManifestError("manifest is missing recommendations")
        missing = [role for role in RECOMMENDATION_ROLES if role not in recs]
        if missing:
            raise ManifestError(f"manifest is missing recommendations for: {', '.join(missing)}")
        try:
            return cls(
                name=str(data.get("name") or ""),
                description=str(data.get("description") or ""),
                min_ram_bytes=int(data.get("min_ram_bytes", 0) or 0),
                min_vram_bytes=int(data.get("min_vram_bytes", 0) or 0),
                gpu_layers=int(data.get("gpu_layers", 0) or 0),
                context_size=int(data.get("context_size", 0) or 0),
                recommendations={
                    role: ModelRecommendation.from_dict(role, recs[role]) for role in RECOMMENDATION_ROLES
                },
            )
        except (TypeError, ValueError) as exc:
            raise ManifestError(f"manifest has a non-numeric field: {exc}") from exc

    @classmethod
    def load(cls, path: Path) -> "HardwareManifest":
        path = Path(path)
        logger.debug(f"Loading manifest from {path}")
        try:
            data = json.loads(path.read_text())
        except OSError as exc:
            raise ManifestError(f"failed to read manifest {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ManifestError(f"failed to parse manifest JSON {path}: {exc}") from exc
        manifest = cls.from_dict(data)
        manifest.validate()
        return manifest

    def validate(self) -> None:
        if not self.name:
            raise ManifestError("manifest name cannot be empty")
        if self.min_ram_bytes <= 0:
            raise ManifestError("min_ram_bytes must be > 0")
        if self.min_vram_bytes < 0:
            raise ManifestError("min_vram_bytes cannot be negative")
        for role in RECOMMENDATION_ROLES:
            self.recommendations[role].validate(role)
        if not 1 <= self.context_size <= MAX_CONTEXT_SIZE:
            raise ManifestError(f"context_size must be between 1 and {MAX_CONTEXT_SIZE}")

    def is_compatible(self, ram_bytes: int, vram_bytes: int = 0) -> bool:
        if ram_bytes < self.min_ram_bytes:
            return False
        if self.min_vram_bytes > 0 and vram_bytes < self.min_vram_bytes:
            return False
        return True

    def total_download_size(self) -> int:
        return sum(rec.size_bytes for rec in self.recommendations.values())

    def summary(self) -> str:
        vram = format_bytes(self.min_vram_bytes) if self.min_vram_bytes > 0 else "N/A"
        models = ", ".join(self.recommendations[role].model for role in RECOMMENDATION_ROLES)
        return (
            f"Profile: {self.name}\n"
            f"  {self.description}\n"
            f"  RAM: {format_bytes(self.min_ram_bytes)}+, VRAM: {vram}+\n"
            f"  Models: {models}\n"
            f"  Download: {format_bytes(self.total_download_size())}"
        )

    def resolve_handles(self) -> Dict[str, ModelHandle]:
        handles: Dict[str, ModelHandle] = {}
        for role in AGENT_ROLES:
            rec = self.recommendations[role]
            model_id = rec.model if rec.model.startswith(MODEL_PREFIX) else f"{MODEL_PREFIX}{rec.model}"
            handles[role] = ModelHandle(
                role=role,
                model_id=model_id,
                quantization=rec.quantization,
                context_size=self.context_size,
                gpu_layers=self.gpu_layers,
                source=f"manifest:{self.name}",
            )
        return handles


def resolve_role_models(
    agents: Dict[str, Any],
    manifest: Optional[HardwareManifest] = None,
) -> Dict[str, ModelHandle]:
    """One model handle per role. Explicit ``agents.<role>.model`` wins."""
    from_manifest = manifest.resolve_handles() if manifest else {}
    handles: Dict[str, ModelHandle] = {}
    for role in AGENT_ROLES:
        section = (agents or {}).get(role) or {}
        model_id = section.get("model") if isinstance(section, dict) else None
        if model_id:
            model_tag(model_id)
            handles[role] = ModelHandle(role=role, model_id=model_id)
        elif role in from_manifest:
            handles[role] = from_manifest[role]
        else:
            raise ConfigError(f"no model configured for {role}; set agents.{role}.model or provide a manifest")
    return handles
