"""Minimal Ollama client for local inference."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import httpx
import logging
import time

from trivium.errors import ConfigError

logger = logging.getLogger(__name__)

MODEL_PREFIX = "ollama:"


@dataclass
class OllamaResult:
    text: str
    duration_ms: float
    ok: bool
    error: Optional[str] = None


def model_tag(model_id: str) -> str:
    """``ollama:qwen2.5:7b`` -> ``qwen2.5:7b``."""
    if not model_id or not model_id.startswith(MODEL_PREFIX):
        raise ConfigError(f"unsupported model id {model_id!r}; expected '{MODEL_PREFIX}<tag>'")
    tag = model_id[len(MODEL_PREFIX):]
    if not tag:
        raise ConfigError(f"model id {model_id!r} has an empty tag")
    return tag


class OllamaClient:
    def __init__(self, base_url: str = "http://localhost:11434", timeout: float = 120.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def list_models(self) -> list[dict]:
        try:
            with httpx.Client(timeout=5.0) as client:
                resp = client.get(f"{self.base_url}/api/tags")
                resp.raise_for_status()
                data = resp.json()
                return data.get("models", [])
        except Exception:
            logger.debug("Ollama model listing failed", exc_info=True)
            return []

    def health_check(self) -> bool:
        try:
            with httpx.Client(timeout=5.0) as client:
                resp = client.get(f"{self.base_url}/api/version")
                return resp.status_code == 200
        except Exception:
            return False

    def generate(
        self,
        model: str,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> OllamaResult:
        payload: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": temperature,
            },
        }
        if system:
            payload["system"] = system
        if max_tokens is not None:
            payload["options"]["num_predict"] = max_tokens
        if json_mode:
            payload["format"] = "json"

        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(f"{self.base_url}/api/generate", json=payload)
                resp.raise_for_status()
                data = resp.json()
                duration = (time.perf_counter() - start) * 1000
                return OllamaResult(text=data.get("response", ""), duration_ms=duration, ok=True)
        except Exception as exc:
            duration = (time.perf_counter() - start) * 1000
            logger.warning(f"Ollama generate failed for {model}: {exc}")
            return OllamaResult(text="", duration_ms=duration, ok=False, error=str(exc))
