"""Knowledge collaborators that supply Logos with retrieved context."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import re
import time
import httpx
import logging
import yaml

logger = logging.getLogger(__name__)

WORD_RE = re.compile(r"[A-Za-z0-9_]+")


@dataclass
class Chunk:
    source: str
    content: str
    score: float = 0.0

    @classmethod
    def from_dict(cls, item: Dict[str, Any]) -> "Chunk":
        source = item.get("source") or item.get("file_path") or item.get("title") or "unknown"
        content = item.get("content") or item.get("snippet") or item.get("text") or ""
        try:
            score = float(item.get("score", 0.0) or 0.0)
        except (TypeError, ValueError):
            score = 0.0
        return cls(source=str(source), content=str(content), score=score)


@dataclass
class RagClient:
    base_url: str
    timeout: float = 15.0
    collection: Optional[str] = None
    errors: list[dict] = field(default_factory=list)

    def _record_error(self, action: str, exc: Exception) -> None:
        self.errors.append({"action": action, "error": str(exc), "time": time.time()})

    def drain_errors(self) -> list[dict]:
        errors = list(self.errors)
        self.errors.clear()
        return errors

    def search(self, query: str, limit: int = 5) -> List[Chunk]:
        params: Dict[str, Any] = {"q": query, "limit": limit}
        if self.collection:
            params["collection"] = self.collection
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.get(f"{self.base_url.rstrip('/')}/api/rag/search", params=params)
                resp.raise_for_status()
                results = resp.json().get("results", [])
        except httpx.TimeoutException as exc:
            self._record_error("search", exc)
            logger.warning(f"RAG search timed out after {self.timeout}s")
            return []
        except Exception as exc:
            self._record_error("search", exc)
            logger.warning("RAG search failed", exc_info=True)
            return []
        return [Chunk.from_dict(item) for item in results if isinstance(item, dict)][:limit]

    def health_check(self) -> bool:
        """Check if RAG server is reachable."""
        try:
            with httpx.Client(timeout=5.0) as client:
                resp = client.get(f"{self.base_url.rstrip('/')}/health")
                return resp.status_code == 200
        except Exception:
            return False


class StaticKnowledge:
    """In-memory keyword-overlap search over a fixed set of chunks."""

    def __init__(self, chunks: Iterable[Chunk]) -> None:
        self.chunks = list(chunks)

    @classmethod
    def from_file(cls, path: Path) -> "StaticKnowledge":
        data = yaml.safe_load(Path(path).read_text()) or []
        if isinstance(data, dict):
            data = data.get("chunks", [])
        return cls(Chunk.from_dict(item) for item in data if isinstance(item, dict))

    def search(self, query: str, limit: int = 5) -> List[Chunk]:
        terms = {word.lower() for word in WORD_RE.findall(query) if len(word) > 2}
        if not terms:
            return []
        scored: List[Chunk] = []
        for chunk in self.chunks:
            words = {word.lower() for word in WORD_RE.findall(chunk.content)}
            overlap = len(terms & words)
            if overlap:
                scored.append(Chunk(source=chunk.source, content=chunk.content, score=overlap / len(terms)))
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored[:limit]


class NullKnowledge:
    def search(self, query: str, limit: int = 5) -> List[Chunk]:
        return []


def build_knowledge(rag: Dict[str, Any]) -> Any:
    """Pick the knowledge collaborator for a ``rag`` config section."""
    rag = rag or {}
    if not rag.get("enabled", False):
        return NullKnowledge()
    static_path = rag.get("static_path")
    if static_path:
        return StaticKnowledge.from_file(Path(static_path).expanduser())
    return RagClient(
        base_url=rag.get("base_url", "http://localhost:8091"),
        timeout=float(rag.get("timeout", 15.0)),
        collection=rag.get("collection"),
    )
