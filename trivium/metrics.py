"""Per-query telemetry: a JSONL observation log plus a running summary."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict
import json
import time
import logging

logger = logging.getLogger(__name__)

EMPTY_SUMMARY: Dict[str, Any] = {
    "queries": 0,
    "passed": 0,
    "vetoed": 0,
    "threshold_not_met": 0,
    "avg_rounds": 0.0,
    "avg_latency_ms": 0.0,
    "agent_abstentions": {"pathos": 0, "logos": 0, "ethos": 0},
    "redactions": 0,
}


@dataclass
class MetricsStore:
    observations_path: Path
    summary_path: Path

    @classmethod
    def from_data_dir(cls, data_dir: Path) -> "MetricsStore":
        base = Path(data_dir) / "metrics"
        return cls(base / "metrics.jsonl", base / "metrics.json")

    def summary(self) -> Dict[str, Any]:
        if not self.summary_path.exists():
            return json.loads(json.dumps(EMPTY_SUMMARY))
        try:
            data = json.loads(self.summary_path.read_text())
        except Exception:
            logger.warning("Failed to load metrics summary", exc_info=True)
            return json.loads(json.dumps(EMPTY_SUMMARY))
        merged = json.loads(json.dumps(EMPTY_SUMMARY))
        merged.update(data)
        return merged

    def record(self, observation: Dict[str, Any]) -> Dict[str, Any]:
        """Append one query observation and fold it into the summary.

        ``observation`` keys: outcome (passed|failed), reason, rounds, score,
        latency_ms, abstentions (list of roles), redactions.
        """
        self._append(observation)
        summary = self.summary()
        count = int(summary["queries"])
        summary["queries"] = count + 1
        if observation.get("outcome") == "passed":
            summary["passed"] += 1
        elif observation.get("reason") == "veto":
            summary["vetoed"] += 1
        elif observation.get("reason") == "threshold_not_met":
            summary["threshold_not_met"] += 1
        summary["avg_rounds"] = _running_mean(summary["avg_rounds"], count, float(observation.get("rounds", 0)))
        summary["avg_latency_ms"] = _running_mean(
            summary["avg_latency_ms"], count, float(observation.get("latency_ms", 0.0))
        )
        abstentions = summary.setdefault("agent_abstentions", {})
        for role in observation.get("abstentions", []):
            abstentions[role] = int(abstentions.get(role, 0)) + 1
        summary["redactions"] = int(summary.get("redactions", 0)) + int(observation.get("redactions", 0))
        summary["updated_at"] = time.strftime("%Y-%m-%dT%H:%M:%S")
        self.summary_path.parent.mkdir(parents=True, exist_ok=True)
        self.summary_path.write_text(json.dumps(summary, indent=2))
        return summary

    def _append(self, observation: Dict[str, Any]) -> None:
        self.observations_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
            **observation,
        }
        with self.observations_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload) + "\n")


def _running_mean(current: float, count: int, value: float) -> float:
    return round((float(current) * count + value) / (count + 1), 3)
