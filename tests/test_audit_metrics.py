"""Tests for the audit trail and metrics store."""
import json
import tempfile
import unittest
from pathlib import Path

from trivium.audit import AuditLog
from trivium.metrics import MetricsStore


class TestAuditLog(unittest.TestCase):
    def test_appends_jsonl_events(self):
        path = Path(tempfile.mkdtemp(prefix="trivium-audit-")) / "nested" / "audit.jsonl"
        audit = AuditLog(path, session_id="abc123")
        audit.log("query.redacted", {"count": 2})
        audit.log("consensus.result")
        events = audit.read()
        self.assertEqual([e["event"] for e in events], ["query.redacted", "consensus.result"])
        self.assertEqual(events[0]["data"], {"count": 2})
        self.assertEqual(events[1]["data"], {})
        self.assertEqual(events[0]["session_id"], "abc123")

    def test_read_missing_file(self):
        audit = AuditLog(Path(tempfile.mkdtemp(prefix="trivium-audit-")) / "none.jsonl")
        self.assertEqual(audit.read(), [])


class TestMetricsStore(unittest.TestCase):
    def setUp(self):
        self.store = MetricsStore.from_data_dir(Path(tempfile.mkdtemp(prefix="trivium-metrics-")))

    def test_summary_accumulates(self):
        self.store.record({"outcome": "passed", "rounds": 1, "latency_ms": 100.0, "abstentions": [], "redactions": 2})
        self.store.record({
            "outcome": "failed",
            "reason": "veto",
            "rounds": 1,
            "latency_ms": 300.0,
            "abstentions": ["logos"],
            "redactions": 0,
        })
        summary = self.store.record({
            "outcome": "failed",
            "reason": "threshold_not_met",
            "rounds": 3,
            "latency_ms": 200.0,
            "abstentions": ["logos", "ethos"],
        })
        self.assertEqual(summary["queries"], 3)
        self.assertEqual(summary["passed"], 1)
        self.assertEqual(summary["vetoed"], 1)
        self.assertEqual(summary["threshold_not_met"], 1)
        self.assertAlmostEqual(summary["avg_rounds"], 5 / 3, places=2)
        self.assertAlmostEqual(summary["avg_latency_ms"], 200.0, places=2)
        self.assertEqual(summary["agent_abstentions"], {"pathos": 0, "logos": 2, "ethos": 1})
        self.assertEqual(summary["redactions"], 2)
        self.assertEqual(self.store.summary()["queries"], 3)

    def test_observations_written(self):
        self.store.record({"outcome": "passed", "rounds": 1})
        lines = self.store.observations_path.read_text().splitlines()
        self.assertEqual(json.loads(lines[0])["outcome"], "passed")

    def test_corrupt_summary_starts_over(self):
        self.store.summary_path.parent.mkdir(parents=True, exist_ok=True)
        self.store.summary_path.write_text("{broken")
        self.assertEqual(self.store.summary()["queries"], 0)


if __name__ == "__main__":
    unittest.main()
