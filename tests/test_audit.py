"""Tests for result aggregation."""

import json

from certrotation.audit import AuditResultAggregator, RotationOutcome, RotationResult
from certrotation.helpers import evaluate_expiry
from conftest import NOW, make_cert


def _result(name, outcome, **kwargs):
    return RotationResult(certificate_name=name, outcome=outcome, **kwargs)


class TestAuditResultAggregator:
    def test_preserves_input_order(self):
        aggregator = AuditResultAggregator("kv-test")
        names = ["c", "a", "b"]
        for name in names:
            aggregator.add(_result(name, RotationOutcome.SKIPPED))

        summary = aggregator.finalize()

        assert [r.certificate_name for r in summary.results] == names

    def test_counts_by_outcome(self):
        aggregator = AuditResultAggregator("kv-test", threshold_days=30)
        aggregator.add(_result("a", RotationOutcome.ROTATED))
        aggregator.add(_result("b", RotationOutcome.SKIPPED))
        aggregator.add(_result("c", RotationOutcome.FAILED, error="boom"))
        aggregator.add(_result("d", RotationOutcome.TIMED_OUT, error="slow"))

        summary = aggregator.finalize()

        assert summary.counts() == {
            "evaluated": 4,
            "rotated": 1,
            "created": 0,
            "skipped": 1,
            "failed": 1,
            "timedOut": 1,
        }
        assert summary.has_failures

    def test_finalize_stamps_completion_and_logs(self, caplog):
        aggregator = AuditResultAggregator("kv-test")
        aggregator.add(_result("a", RotationOutcome.SKIPPED))

        with caplog.at_level("INFO", logger="CertRotation"):
            summary = aggregator.finalize("sweep")

        assert summary.completed_at is not None
        assert any('"audit": "sweep"' in record.getMessage() for record in caplog.records)

    def test_to_json(self):
        evaluation = evaluate_expiry(make_cert("a", 10), 30, NOW)
        aggregator = AuditResultAggregator("kv-test", threshold_days=30)
        aggregator.add(_result(
            "a",
            RotationOutcome.ROTATED,
            old_thumbprint="aa",
            new_thumbprint="bb",
            evaluation=evaluation,
        ))

        data = json.loads(aggregator.finalize().to_json())

        assert data["keyVault"] == "kv-test"
        assert data["success"] is True
        result = data["results"][0]
        assert result["outcome"] == "ROTATED"
        assert result["oldThumbprint"] == "aa"
        assert result["newThumbprint"] == "bb"
        assert result["expiry"]["status"] == "EXPIRING_SOON"
        assert result["expiry"]["daysUntilExpiry"] == 10
