"""
Tests for execution/case_intel/usage.py

Covers: recording, per-case and per-operation summaries, store forwarding
        and tolerance of store failures.
"""

from unittest.mock import MagicMock

import pytest


def record(operation="classification", case_id="case-1", input_tokens=100, output_tokens=20, cost=0.5):
    from execution.case_intel.usage import UsageRecord

    return UsageRecord(
        operation=operation,
        model="gpt-4o-mini",
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cost_cents=cost,
        case_id=case_id,
    )


class TestUsageTracker:
    """Tests for UsageTracker."""

    def test_summary_totals(self):
        from execution.case_intel.usage import UsageTracker

        tracker = UsageTracker()
        tracker.record(record())
        tracker.record(record(operation="embedding", input_tokens=50, output_tokens=0, cost=0.001))

        summary = tracker.summary()
        assert summary.calls == 2
        assert summary.input_tokens == 150
        assert summary.total_tokens == 170
        assert summary.cost_cents == pytest.approx(0.501)
        assert summary.by_operation["embedding"]["tokens"] == 50
        assert summary.by_operation["classification"]["calls"] == 1

    def test_summary_filtered_by_case(self):
        from execution.case_intel.usage import UsageTracker

        tracker = UsageTracker()
        tracker.record(record(case_id="case-1"))
        tracker.record(record(case_id="case-2"))

        assert tracker.summary("case-2").calls == 1
        assert tracker.summary("case-3").calls == 0

    def test_to_dict_rounds_cost(self):
        from execution.case_intel.usage import UsageTracker

        tracker = UsageTracker()
        tracker.record(record(cost=0.123456789))

        data = tracker.summary().to_dict()
        assert data["cost_cents"] == 0.1235
        assert data["by_operation"]["classification"]["cost_cents"] == 0.1235
        assert data["total_tokens"] == 120

    def test_records_returns_copy(self):
        from execution.case_intel.usage import UsageTracker

        tracker = UsageTracker()
        tracker.record(record())
        tracker.records.clear()
        assert len(tracker.records) == 1

    def test_reset(self):
        from execution.case_intel.usage import UsageTracker

        tracker = UsageTracker()
        tracker.record(record())
        tracker.reset()
        assert tracker.records == []

    def test_forwards_to_store(self, document_store):
        from execution.case_intel.usage import UsageTracker

        tracker = UsageTracker(store=document_store)
        tracker.record(record(case_id="case-1"))

        assert len(document_store.usage) == 1
        assert document_store.usage[0].operation == "classification"

    def test_store_failure_does_not_raise(self):
        from execution.case_intel.usage import UsageTracker

        store = MagicMock()
        store.record_usage.side_effect = RuntimeError("db down")

        tracker = UsageTracker(store=store)
        tracker.record(record())

        assert len(tracker.records) == 1
