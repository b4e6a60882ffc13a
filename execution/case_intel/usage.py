"""
Model Usage Tracking

Accumulates token counts and cost (in cents) for every model call made while
classifying or indexing, so cost can be reported per case and per operation.
Records are optionally forwarded to a store with ``record_usage``.
"""

import logging
import threading
from dataclasses import dataclass, field
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class UsageRecord:
    """Usage for a single model call."""
    operation: str  # "classification", "embedding", "query_embedding"
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: float = 0.0
    case_id: Optional[str] = None
    document_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class UsageSummary:
    """Aggregated usage."""
    calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: float = 0.0
    by_operation: dict = field(default_factory=lambda: defaultdict(lambda: {
        "calls": 0, "tokens": 0, "cost_cents": 0.0,
    }))

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def add(self, record: UsageRecord) -> None:
        self.calls += 1
        self.input_tokens += record.input_tokens
        self.output_tokens += record.output_tokens
        self.cost_cents += record.cost_cents
        op = self.by_operation[record.operation]
        op["calls"] += 1
        op["tokens"] += record.total_tokens
        op["cost_cents"] += record.cost_cents

    def to_dict(self) -> dict:
        """Convert to dictionary for display."""
        return {
            "calls": self.calls,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost_cents": round(self.cost_cents, 4),
            "by_operation": {
                name: {**values, "cost_cents": round(values["cost_cents"], 4)}
                for name, values in self.by_operation.items()
            },
        }


class UsageTracker:
    """
    Collects usage records for one run (a request, a batch, a CLI invocation).

    Usage:
        tracker = UsageTracker(store=document_store)
        pipeline = ClassificationPipeline(..., usage_tracker=tracker)
        pipeline.classify_all_documents(case_id)
        print(tracker.summary(case_id).to_dict())

    Safe to share between the worker threads of a batch.
    """

    def __init__(self, store=None):
        self._store = store
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

    def record(self, record: UsageRecord) -> UsageRecord:
        with self._lock:
            self._records.append(record)

        if self._store is not None:
            try:
                self._store.record_usage(record)
            except Exception as e:
                # Losing an accounting row must not fail the document
                logger.warning(f"Failed to persist usage record: {e}")

        logger.debug(
            f"{record.operation} [{record.model}]: {record.total_tokens} tokens, "
            f"{record.cost_cents:.4f} cents"
        )
        return record

    @property
    def records(self) -> list[UsageRecord]:
        with self._lock:
            return list(self._records)

    def summary(self, case_id: Optional[str] = None) -> UsageSummary:
        """Totals over all records, or only those for ``case_id``."""
        summary = UsageSummary()
        for record in self.records:
            if case_id is None or record.case_id == case_id:
                summary.add(record)
        return summary

    def reset(self) -> None:
        """Drop all records (for testing)."""
        with self._lock:
            self._records = []
