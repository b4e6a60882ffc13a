"""
Classification Review Workflow

Human decisions on AI classifications: accept, reject, override, plus bulk
variants and review statistics.

States:
    UNCLASSIFIED -> PENDING -> ACCEPTED | REJECTED | OVERRIDDEN

Accept and override clear needs_review. Reject keeps the document flagged and
records the reason; it stays rejected until someone accepts, overrides or
re-classifies it. Every accept and override appends a history entry.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional
from dataclasses import dataclass, field

from .document_store import DocumentRecord, HistoryEntry, HistorySource, ReviewState
from .errors import ClassificationMissing
from .metadata_extraction import metadata_for_category
from .taxonomy import validate_category_subtype

logger = logging.getLogger(__name__)

__all__ = [
    "ReviewState",
    "OverrideResult",
    "BulkActionResult",
    "ReviewWorkflow",
]


@dataclass
class OverrideResult:
    document_id: str
    previous_category: Optional[str]
    previous_subtype: Optional[str]
    new_category: str
    new_subtype: str
    overridden_by: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "success": True,
            "document_id": self.document_id,
            "previous_category": self.previous_category,
            "previous_subtype": self.previous_subtype,
            "new_category": self.new_category,
            "new_subtype": self.new_subtype,
            "overridden_by": self.overridden_by,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class BulkActionResult:
    """Per-item outcome of a bulk review action. Failures land in errors."""
    processed: int = 0
    accepted: int = 0
    rejected: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "errors": self.errors,
        }


def _require_reason(reason: Optional[str]) -> str:
    if not reason or not reason.strip():
        raise ValueError("Reason is required")
    return reason.strip()


class ReviewWorkflow:
    """
    Review actions over a document store.

    Usage:
        workflow = ReviewWorkflow(document_store)
        workflow.accept(document_id, user_id="attorney_1")
        workflow.override(document_id, "attorney_1", "Financial", "Pay Stub")
    """

    def __init__(
        self,
        document_store,
        clock: Optional[Callable[[], datetime]] = None,
        pipeline=None,
    ):
        self.document_store = document_store
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.pipeline = pipeline  # ClassificationPipeline, used for re-classification

    # =========================================================================
    # Single-document actions
    # =========================================================================

    def accept(self, document_id: str, user_id: str) -> DocumentRecord:
        """
        Ratify the current AI classification.

        Raises:
            DocumentNotFound
            ClassificationMissing: The document was never classified
        """
        record = self.document_store.get_document(document_id)
        if not record.is_classified:
            raise ClassificationMissing(document_id)

        now = self.clock()
        entry = HistoryEntry(
            timestamp=now,
            category=record.category,
            subtype=record.subtype,
            confidence=record.confidence,
            source=HistorySource.AI.value,
            user_id=user_id,
            previous_category=record.category,
            previous_subtype=record.subtype,
        )
        updated = self.document_store.update_classification(
            document_id,
            history_entry=entry,
            needs_review=False,
            review_status=ReviewState.ACCEPTED.value,
            reviewed_at=now,
            reviewed_by=user_id,
        )
        logger.info(f"Document {document_id} accepted by {user_id}")
        return updated

    def reject(self, document_id: str, user_id: str, reason: str) -> DocumentRecord:
        """
        Reject the current classification; the document stays flagged.

        Raises:
            ValueError: Empty reason (checked before any lookup)
            DocumentNotFound
            ClassificationMissing: The document was never classified
        """
        reason = _require_reason(reason)
        record = self.document_store.get_document(document_id)
        if not record.is_classified:
            raise ClassificationMissing(document_id)

        metadata = record.metadata
        metadata.extra.update({
            "rejection_reason": reason,
            "rejected_by": user_id,
            "rejected_at": self.clock().isoformat(),
        })
        updated = self.document_store.update_classification(
            document_id,
            needs_review=True,
            review_status=ReviewState.REJECTED.value,
            metadata=metadata,
        )
        logger.info(f"Document {document_id} rejected by {user_id}: {reason}")
        return updated

    def override(
        self,
        document_id: str,
        user_id: str,
        category: str,
        subtype: str,
    ) -> OverrideResult:
        """
        Replace the classification with a human decision (confidence 1.0).

        Raises:
            InvalidCategorySubtype: Checked before the document is read, so
                nothing changes
            DocumentNotFound
        """
        validate_category_subtype(category, subtype)
        record = self.document_store.get_document(document_id)

        now = self.clock()
        entry = HistoryEntry(
            timestamp=now,
            category=category,
            subtype=subtype,
            confidence=1.0,
            source=HistorySource.MANUAL_OVERRIDE.value,
            user_id=user_id,
            previous_category=record.category,
            previous_subtype=record.subtype,
        )
        self.document_store.update_classification(
            document_id,
            history_entry=entry,
            category=category,
            subtype=subtype,
            confidence=1.0,
            needs_review=False,
            review_status=ReviewState.OVERRIDDEN.value,
            reviewed_at=now,
            reviewed_by=user_id,
            metadata=metadata_for_category(category, record.metadata.to_dict()),
        )

        logger.info(
            f"Document {document_id} overridden by {user_id}: "
            f"{record.category}/{record.subtype} -> {category}/{subtype}"
        )
        return OverrideResult(
            document_id=document_id,
            previous_category=record.category,
            previous_subtype=record.subtype,
            new_category=category,
            new_subtype=subtype,
            overridden_by=user_id,
            timestamp=now,
        )

    def request_reclassification(
        self,
        document_id: str,
        user_id: str,
        hints: Optional[str] = None,
    ) -> DocumentRecord:
        """
        Flag a document for another classification pass.

        Hints are stored in metadata. When a pipeline is configured the
        document is classified again right away with the hints in the prompt.
        """
        record = self.document_store.get_document(document_id)

        metadata = record.metadata
        metadata.extra.update({
            "reclassification_requested": True,
            "reclassification_hints": hints,
            "requested_by": user_id,
            "requested_at": self.clock().isoformat(),
        })
        values = {"needs_review": True, "metadata": metadata}
        if record.is_classified:
            values["review_status"] = ReviewState.PENDING.value
        updated = self.document_store.update_classification(document_id, **values)

        if self.pipeline is not None:
            self.pipeline.classify_and_store(document_id, user_id=user_id, hints=hints)
            updated = self.document_store.get_document(document_id)

        logger.info(f"Re-classification requested for {document_id} by {user_id}")
        return updated

    # =========================================================================
    # Bulk actions
    # =========================================================================

    def bulk_accept(
        self,
        user_id: str,
        case_id: Optional[str] = None,
        min_confidence: Optional[float] = None,
        document_ids: Optional[list[str]] = None,
    ) -> BulkActionResult:
        """
        Accept a set of documents.

        Either pass ``document_ids`` or a ``case_id``; with a case, every
        flagged classified document at or above ``min_confidence`` is accepted.
        """
        if document_ids is None:
            if case_id is None:
                raise ValueError("bulk_accept needs document_ids or case_id")
            candidates = self.document_store.list_case_documents(
                case_id, needs_review=True, min_confidence=min_confidence,
            )
            document_ids = [d.id for d in candidates if d.is_classified]

        result = BulkActionResult()
        for document_id in document_ids:
            result.processed += 1
            try:
                self.accept(document_id, user_id)
                result.accepted += 1
            except Exception as e:
                result.errors.append(f"{document_id}: {e}")
                logger.warning(f"Bulk accept failed for {document_id}: {e}")

        logger.info(
            f"Bulk accept by {user_id}: {result.accepted}/{result.processed} accepted"
        )
        return result

    def bulk_reject(self, document_ids: list[str], user_id: str, reason: str) -> BulkActionResult:
        """Reject each document independently. An empty reason fails the whole call."""
        reason = _require_reason(reason)

        result = BulkActionResult()
        for document_id in document_ids:
            result.processed += 1
            try:
                self.reject(document_id, user_id, reason)
                result.rejected += 1
            except Exception as e:
                result.errors.append(f"{document_id}: {e}")
                logger.warning(f"Bulk reject failed for {document_id}: {e}")

        logger.info(
            f"Bulk reject by {user_id}: {result.rejected}/{result.processed} rejected"
        )
        return result

    # =========================================================================
    # Queries
    # =========================================================================

    def get_documents_for_review(
        self,
        case_id: str,
        needs_review: Optional[bool] = None,
        category: Optional[str] = None,
        min_confidence: Optional[float] = None,
        max_confidence: Optional[float] = None,
    ) -> list[DocumentRecord]:
        return self.document_store.list_case_documents(
            case_id,
            needs_review=needs_review,
            category=category,
            min_confidence=min_confidence,
            max_confidence=max_confidence,
        )

    def get_classification_history(self, document_id: str) -> list[HistoryEntry]:
        """History, most recent first. Raises DocumentNotFound for unknown ids."""
        self.document_store.get_document(document_id)
        return self.document_store.get_history(document_id)

    def get_review_stats(self, case_id: str) -> dict:
        documents = self.document_store.list_case_documents(case_id)

        by_state = {state.value: 0 for state in ReviewState}
        for doc in documents:
            by_state[doc.review_state.value] += 1

        confidences = [d.confidence for d in documents if d.is_classified and d.confidence > 0]
        return {
            "total": len(documents),
            "reviewed": sum(1 for d in documents if d.reviewed_at is not None),
            "pending": sum(1 for d in documents if d.needs_review and d.reviewed_at is None),
            "accepted": by_state[ReviewState.ACCEPTED.value],
            "rejected": by_state[ReviewState.REJECTED.value],
            "overridden": by_state[ReviewState.OVERRIDDEN.value],
            "unclassified": by_state[ReviewState.UNCLASSIFIED.value],
            "average_confidence": (
                round(sum(confidences) / len(confidences), 4) if confidences else 0.0
            ),
        }
