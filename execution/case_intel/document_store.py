"""
Document Store with PostgreSQL

Persists case documents and their classification state. Every classification
change is written together with a row in the append-only
classification_history table, in the same transaction.
"""

import logging
from enum import Enum
from datetime import datetime
from typing import Optional
from dataclasses import dataclass, field

from psycopg2.extras import Json

from .database import Database
from .errors import DocumentNotFound
from .metadata_extraction import DocumentMetadata, metadata_for_category

logger = logging.getLogger(__name__)


class ReviewState(str, Enum):
    """Review lifecycle of a document's classification."""
    UNCLASSIFIED = "unclassified"
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    OVERRIDDEN = "overridden"


class HistorySource(str, Enum):
    AI = "ai"
    MANUAL_OVERRIDE = "manual_override"


@dataclass(frozen=True)
class HistoryEntry:
    """One immutable classification event."""
    timestamp: datetime
    category: str
    subtype: str
    confidence: float
    source: str  # HistorySource value
    user_id: Optional[str] = None
    previous_category: Optional[str] = None
    previous_subtype: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "HistoryEntry":
        return cls(
            timestamp=row["recorded_at"],
            category=row["category"],
            subtype=row["subtype"],
            confidence=float(row["confidence"]),
            source=row["source"],
            user_id=row.get("user_id"),
            previous_category=row.get("previous_category"),
            previous_subtype=row.get("previous_subtype"),
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "category": self.category,
            "subtype": self.subtype,
            "confidence": self.confidence,
            "source": self.source,
            "user_id": self.user_id,
            "previous_category": self.previous_category,
            "previous_subtype": self.previous_subtype,
        }


@dataclass
class DocumentRecord:
    """A case document with its current classification."""
    id: str
    case_id: str
    file_name: str
    file_type: Optional[str] = None
    storage_path: Optional[str] = None
    user_id: Optional[str] = None
    category: Optional[str] = None
    subtype: Optional[str] = None
    confidence: float = 0.0
    needs_review: bool = True
    review_status: str = ReviewState.UNCLASSIFIED.value
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_classified(self) -> bool:
        return self.category is not None

    @property
    def review_state(self) -> ReviewState:
        if not self.is_classified:
            return ReviewState.UNCLASSIFIED
        try:
            return ReviewState(self.review_status)
        except ValueError:
            return ReviewState.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "case_id": self.case_id,
            "file_name": self.file_name,
            "file_type": self.file_type,
            "category": self.category,
            "subtype": self.subtype,
            "confidence": self.confidence,
            "needs_review": self.needs_review,
            "review_state": self.review_state.value,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "metadata": self.metadata.to_dict(),
        }


# Columns update_classification may write
UPDATABLE_FIELDS = frozenset({
    "category", "subtype", "confidence", "needs_review", "review_status",
    "reviewed_at", "reviewed_by", "metadata",
})


def _row_to_record(row: dict) -> DocumentRecord:
    return DocumentRecord(
        id=str(row["id"]),
        case_id=str(row["case_id"]),
        file_name=row["file_name"],
        file_type=row.get("file_type"),
        storage_path=row.get("storage_path"),
        user_id=row.get("user_id"),
        category=row.get("category"),
        subtype=row.get("subtype"),
        confidence=float(row.get("confidence") or 0.0),
        needs_review=bool(row.get("needs_review", True)),
        review_status=row.get("review_status") or ReviewState.UNCLASSIFIED.value,
        reviewed_at=row.get("reviewed_at"),
        reviewed_by=row.get("reviewed_by"),
        metadata=metadata_for_category(row.get("category"), row.get("metadata") or {}),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class DocumentStore:
    """
    PostgreSQL-backed document and classification storage.

    Features:
    - Case-scoped document listing with review filters
    - Atomic classification update + history append
    - Per-call model usage records
    """

    def __init__(self, db: Optional[Database] = None):
        self._db = db or Database()

    @property
    def db(self) -> Database:
        return self._db

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        schema_sql = """
        CREATE TABLE IF NOT EXISTS documents (
            id TEXT PRIMARY KEY,
            case_id TEXT NOT NULL,
            user_id TEXT,
            file_name TEXT NOT NULL,
            file_type TEXT,
            storage_path TEXT,
            category TEXT,
            subtype TEXT,
            confidence REAL DEFAULT 0,
            needs_review BOOLEAN DEFAULT TRUE,
            review_status TEXT DEFAULT 'unclassified',
            reviewed_at TIMESTAMPTZ,
            reviewed_by TEXT,
            metadata JSONB DEFAULT '{}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_documents_case ON documents(case_id);
        CREATE INDEX IF NOT EXISTS idx_documents_case_review
            ON documents(case_id, needs_review);

        -- Append-only: rows are never updated or deleted by the application
        CREATE TABLE IF NOT EXISTS classification_history (
            id BIGSERIAL PRIMARY KEY,
            document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
            recorded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            category TEXT NOT NULL,
            subtype TEXT NOT NULL,
            confidence REAL NOT NULL,
            source TEXT NOT NULL CHECK (source IN ('ai', 'manual_override')),
            user_id TEXT,
            previous_category TEXT,
            previous_subtype TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_history_document
            ON classification_history(document_id, recorded_at DESC);

        CREATE TABLE IF NOT EXISTS model_usage (
            id BIGSERIAL PRIMARY KEY,
            case_id TEXT,
            document_id TEXT,
            operation TEXT NOT NULL,
            model TEXT NOT NULL,
            input_tokens INT DEFAULT 0,
            output_tokens INT DEFAULT 0,
            cost_cents REAL DEFAULT 0,
            created_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_usage_case ON model_usage(case_id);
        """

        with self._db.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
        logger.info("Document schema initialized successfully")

    # =========================================================================
    # Documents
    # =========================================================================

    def insert_document(
        self,
        document_id: str,
        case_id: str,
        file_name: str,
        file_type: Optional[str] = None,
        storage_path: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> DocumentRecord:
        """Register an uploaded document (unclassified)."""
        sql = """
        INSERT INTO documents (id, case_id, user_id, file_name, file_type, storage_path)
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING *
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id, case_id, user_id, file_name, file_type, storage_path))
                row = cur.fetchone()
            conn.commit()
            return _row_to_record(row)

        return self._db.execute_with_retry(_op, "insert_document")

    def get_document(self, document_id: str) -> DocumentRecord:
        """
        Fetch one document.

        Raises:
            DocumentNotFound: No row with this id
        """
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute("SELECT * FROM documents WHERE id = %s", (document_id,))
                return cur.fetchone()

        row = self._db.execute_with_retry(_op, "get_document")
        if row is None:
            raise DocumentNotFound(document_id)
        return _row_to_record(row)

    def list_case_documents(
        self,
        case_id: str,
        unclassified_only: bool = False,
        needs_review: Optional[bool] = None,
        category: Optional[str] = None,
        min_confidence: Optional[float] = None,
        max_confidence: Optional[float] = None,
    ) -> list[DocumentRecord]:
        """List a case's documents, oldest first, with optional review filters."""
        filters = ["case_id = %s"]
        params = [case_id]

        if unclassified_only:
            filters.append("category IS NULL")
        if needs_review is not None:
            filters.append("needs_review = %s")
            params.append(needs_review)
        if category:
            filters.append("category = %s")
            params.append(category)
        if min_confidence is not None:
            filters.append("confidence >= %s")
            params.append(min_confidence)
        if max_confidence is not None:
            filters.append("confidence <= %s")
            params.append(max_confidence)

        sql = f"""
        SELECT * FROM documents
        WHERE {' AND '.join(filters)}
        ORDER BY created_at ASC, id ASC
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

        rows = self._db.execute_with_retry(_op, "list_case_documents")
        return [_row_to_record(row) for row in rows]

    def update_classification(
        self,
        document_id: str,
        history_entry: Optional[HistoryEntry] = None,
        **values,
    ) -> DocumentRecord:
        """
        Update classification columns and append a history entry atomically.

        Args:
            document_id: Document to update
            history_entry: Optional entry appended in the same transaction
            **values: Column values; keys must be in UPDATABLE_FIELDS

        Returns:
            The updated record

        Raises:
            DocumentNotFound: No row with this id (nothing is written)
            ValueError: Unknown column name
        """
        unknown = set(values) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")

        if "metadata" in values:
            metadata = values["metadata"]
            if isinstance(metadata, DocumentMetadata):
                metadata = metadata.to_dict()
            values["metadata"] = Json(metadata)

        assignments = [f"{column} = %s" for column in values] + ["updated_at = NOW()"]
        sql = f"""
        UPDATE documents SET {', '.join(assignments)}
        WHERE id = %s
        RETURNING *
        """
        params = list(values.values()) + [document_id]

        with self._db.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
                if row is None:
                    raise DocumentNotFound(document_id)
                if history_entry is not None:
                    self._insert_history(cur, document_id, history_entry)

        return _row_to_record(row)

    # =========================================================================
    # Classification history
    # =========================================================================

    def _insert_history(self, cur, document_id: str, entry: HistoryEntry) -> None:
        cur.execute(
            """
            INSERT INTO classification_history
                (document_id, recorded_at, category, subtype, confidence, source,
                 user_id, previous_category, previous_subtype)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                document_id, entry.timestamp, entry.category, entry.subtype,
                entry.confidence, entry.source, entry.user_id,
                entry.previous_category, entry.previous_subtype,
            ),
        )

    def get_history(self, document_id: str) -> list[HistoryEntry]:
        """All classification events for a document, most recent first."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT * FROM classification_history
                    WHERE document_id = %s
                    ORDER BY recorded_at DESC, id DESC
                    """,
                    (document_id,),
                )
                return cur.fetchall()

        rows = self._db.execute_with_retry(_op, "get_history")
        return [HistoryEntry.from_row(row) for row in rows]

    # =========================================================================
    # Model usage
    # =========================================================================

    def record_usage(self, record) -> None:
        """Persist one UsageRecord."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO model_usage
                        (case_id, document_id, operation, model,
                         input_tokens, output_tokens, cost_cents, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.case_id, record.document_id, record.operation,
                        record.model, record.input_tokens, record.output_tokens,
                        record.cost_cents, record.timestamp,
                    ),
                )
            conn.commit()

        self._db.execute_with_retry(_op, "record_usage")

    def get_case_usage(self, case_id: str) -> dict:
        """Token and cost totals for a case, grouped by operation."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT operation,
                           COUNT(*) AS calls,
                           COALESCE(SUM(input_tokens), 0) AS input_tokens,
                           COALESCE(SUM(output_tokens), 0) AS output_tokens,
                           COALESCE(SUM(cost_cents), 0) AS cost_cents
                    FROM model_usage
                    WHERE case_id = %s
                    GROUP BY operation
                    """,
                    (case_id,),
                )
                return cur.fetchall()

        rows = self._db.execute_with_retry(_op, "get_case_usage")
        return {
            row["operation"]: {
                "calls": int(row["calls"]),
                "input_tokens": int(row["input_tokens"]),
                "output_tokens": int(row["output_tokens"]),
                "cost_cents": float(row["cost_cents"]),
            }
            for row in rows
        }
