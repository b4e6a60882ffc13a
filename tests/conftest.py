"""
Shared fixtures and test utilities for the case intelligence tests.

Provides in-memory stores, a deterministic embedding service and a scripted
language-model client so that all tests run without API keys, PostgreSQL or
network access.
"""

import sys
import copy
import json
import hashlib
import threading
from pathlib import Path
from contextlib import contextmanager
from unittest.mock import MagicMock
from datetime import datetime, timezone

import numpy as np
import pytest
from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup - ensure the execution package is importable
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from execution.case_intel.chunker import Chunk  # noqa: E402
from execution.case_intel.document_store import (  # noqa: E402
    UPDATABLE_FIELDS,
    DocumentRecord,
    HistoryEntry,
)
from execution.case_intel.embeddings import EmbeddingResult  # noqa: E402
from execution.case_intel.errors import DocumentNotFound, EmbeddingStoreUnavailable  # noqa: E402
from execution.case_intel.llm_client import CompletionResult  # noqa: E402
from execution.case_intel.metadata_extraction import (  # noqa: E402
    DocumentMetadata,
    metadata_for_category,
)
from execution.case_intel.model_config import calculate_cost_cents  # noqa: E402
from execution.case_intel.text_extraction import ExtractedText  # noqa: E402
from execution.case_intel.vector_store import ChunkMatch  # noqa: E402


# ---------------------------------------------------------------------------
# Sample case text
# ---------------------------------------------------------------------------
BANK_STATEMENT_TEXT = """[Page 1]

First National Bank
Statement Period: 01/01/2024 - 01/31/2024
Account # 123456789

This statement summarizes all activity on your checking account during the period.
Opening balance $4,250.00 and closing balance $3,980.15 after 14 transactions.

[Page 2]

Deposits totaling $5,200.00 were received from ACME Payroll on 01/15/2024 and 01/31/2024.
Withdrawals include a mortgage payment of $1,850.00 to Hometown Lending.
"""

PETITION_TEXT = """IN THE FAMILY COURT OF THE STATE

Jane Smith, Petitioner
v.
John Smith, Respondent

Petition for Dissolution of Marriage filed on March 3, 2024. The petitioner requests
an equitable division of marital property and temporary spousal support.
"""


def make_paragraphs(count: int, words_per_paragraph: int = 40) -> str:
    """Blank-line separated paragraphs of distinct sentences."""
    paragraphs = []
    for p in range(count):
        sentences = []
        words = 0
        s = 0
        while words < words_per_paragraph:
            sentence = f"Paragraph {p} sentence {s} describes the marital estate in detail."
            sentences.append(sentence)
            words += len(sentence.split())
            s += 1
        paragraphs.append(" ".join(sentences))
    return "\n\n".join(paragraphs)


@pytest.fixture
def bank_statement_text():
    return BANK_STATEMENT_TEXT


@pytest.fixture
def petition_text():
    return PETITION_TEXT


# ---------------------------------------------------------------------------
# In-memory document store
# ---------------------------------------------------------------------------

class InMemoryDocumentStore:
    """Dict-backed stand-in for DocumentStore with the same method surface."""

    def __init__(self):
        self.documents: dict[str, DocumentRecord] = {}
        self.history: dict[str, list[HistoryEntry]] = {}
        self.usage = []
        self._counter = 0
        self._lock = threading.Lock()

    def insert_document(self, document_id, case_id, file_name, file_type=None,
                        storage_path=None, user_id=None):
        return self.add(document_id, case_id, file_name, file_type=file_type,
                        storage_path=storage_path, user_id=user_id)

    def add(self, document_id, case_id, file_name, metadata=None, **fields):
        """Insert a document directly (any DocumentRecord field may be given)."""
        with self._lock:
            self._counter += 1
            record = DocumentRecord(
                id=document_id,
                case_id=case_id,
                file_name=file_name,
                metadata=metadata_for_category(fields.get("category"), metadata or {}),
                created_at=datetime(2024, 1, 1, tzinfo=timezone.utc).replace(second=self._counter % 60),
                **fields,
            )
            self.documents[document_id] = record
            self.history.setdefault(document_id, [])
            return copy.deepcopy(record)

    def get_document(self, document_id):
        with self._lock:
            if document_id not in self.documents:
                raise DocumentNotFound(document_id)
            return copy.deepcopy(self.documents[document_id])

    def list_case_documents(self, case_id, unclassified_only=False, needs_review=None,
                            category=None, min_confidence=None, max_confidence=None):
        with self._lock:
            records = [d for d in self.documents.values() if d.case_id == case_id]
        if unclassified_only:
            records = [d for d in records if d.category is None]
        if needs_review is not None:
            records = [d for d in records if d.needs_review == needs_review]
        if category:
            records = [d for d in records if d.category == category]
        if min_confidence is not None:
            records = [d for d in records if d.confidence >= min_confidence]
        if max_confidence is not None:
            records = [d for d in records if d.confidence <= max_confidence]
        return [copy.deepcopy(d) for d in records]

    def update_classification(self, document_id, history_entry=None, **values):
        unknown = set(values) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update columns: {sorted(unknown)}")

        with self._lock:
            if document_id not in self.documents:
                raise DocumentNotFound(document_id)
            record = copy.deepcopy(self.documents[document_id])
            for key, value in values.items():
                if key != "metadata":
                    setattr(record, key, value)
            # Stored as JSON and re-typed on read, like the real store
            metadata = values.get("metadata", record.metadata)
            if isinstance(metadata, DocumentMetadata):
                metadata = metadata.to_dict()
            record.metadata = metadata_for_category(record.category, copy.deepcopy(metadata))

            self.documents[document_id] = record
            if history_entry is not None:
                self.history[document_id].append(history_entry)
            return copy.deepcopy(record)

    def get_history(self, document_id):
        with self._lock:
            return list(reversed(self.history.get(document_id, [])))

    def record_usage(self, record):
        with self._lock:
            self.usage.append(record)

    def get_case_usage(self, case_id):
        totals = {}
        for record in self.usage:
            if record.case_id != case_id:
                continue
            op = totals.setdefault(record.operation, {
                "calls": 0, "input_tokens": 0, "output_tokens": 0, "cost_cents": 0.0,
            })
            op["calls"] += 1
            op["input_tokens"] += record.input_tokens
            op["output_tokens"] += record.output_tokens
            op["cost_cents"] += record.cost_cents
        return totals


@pytest.fixture
def document_store():
    return InMemoryDocumentStore()


# ---------------------------------------------------------------------------
# Deterministic embedding service
# ---------------------------------------------------------------------------

class MockEmbeddingService:
    """Deterministic mock embedding service -- never calls external APIs."""

    def __init__(self, dimensions=16, model="mock-embedding"):
        self._dimensions = dimensions
        self._model = model
        self.overrides: dict[str, list[float]] = {}
        self.fail_with = None
        self.document_calls = 0
        self.query_calls = 0

    def _deterministic_embedding(self, text):
        if text in self.overrides:
            return list(self.overrides[text])
        seed = int(hashlib.sha256(text.encode()).hexdigest()[:8], 16)
        vector = np.random.default_rng(seed).standard_normal(self._dimensions)
        return (vector / np.linalg.norm(vector)).tolist()

    def embed_documents(self, texts):
        self.document_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        if not texts:
            return EmbeddingResult(model=self._model)
        return EmbeddingResult(
            vectors=[self._deterministic_embedding(t) for t in texts],
            tokens_used=sum(len(t.split()) for t in texts),
            model=self._model,
        )

    def embed_query(self, query):
        self.query_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return EmbeddingResult(
            vectors=[self._deterministic_embedding(query)],
            tokens_used=len(query.split()),
            model=self._model,
        )

    @property
    def model(self):
        return self._model

    @property
    def dimensions(self):
        return self._dimensions


@pytest.fixture
def embedding_service():
    return MockEmbeddingService()


# ---------------------------------------------------------------------------
# In-memory vector store
# ---------------------------------------------------------------------------

class InMemoryVectorStore:
    """Chunk store with numpy cosine similarity; joins document fields from a document store."""

    def __init__(self, dimensions=16, document_store=None):
        self._dimensions = dimensions
        self.document_store = document_store
        self.rows: dict[str, list[dict]] = {}
        self.fail_similarity = False
        self.replace_calls = 0

    @property
    def dimensions(self):
        return self._dimensions

    def replace_document_chunks(self, document_id, case_id, chunks, embeddings, embedding_model):
        if len(chunks) != len(embeddings):
            raise ValueError(f"Mismatch: {len(chunks)} chunks, {len(embeddings)} embeddings")
        self.replace_calls += 1
        self.rows[document_id] = [
            {
                "chunk_id": f"{document_id}:{chunk.index}",
                "document_id": document_id,
                "case_id": case_id,
                "chunk": chunk,
                "vector": np.asarray(vector, dtype=float),
                "model": embedding_model,
            }
            for chunk, vector in zip(chunks, embeddings)
        ]
        return len(chunks)

    def delete_document_chunks(self, document_id):
        return len(self.rows.pop(document_id, []))

    def count_document_chunks(self, document_id):
        return len(self.rows.get(document_id, []))

    def _document(self, document_id):
        if self.document_store is None or document_id not in self.document_store.documents:
            return None
        return self.document_store.documents[document_id]

    def _passes(self, row, filters):
        if filters is None:
            return True
        doc = self._document(row["document_id"])
        category = doc.category if doc else None
        subtype = doc.subtype if doc else None
        confidence = doc.confidence if doc else 0.0
        if filters.categories and category not in filters.categories:
            return False
        if filters.subtypes and subtype not in filters.subtypes:
            return False
        if filters.min_confidence is not None and confidence < filters.min_confidence:
            return False
        if filters.max_confidence is not None and confidence > filters.max_confidence:
            return False
        if filters.document_ids and row["document_id"] not in filters.document_ids:
            return False
        return True

    def _to_match(self, row, score=0.0):
        doc = self._document(row["document_id"])
        chunk = row["chunk"]
        return ChunkMatch(
            chunk_id=row["chunk_id"],
            document_id=row["document_id"],
            chunk_index=chunk.index,
            content=chunk.content,
            score=score,
            file_name=doc.file_name if doc else "",
            category=doc.category if doc else None,
            subtype=doc.subtype if doc else None,
            page_number=chunk.page_number,
        )

    def _case_rows(self, case_id, filters):
        for rows in self.rows.values():
            for row in rows:
                if row["case_id"] == case_id and self._passes(row, filters):
                    yield row

    def similarity_search(self, case_id, query_embedding, limit=20, min_similarity=0.0, filters=None):
        if self.fail_similarity:
            raise EmbeddingStoreUnavailable("relation document_chunks does not exist")
        query = np.asarray(query_embedding, dtype=float)
        scored = []
        for row in self._case_rows(case_id, filters):
            vector = row["vector"]
            similarity = float(vector @ query / (np.linalg.norm(vector) * np.linalg.norm(query)))
            if similarity >= min_similarity:
                scored.append((similarity, row))
        scored.sort(key=lambda item: (-item[0], item[1]["chunk"].index))
        return [self._to_match(row, score) for score, row in scored[:limit]]

    def keyword_search(self, case_id, terms, limit=20, filters=None):
        if not terms:
            return []
        matches = []
        for row in self._case_rows(case_id, filters):
            doc = self._document(row["document_id"])
            haystack = row["chunk"].content.lower() + " " + (doc.file_name.lower() if doc else "")
            if any(term.lower() in haystack for term in terms):
                matches.append(self._to_match(row))
        return matches[:limit]


@pytest.fixture
def vector_store(document_store):
    return InMemoryVectorStore(document_store=document_store)


# ---------------------------------------------------------------------------
# Scripted language-model client
# ---------------------------------------------------------------------------

DEFAULT_CLASSIFICATION = {
    "category": "Financial",
    "subtype": "Bank Statement",
    "confidence": 0.95,
    "metadata": {},
}


class FakeLLMClient:
    """
    Returns queued responses in order, then ``default``.

    A queued dict is serialized as JSON, a str is returned verbatim and an
    exception instance is raised.
    """

    def __init__(self, responses=None, default=None, input_tokens=120, output_tokens=40):
        self.responses = list(responses or [])
        self.default = default if default is not None else DEFAULT_CLASSIFICATION
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.calls = []
        self._lock = threading.Lock()

    def complete(self, messages, config, json_mode=True):
        with self._lock:
            self.calls.append({"messages": messages, "model": config.model, "json_mode": json_mode})
            response = self.responses.pop(0) if self.responses else self.default

        if isinstance(response, Exception):
            raise response
        content = response if isinstance(response, str) else json.dumps(response)
        return CompletionResult(
            content=content,
            model=config.model,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            cost_cents=calculate_cost_cents(self.input_tokens, self.output_tokens, config),
        )

    @property
    def last_prompt(self):
        return self.calls[-1]["messages"][-1]["content"]


@pytest.fixture
def llm_client():
    return FakeLLMClient()


# ---------------------------------------------------------------------------
# Text source
# ---------------------------------------------------------------------------

class FakeTextSource:
    """Serves ExtractedText per document id; unknown ids yield no text."""

    def __init__(self, texts=None):
        self.texts = dict(texts or {})

    def set_text(self, document_id, text, pages=1):
        self.texts[document_id] = ExtractedText(
            text=text, pages=pages, is_scanned=False,
            word_count=len(text.split()), method="text",
        )

    def get_text(self, document):
        return self.texts.get(document.id, ExtractedText(is_scanned=True, method="filename"))


@pytest.fixture
def text_source():
    return FakeTextSource()


@pytest.fixture
def fixed_clock():
    return lambda: datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fake database for SQL-level store tests
# ---------------------------------------------------------------------------

class FakeDatabase:
    """Runs operations against one MagicMock connection; records commits/rollbacks."""

    def __init__(self):
        self.conn = MagicMock()
        self.cursor = MagicMock()
        self.conn.cursor.return_value.__enter__.return_value = self.cursor
        self.conn.cursor.return_value.__exit__.return_value = False
        self.transactions = 0
        self.rolled_back = 0

    def execute_with_retry(self, operation, label="db_operation"):
        return operation(self.conn)

    @contextmanager
    def transaction(self):
        self.transactions += 1
        try:
            yield self.conn
            self.conn.commit()
        except Exception:
            self.rolled_back += 1
            self.conn.rollback()
            raise


@pytest.fixture
def fake_db():
    return FakeDatabase()


def make_chunks(texts):
    """Chunks with sequential indexes and contiguous offsets."""
    chunks = []
    pos = 0
    for i, text in enumerate(texts):
        chunks.append(Chunk(content=text, index=i, token_count=len(text.split()),
                            start_char=pos, end_char=pos + len(text)))
        pos += len(text) + 2
    return chunks
