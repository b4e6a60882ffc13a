"""
Embedding Indexer

Turns a document's chunks into stored embeddings. All vectors are generated
and validated before the store is touched, and the store swaps the whole
chunk set in one transaction, so a failure at any point leaves the previous
index intact.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .chunker import Chunk, DocumentChunker
from .errors import FATAL_BATCH_ERRORS, EmbeddingDimensionMismatch, ExtractionUnavailable
from .model_config import EmbeddingModelConfig, calculate_embedding_cost_cents
from .usage import UsageRecord

logger = logging.getLogger(__name__)


@dataclass
class IndexResult:
    """Outcome of indexing one document."""
    document_id: str
    stored: int
    tokens_used: int
    model: str
    cost_cents: float = 0.0

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "stored": self.stored,
            "tokens_used": self.tokens_used,
            "model": self.model,
            "cost_cents": round(self.cost_cents, 4),
        }


@dataclass
class BatchIndexResult:
    """Outcome of indexing every document in a case."""
    case_id: str
    processed: int = 0
    indexed: int = 0
    failed: int = 0
    chunks_stored: int = 0
    tokens_used: int = 0
    cost_cents: float = 0.0
    results: list[IndexResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    aborted: bool = False

    def to_dict(self) -> dict:
        return {
            "case_id": self.case_id,
            "processed": self.processed,
            "indexed": self.indexed,
            "failed": self.failed,
            "chunks_stored": self.chunks_stored,
            "tokens_used": self.tokens_used,
            "cost_cents": round(self.cost_cents, 4),
            "errors": self.errors,
            "aborted": self.aborted,
        }


class EmbeddingIndexer:
    """
    Embeds chunks and persists them per document.

    Usage:
        indexer = EmbeddingIndexer(vector_store, get_embedding_service())
        result = indexer.index_text(document_id, case_id, text)
    """

    def __init__(
        self,
        vector_store,
        embedding_service,
        chunker: Optional[DocumentChunker] = None,
        usage_tracker=None,
        document_store=None,
        text_source=None,
    ):
        self.vector_store = vector_store
        self.embeddings = embedding_service
        self.chunker = chunker or DocumentChunker()
        self.usage_tracker = usage_tracker
        self.document_store = document_store
        self.text_source = text_source

    def _validate_vectors(self, vectors: list[list[float]], expected_count: int) -> None:
        """Check count, dimension and finiteness before anything is written."""
        if len(vectors) != expected_count:
            raise ValueError(
                f"Mismatch: {expected_count} chunks, {len(vectors)} embeddings"
            )
        if not vectors:
            return

        expected_dim = self.vector_store.dimensions
        lengths = np.fromiter((len(v) for v in vectors), dtype=int, count=len(vectors))
        wrong = np.flatnonzero(lengths != expected_dim)
        if wrong.size:
            raise EmbeddingDimensionMismatch(expected_dim, int(lengths[wrong[0]]))

        if not np.isfinite(np.asarray(vectors, dtype=float)).all():
            raise ValueError("Embedding contains non-finite values")

    def index(self, document_id: str, case_id: str, chunks: list[Chunk]) -> IndexResult:
        """
        Embed and store a document's chunks, replacing any previous set.

        Args:
            document_id: Document being indexed
            case_id: Case the document belongs to
            chunks: Chunks from DocumentChunker (may be empty, which clears the index)

        Returns:
            IndexResult with stored count, tokens used and cost

        Raises:
            Any embedding service error, EmbeddingDimensionMismatch; the
            existing index is left untouched in every case.
        """
        if chunks:
            embedded = self.embeddings.embed_documents([c.content for c in chunks])
            vectors, tokens = embedded.vectors, embedded.tokens_used
        else:
            vectors, tokens = [], 0
        model = self.embeddings.model

        self._validate_vectors(vectors, len(chunks))
        stored = self.vector_store.replace_document_chunks(
            document_id, case_id, chunks, vectors, model,
        )

        cost = calculate_embedding_cost_cents(tokens, EmbeddingModelConfig.for_model(model))
        if self.usage_tracker is not None and tokens:
            self.usage_tracker.record(UsageRecord(
                operation="embedding",
                model=model,
                input_tokens=tokens,
                cost_cents=cost,
                case_id=case_id,
                document_id=document_id,
            ))

        logger.info(f"Indexed document {document_id}: {stored} chunks, {tokens} tokens")
        return IndexResult(
            document_id=document_id,
            stored=stored,
            tokens_used=tokens,
            model=model,
            cost_cents=cost,
        )

    def index_text(self, document_id: str, case_id: str, text: str) -> IndexResult:
        """Chunk text (with page tagging) and index the result."""
        return self.index(document_id, case_id, self.chunker.chunk(text))

    def index_document(self, document_id: str) -> IndexResult:
        """
        Load, extract, chunk and index a stored document.

        Raises:
            ExtractionUnavailable: The stored file could not be read; the
                existing index for the document is left as it was
        """
        if self.document_store is None or self.text_source is None:
            raise RuntimeError("index_document needs a document_store and text_source")

        record = self.document_store.get_document(document_id)
        extracted = self.text_source.get_text(record)
        if extracted.method == "filename":
            raise ExtractionUnavailable(f"No text available for document {record.id}")
        return self.index_text(record.id, record.case_id, extracted.text)

    def index_case(self, case_id: str) -> BatchIndexResult:
        """
        Re-index every document of a case.

        Per-document failures are collected in ``errors``; rate limits, timeouts
        and auth failures stop the run and return what was done so far.
        """
        if self.document_store is None:
            raise RuntimeError("index_case needs a document_store")

        batch = BatchIndexResult(case_id=case_id)
        for record in self.document_store.list_case_documents(case_id):
            batch.processed += 1
            try:
                result = self.index_document(record.id)
            except FATAL_BATCH_ERRORS as e:
                batch.failed += 1
                batch.errors.append(f"{record.id}: {e}")
                batch.aborted = True
                logger.error(f"Stopping case {case_id} indexing: {e}")
                break
            except Exception as e:
                batch.failed += 1
                batch.errors.append(f"{record.id}: {e}")
                logger.error(f"Failed to index document {record.id}: {e}")
                continue

            batch.indexed += 1
            batch.chunks_stored += result.stored
            batch.tokens_used += result.tokens_used
            batch.cost_cents += result.cost_cents
            batch.results.append(result)

        logger.info(
            f"Case {case_id}: indexed {batch.indexed}/{batch.processed} documents, "
            f"{batch.chunks_stored} chunks"
        )
        return batch

    def delete(self, document_id: str) -> int:
        """Remove a document's chunks from the index."""
        return self.vector_store.delete_document_chunks(document_id)
