"""
Vector Store with PostgreSQL + pgvector

Stores document chunks with their embeddings and serves the two retrieval
paths: cosine similarity search and keyword (ILIKE) search. All queries are
scoped to a single case and can be narrowed by document classification.
"""

import json
import logging
from typing import Optional
from dataclasses import dataclass, field

import psycopg2
from psycopg2.extras import execute_values

from .chunker import Chunk
from .database import Database
from .errors import EmbeddingStoreUnavailable

logger = logging.getLogger(__name__)


@dataclass
class VectorStoreConfig:
    """Configuration for vector store."""
    table_name: str = "document_chunks"
    embedding_dimensions: int = 1536
    hnsw_m: int = 16
    hnsw_ef_construction: int = 64


@dataclass
class SearchFilters:
    """Narrow a search to documents with matching classification."""
    categories: list[str] = field(default_factory=list)
    subtypes: list[str] = field(default_factory=list)
    min_confidence: Optional[float] = None
    max_confidence: Optional[float] = None
    document_ids: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.categories or self.subtypes or self.document_ids
            or self.min_confidence is not None or self.max_confidence is not None
        )


@dataclass
class ChunkMatch:
    """A chunk returned by either retrieval path."""
    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    score: float = 0.0  # cosine similarity for semantic matches
    file_name: str = ""
    category: Optional[str] = None
    subtype: Optional[str] = None
    page_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "score": self.score,
            "file_name": self.file_name,
            "category": self.category,
            "subtype": self.subtype,
            "page_number": self.page_number,
        }


def to_pgvector(vector: list[float]) -> str:
    """Format a vector as a pgvector literal."""
    return "[" + ",".join(str(float(v)) for v in vector) + "]"


def escape_like(term: str) -> str:
    """Escape LIKE wildcards; backslash is PostgreSQL's default LIKE escape."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _filter_sql(filters: Optional[SearchFilters]) -> tuple[list[str], list]:
    """WHERE fragments over aliases c (chunks) and d (documents)."""
    clauses = []
    params = []
    if filters is None:
        return clauses, params

    if filters.categories:
        clauses.append("d.category = ANY(%s)")
        params.append(list(filters.categories))
    if filters.subtypes:
        clauses.append("d.subtype = ANY(%s)")
        params.append(list(filters.subtypes))
    if filters.min_confidence is not None:
        clauses.append("d.confidence >= %s")
        params.append(filters.min_confidence)
    if filters.max_confidence is not None:
        clauses.append("d.confidence <= %s")
        params.append(filters.max_confidence)
    if filters.document_ids:
        clauses.append("c.document_id = ANY(%s)")
        params.append(list(filters.document_ids))
    return clauses, params


def _row_to_match(row: dict) -> ChunkMatch:
    return ChunkMatch(
        chunk_id=str(row["chunk_id"]),
        document_id=str(row["document_id"]),
        chunk_index=int(row["chunk_index"]),
        content=row["content"],
        score=float(row.get("score") or 0.0),
        file_name=row.get("file_name") or "",
        category=row.get("category"),
        subtype=row.get("subtype"),
        page_number=row.get("page_number"),
    )


class VectorStore:
    """
    PostgreSQL chunk store with pgvector.

    Features:
    - Whole-document chunk replacement in one transaction
    - Cosine similarity search scoped by case
    - Keyword search over chunk content and file names
    - Classification filters via a join on documents
    """

    def __init__(self, db: Optional[Database] = None, config: Optional[VectorStoreConfig] = None):
        self._db = db or Database()
        self.config = config or VectorStoreConfig()

    @property
    def dimensions(self) -> int:
        return self.config.embedding_dimensions

    def initialize_schema(self) -> None:
        """Create the chunk table and indexes (documents table must exist)."""
        table = self.config.table_name
        schema_sql = f"""
        CREATE EXTENSION IF NOT EXISTS vector;

        CREATE TABLE IF NOT EXISTS {table} (
            id BIGSERIAL PRIMARY KEY,
            document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
            case_id TEXT NOT NULL,
            chunk_index INT NOT NULL,
            content TEXT NOT NULL,
            token_count INT,
            start_char INT,
            end_char INT,
            page_number INT,
            embedding VECTOR({self.config.embedding_dimensions}),
            embedding_model TEXT,
            metadata JSONB DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            UNIQUE (document_id, chunk_index)
        );

        CREATE INDEX IF NOT EXISTS idx_{table}_case ON {table}(case_id);
        CREATE INDEX IF NOT EXISTS idx_{table}_document ON {table}(document_id);
        CREATE INDEX IF NOT EXISTS idx_{table}_embedding
            ON {table} USING hnsw (embedding vector_cosine_ops)
            WITH (m = {self.config.hnsw_m}, ef_construction = {self.config.hnsw_ef_construction});
        """

        with self._db.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(schema_sql)
        logger.info("Chunk schema initialized successfully")

    # =========================================================================
    # Writes
    # =========================================================================

    def replace_document_chunks(
        self,
        document_id: str,
        case_id: str,
        chunks: list[Chunk],
        embeddings: list[list[float]],
        embedding_model: str,
    ) -> int:
        """
        Replace a document's entire chunk set in one transaction.

        Concurrent readers see either the old set or the new one, never an
        empty document.

        Returns:
            Number of chunks inserted
        """
        if len(chunks) != len(embeddings):
            raise ValueError(
                f"Mismatch: {len(chunks)} chunks, {len(embeddings)} embeddings"
            )

        table = self.config.table_name
        sql = f"""
        INSERT INTO {table}
            (document_id, case_id, chunk_index, content, token_count,
             start_char, end_char, page_number, embedding, embedding_model, metadata)
        VALUES %s
        """

        values = [
            (
                document_id,
                case_id,
                chunk.index,
                chunk.content,
                chunk.token_count,
                chunk.start_char,
                chunk.end_char,
                chunk.page_number,
                to_pgvector(embedding),
                embedding_model,
                json.dumps({
                    "pageNumber": chunk.page_number,
                    "startChar": chunk.start_char,
                    "endChar": chunk.end_char,
                    "embeddingModel": embedding_model,
                }),
            )
            for chunk, embedding in zip(chunks, embeddings)
        ]

        with self._db.transaction() as conn:
            with conn.cursor() as cur:
                cur.execute(f"DELETE FROM {table} WHERE document_id = %s", (document_id,))
                deleted = cur.rowcount
                if values:
                    execute_values(
                        cur,
                        sql,
                        values,
                        template="(%s, %s, %s, %s, %s, %s, %s, %s, %s::vector, %s, %s::jsonb)",
                        page_size=500,
                    )

        logger.info(
            f"Replaced chunks for document {document_id}: "
            f"{deleted} removed, {len(values)} stored"
        )
        return len(values)

    def delete_document_chunks(self, document_id: str) -> int:
        """Remove all chunks of a document. Returns the number deleted."""
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"DELETE FROM {self.config.table_name} WHERE document_id = %s",
                    (document_id,),
                )
                deleted = cur.rowcount
            conn.commit()
            return deleted

        return self._db.execute_with_retry(_op, "delete_document_chunks")

    def count_document_chunks(self, document_id: str) -> int:
        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT COUNT(*) AS n FROM {self.config.table_name} WHERE document_id = %s",
                    (document_id,),
                )
                return cur.fetchone()["n"]

        return int(self._db.execute_with_retry(_op, "count_document_chunks"))

    # =========================================================================
    # Reads
    # =========================================================================

    def similarity_search(
        self,
        case_id: str,
        query_embedding: list[float],
        limit: int = 20,
        min_similarity: float = 0.0,
        filters: Optional[SearchFilters] = None,
    ) -> list[ChunkMatch]:
        """
        Nearest chunks in a case by cosine similarity.

        Args:
            case_id: Case to search
            query_embedding: Query vector
            limit: Maximum results
            min_similarity: Drop matches below this similarity (0-1)
            filters: Optional classification filters

        Returns:
            Matches ordered by similarity, descending

        Raises:
            EmbeddingStoreUnavailable: The vector query failed
        """
        clauses, filter_params = _filter_sql(filters)
        where = " AND ".join(
            ["c.case_id = %s", "c.embedding IS NOT NULL", "1 - (c.embedding <=> %s::vector) >= %s"]
            + clauses
        )
        sql = f"""
        SELECT
            c.id AS chunk_id,
            c.document_id,
            c.chunk_index,
            c.content,
            c.page_number,
            d.file_name,
            d.category,
            d.subtype,
            1 - (c.embedding <=> %s::vector) AS score
        FROM {self.config.table_name} c
        JOIN documents d ON d.id = c.document_id
        WHERE {where}
        ORDER BY c.embedding <=> %s::vector, c.chunk_index
        LIMIT %s
        """
        vector = to_pgvector(query_embedding)
        params = [vector, case_id, vector, min_similarity] + filter_params + [vector, limit]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

        try:
            rows = self._db.execute_with_retry(_op, "similarity_search")
        except psycopg2.Error as e:
            logger.warning(f"Vector search failed for case {case_id}: {e}")
            raise EmbeddingStoreUnavailable(str(e)) from e

        return [_row_to_match(row) for row in rows]

    def keyword_search(
        self,
        case_id: str,
        terms: list[str],
        limit: int = 20,
        filters: Optional[SearchFilters] = None,
    ) -> list[ChunkMatch]:
        """
        Chunks whose content, or whose document's file name, contains any term.

        Matching is case-insensitive literal substring (ILIKE with wildcards
        escaped). Results are ordered by document then chunk index.
        """
        if not terms:
            return []

        patterns = [f"%{escape_like(term)}%" for term in terms]
        clauses, filter_params = _filter_sql(filters)
        where = " AND ".join(
            ["c.case_id = %s", "(c.content ILIKE ANY(%s) OR d.file_name ILIKE ANY(%s))"]
            + clauses
        )
        sql = f"""
        SELECT
            c.id AS chunk_id,
            c.document_id,
            c.chunk_index,
            c.content,
            c.page_number,
            d.file_name,
            d.category,
            d.subtype
        FROM {self.config.table_name} c
        JOIN documents d ON d.id = c.document_id
        WHERE {where}
        ORDER BY d.created_at DESC, c.document_id, c.chunk_index
        LIMIT %s
        """
        params = [case_id, patterns, patterns] + filter_params + [limit]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchall()

        rows = self._db.execute_with_retry(_op, "keyword_search")
        return [_row_to_match(row) for row in rows]
