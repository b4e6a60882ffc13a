"""
Hybrid Retriever for Case Documents

Combines keyword (ILIKE) search with semantic (vector) search over a case's
chunks. Results from both paths are merged per chunk, tagged with the path(s)
that produced them, scored with one relevance formula and returned with a
highlighted snippet.

Semantic search is best-effort: a failing vector query or query embedding
yields no semantic results instead of an error.
"""

import re
import time
import logging
from typing import Optional
from dataclasses import dataclass, field

from .errors import EmbeddingStoreUnavailable
from .model_config import EmbeddingModelConfig, calculate_embedding_cost_cents
from .patterns import SEARCH_STOPWORDS, SEARCH_TERM_MIN_LENGTH
from .usage import UsageRecord
from .vector_store import ChunkMatch, SearchFilters

logger = logging.getLogger(__name__)


SEARCH_MODES = ("full-text", "semantic", "hybrid")

# Similarity credited to keyword-only hits when scoring
FULL_TEXT_BASELINE = 0.6
# Multiplier for chunks found by both paths
BOTH_MATCH_BOOST = 1.1
# Characters kept when no query term occurs in the chunk
FALLBACK_SNIPPET_CHARS = 150


# ============================================================================
# Query and snippet helpers
# ============================================================================

def extract_query_terms(query: str) -> list[str]:
    """Lowercased query terms, without quotes, stopwords or very short words."""
    if not query:
        return []
    terms = []
    for term in query.lower().replace('"', " ").replace("'", " ").split():
        if len(term) >= SEARCH_TERM_MIN_LENGTH and term not in SEARCH_STOPWORDS and term not in terms:
            terms.append(term)
    return terms


def extract_snippet(content: str, query: str, context_chars: int = 100) -> str:
    """
    Text around the earliest occurrence of any query term.

    Returns an empty string when no term occurs. Ellipses mark truncation.
    """
    if not content or not query:
        return ""

    terms = extract_query_terms(query)
    lower = content.lower()
    positions = [(lower.find(term), term) for term in terms]
    positions = [(pos, term) for pos, term in positions if pos != -1]
    if not positions:
        return ""

    match_index, term = min(positions)
    start = max(0, match_index - context_chars)
    end = min(len(content), match_index + len(term) + context_chars)

    snippet = content[start:end]
    if start > 0:
        snippet = "..." + snippet
    if end < len(content):
        snippet = snippet + "..."
    return snippet


def highlight_matches(text: str, query: str) -> tuple[str, list[str]]:
    """
    Wrap query terms in <mark> tags, preserving the original case.

    Returns:
        (highlighted text, terms that were found)
    """
    terms = extract_query_terms(query)
    if not text or not terms:
        return text, []

    found = [term for term in terms if term in text.lower()]
    if not found:
        return text, []

    # One pass with longest terms first so nested terms are not double-wrapped
    pattern = re.compile(
        "|".join(re.escape(t) for t in sorted(found, key=len, reverse=True)),
        re.IGNORECASE,
    )
    return pattern.sub(lambda m: f"<mark>{m.group(0)}</mark>", text), found


def calculate_relevance_score(content: str, query: str, similarity: float) -> float:
    """
    Unified relevance in [0, 1].

    similarity * 0.5, plus 0.25 when the whole query occurs verbatim, plus
    0.25 scaled by the fraction of query terms present.
    """
    if not content or not query:
        return max(0.0, min(1.0, similarity))

    lower_content = content.lower()
    lower_query = query.lower().strip()

    score = similarity * 0.5
    if lower_query and lower_query in lower_content:
        score += 0.25

    terms = extract_query_terms(query)
    if terms:
        matched = sum(1 for term in terms if term in lower_content)
        score += 0.25 * matched / len(terms)

    return max(0.0, min(1.0, score))


# ============================================================================
# Results
# ============================================================================

@dataclass
class RetrievalConfig:
    """Configuration for hybrid retrieval."""
    default_limit: int = 20
    max_limit: int = 50
    default_min_similarity: float = 0.7
    snippet_context_chars: int = 100


@dataclass
class SearchHit:
    """One ranked chunk."""
    chunk_id: str
    document_id: str
    chunk_index: int
    file_name: str
    category: Optional[str]
    subtype: Optional[str]
    relevance_score: float
    match_type: str  # "full-text", "semantic" or "both"
    snippet: str
    highlights: list[str] = field(default_factory=list)
    similarity: Optional[float] = None
    page_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "file_name": self.file_name,
            "category": self.category,
            "subtype": self.subtype,
            "relevance_score": round(self.relevance_score, 4),
            "match_type": self.match_type,
            "snippet": self.snippet,
            "highlights": self.highlights,
            "similarity": round(self.similarity, 4) if self.similarity is not None else None,
            "page_number": self.page_number,
        }


@dataclass
class SearchResponse:
    query: str
    mode: str
    results: list[SearchHit] = field(default_factory=list)
    tokens_used: int = 0
    full_text_ms: float = 0.0
    semantic_ms: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict:
        return {
            "query": self.query,
            "mode": self.mode,
            "results": [hit.to_dict() for hit in self.results],
            "total": self.total,
            "tokens_used": self.tokens_used,
            "timing": {
                "full_text_ms": round(self.full_text_ms, 1),
                "semantic_ms": round(self.semantic_ms, 1),
            },
        }


# ============================================================================
# Hybrid Retriever
# ============================================================================

class HybridRetriever:
    """
    Case-scoped hybrid search.

    Usage:
        retriever = HybridRetriever(vector_store, embedding_service)
        response = retriever.search(case_id, "mortgage payment", mode="hybrid")
    """

    def __init__(
        self,
        vector_store,
        embedding_service,
        config: Optional[RetrievalConfig] = None,
        usage_tracker=None,
    ):
        self.vector_store = vector_store
        self.embeddings = embedding_service
        self.config = config or RetrievalConfig()
        self.usage_tracker = usage_tracker

    def search(
        self,
        case_id: str,
        query: str,
        mode: str = "hybrid",
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
        min_similarity: Optional[float] = None,
    ) -> SearchResponse:
        """
        Search a case.

        Args:
            case_id: Case to search
            query: Free-text query
            mode: "full-text", "semantic" or "hybrid"
            filters: Optional classification filters
            limit: Maximum results (capped at config.max_limit)
            min_similarity: Similarity floor for semantic matches

        Returns:
            SearchResponse with hits ordered by relevance, ties by chunk index
        """
        if mode not in SEARCH_MODES:
            raise ValueError(f"Unknown search mode: {mode!r}; expected one of {SEARCH_MODES}")

        query = (query or "").strip()
        if not query:
            raise ValueError("Query is required")

        limit = min(limit or self.config.default_limit, self.config.max_limit)
        if min_similarity is None:
            min_similarity = self.config.default_min_similarity
        min_similarity = max(0.0, min(1.0, min_similarity))

        response = SearchResponse(query=query, mode=mode)

        lexical: list[ChunkMatch] = []
        if mode in ("full-text", "hybrid"):
            start = time.perf_counter()
            lexical = self.vector_store.keyword_search(
                case_id, extract_query_terms(query), limit=limit, filters=filters,
            )
            response.full_text_ms = (time.perf_counter() - start) * 1000

        semantic: list[ChunkMatch] = []
        if mode in ("semantic", "hybrid"):
            start = time.perf_counter()
            semantic, response.tokens_used = self._semantic_search(
                case_id, query, limit, min_similarity, filters,
            )
            response.semantic_ms = (time.perf_counter() - start) * 1000

        response.results = self._merge(query, lexical, semantic)[:limit]
        logger.info(
            f"Search [{mode}] case {case_id}: {len(lexical)} keyword, "
            f"{len(semantic)} semantic, {response.total} returned"
        )
        return response

    def _semantic_search(
        self,
        case_id: str,
        query: str,
        limit: int,
        min_similarity: float,
        filters: Optional[SearchFilters],
    ) -> tuple[list[ChunkMatch], int]:
        """Embed the query and run the vector search; failures yield no matches."""
        try:
            embedded = self.embeddings.embed_query(query)
        except Exception as e:
            logger.warning(f"Query embedding failed, skipping semantic search: {e}")
            return [], 0

        if self.usage_tracker is not None and embedded.tokens_used:
            model = self.embeddings.model
            self.usage_tracker.record(UsageRecord(
                operation="query_embedding",
                model=model,
                input_tokens=embedded.tokens_used,
                cost_cents=calculate_embedding_cost_cents(
                    embedded.tokens_used, EmbeddingModelConfig.for_model(model),
                ),
                case_id=case_id,
            ))

        try:
            matches = self.vector_store.similarity_search(
                case_id,
                embedded.vector,
                limit=limit,
                min_similarity=min_similarity,
                filters=filters,
            )
        except EmbeddingStoreUnavailable as e:
            logger.warning(f"Semantic search unavailable for case {case_id}: {e}")
            return [], embedded.tokens_used

        # Store ordering is trusted, but the floor is enforced here as well
        matches = [m for m in matches if m.score >= min_similarity]
        return matches, embedded.tokens_used

    def _merge(
        self,
        query: str,
        lexical: list[ChunkMatch],
        semantic: list[ChunkMatch],
    ) -> list[SearchHit]:
        """Merge both paths by chunk id and rank."""
        merged: dict[str, tuple[ChunkMatch, Optional[float], set]] = {}

        for match in lexical:
            merged[match.chunk_id] = (match, None, {"full-text"})
        for match in semantic:
            if match.chunk_id in merged:
                existing, _, paths = merged[match.chunk_id]
                merged[match.chunk_id] = (existing, match.score, paths | {"semantic"})
            else:
                merged[match.chunk_id] = (match, match.score, {"semantic"})

        hits = [
            self._to_hit(query, match, similarity, paths)
            for match, similarity, paths in merged.values()
        ]
        hits.sort(key=lambda h: (-h.relevance_score, h.chunk_index))
        return hits

    def _to_hit(
        self,
        query: str,
        match: ChunkMatch,
        similarity: Optional[float],
        paths: set,
    ) -> SearchHit:
        if len(paths) == 2:
            match_type = "both"
        else:
            match_type = next(iter(paths))

        score = calculate_relevance_score(
            match.content,
            query,
            similarity if similarity is not None else FULL_TEXT_BASELINE,
        )
        if match_type == "both":
            score = min(1.0, score * BOTH_MATCH_BOOST)

        snippet = extract_snippet(match.content, query, self.config.snippet_context_chars)
        if not snippet:
            snippet = match.content[:FALLBACK_SNIPPET_CHARS]
            if len(match.content) > FALLBACK_SNIPPET_CHARS:
                snippet += "..."
        snippet, highlights = highlight_matches(snippet, query)

        return SearchHit(
            chunk_id=match.chunk_id,
            document_id=match.document_id,
            chunk_index=match.chunk_index,
            file_name=match.file_name,
            category=match.category,
            subtype=match.subtype,
            relevance_score=score,
            match_type=match_type,
            snippet=snippet,
            highlights=highlights,
            similarity=similarity,
            page_number=match.page_number,
        )
