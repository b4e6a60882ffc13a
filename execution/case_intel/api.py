"""
FastAPI Backend for Case Document Intelligence

REST endpoints for case search, document classification, embedding, review
actions and case insights (gap detection).

The caller is identified by the x-user-id header; authentication itself
happens upstream.

Run with: uvicorn execution.case_intel.api:app --host 0.0.0.0 --port 8000
"""

import os
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Header
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

from . import __version__
from .api_models import (
    HealthResponse,
    SearchRequest, SearchResponseModel,
    RejectRequest, OverrideRequest, ReclassifyRequest,
    BulkAcceptRequest, BulkRejectRequest, BulkActionResponse,
    OverrideResponse, HistoryEntryInfo,
)
from .errors import (
    CaseIntelError,
    ClassificationMissing,
    DocumentNotFound,
    EmbeddingDimensionMismatch,
    ExtractionUnavailable,
    ModelRateLimited,
    ModelServiceError,
    ModelTimeout,
)
from .gap_detection import detect_gaps, documents_from_records, get_document_checklist
from .vector_store import SearchFilters

# Load environment variables
load_dotenv()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Case Intelligence API",
    description="Search, classification, review and gap detection for case documents",
    version=__version__,
)

# Configure CORS: use CORS_ORIGINS env var (comma-separated) or default to localhost
_cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Service Container - shared connections and model clients
# =============================================================================

class ServiceContainer:
    """Lazily builds the long-lived services; tests replace the underscored slots."""

    def __init__(self):
        self._db = None
        self._document_store = None
        self._vector_store = None
        self._embeddings = None
        self._llm_client = None

    def get_db(self):
        if self._db is None:
            from .database import Database
            self._db = Database()
            self._db.connect()
        return self._db

    def get_document_store(self):
        if self._document_store is None:
            from .document_store import DocumentStore
            self._document_store = DocumentStore(self.get_db())
            self._document_store.initialize_schema()
        return self._document_store

    def get_embeddings(self):
        if self._embeddings is None:
            from .embeddings import get_embedding_service
            self._embeddings = get_embedding_service()
        return self._embeddings

    def get_vector_store(self):
        if self._vector_store is None:
            from .vector_store import VectorStore, VectorStoreConfig
            self._vector_store = VectorStore(
                self.get_db(),
                VectorStoreConfig(embedding_dimensions=self.get_embeddings().dimensions),
            )
            self._vector_store.initialize_schema()
        return self._vector_store

    def get_llm_client(self):
        if self._llm_client is None:
            from .llm_client import LLMClient
            self._llm_client = LLMClient()
        return self._llm_client

    # Request-scoped components: cheap to build, each with its own usage tracker

    def usage_tracker(self):
        from .usage import UsageTracker
        return UsageTracker(store=self.get_document_store())

    def pipeline(self, usage_tracker=None):
        from .classification import ClassificationPipeline
        return ClassificationPipeline(
            self.get_document_store(),
            self.get_llm_client(),
            usage_tracker=usage_tracker,
        )

    def review_workflow(self, with_pipeline: bool = False):
        from .review import ReviewWorkflow
        return ReviewWorkflow(
            self.get_document_store(),
            pipeline=self.pipeline(self.usage_tracker()) if with_pipeline else None,
        )

    def retriever(self, usage_tracker=None):
        from .retriever import HybridRetriever
        return HybridRetriever(
            self.get_vector_store(),
            self.get_embeddings(),
            usage_tracker=usage_tracker,
        )

    def indexer(self, usage_tracker=None):
        from .indexer import EmbeddingIndexer
        from .text_extraction import DocumentTextSource
        return EmbeddingIndexer(
            self.get_vector_store(),
            self.get_embeddings(),
            usage_tracker=usage_tracker,
            document_store=self.get_document_store(),
            text_source=DocumentTextSource(),
        )


_container = ServiceContainer()


# =============================================================================
# Dependencies and error mapping
# =============================================================================

async def get_user_id(x_user_id: str = Header(...)) -> str:
    """Caller identity, set by the upstream auth layer."""
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user id")
    return x_user_id.strip()


def _http_error(error: Exception) -> HTTPException:
    """Map a domain error onto an HTTP status."""
    if isinstance(error, DocumentNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ClassificationMissing):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, EmbeddingDimensionMismatch):
        return HTTPException(status_code=500, detail=str(error))
    if isinstance(error, ExtractionUnavailable):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ModelRateLimited):
        return HTTPException(status_code=429, detail=str(error))
    if isinstance(error, ModelTimeout):
        return HTTPException(status_code=504, detail=str(error))
    if isinstance(error, ModelServiceError):
        return HTTPException(status_code=502, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    db_status = "unknown"
    try:
        _container.get_document_store()
        db_status = "connected"
    except Exception as e:
        logger.warning(f"Health check: database disconnected: {e}")
        db_status = "disconnected"

    return HealthResponse(status="ok", version=__version__, database=db_status)


@app.post("/api/v1/cases/{case_id}/search", response_model=SearchResponseModel)
async def search_case(
    case_id: str,
    request: SearchRequest,
    user_id: str = Depends(get_user_id),
):
    """Full-text, semantic or hybrid search over a case's documents."""
    filters = SearchFilters(
        categories=request.categories,
        subtypes=request.subtypes,
        min_confidence=request.min_confidence,
        max_confidence=request.max_confidence,
        document_ids=request.document_ids,
    )
    try:
        response = _container.retriever(_container.usage_tracker()).search(
            case_id,
            request.query,
            mode=request.mode,
            filters=None if filters.is_empty() else filters,
            limit=request.limit,
            min_similarity=request.min_similarity,
        )
    except (CaseIntelError, ValueError) as e:
        raise _http_error(e)
    return response.to_dict()


# -----------------------------------------------------------------------------
# Classification and indexing
# -----------------------------------------------------------------------------

@app.post("/api/v1/documents/{document_id}/classify")
async def classify_document(document_id: str, user_id: str = Depends(get_user_id)):
    """Classify one document and store the result."""
    try:
        result = _container.pipeline(_container.usage_tracker()).classify_and_store(
            document_id, user_id=user_id,
        )
    except (CaseIntelError, ValueError) as e:
        raise _http_error(e)
    return result.to_dict()


@app.post("/api/v1/cases/{case_id}/classify")
async def classify_case(case_id: str, user_id: str = Depends(get_user_id)):
    """Classify every unclassified document of a case."""
    tracker = _container.usage_tracker()
    batch = _container.pipeline(tracker).classify_all_documents(case_id, user_id=user_id)
    return {**batch.to_dict(), "usage": tracker.summary(case_id).to_dict()}


@app.post("/api/v1/documents/{document_id}/embed")
async def embed_document(document_id: str, user_id: str = Depends(get_user_id)):
    """Chunk and (re-)index one document."""
    try:
        result = _container.indexer(_container.usage_tracker()).index_document(document_id)
    except (CaseIntelError, ValueError) as e:
        raise _http_error(e)
    return result.to_dict()


@app.post("/api/v1/cases/{case_id}/embed")
async def embed_case(case_id: str, user_id: str = Depends(get_user_id)):
    """Re-index every document of a case."""
    return _container.indexer(_container.usage_tracker()).index_case(case_id).to_dict()


# -----------------------------------------------------------------------------
# Review
# -----------------------------------------------------------------------------

@app.get("/api/v1/cases/{case_id}/review")
async def list_documents_for_review(
    case_id: str,
    needs_review: Optional[bool] = None,
    category: Optional[str] = None,
    min_confidence: Optional[float] = None,
    max_confidence: Optional[float] = None,
    user_id: str = Depends(get_user_id),
):
    documents = _container.review_workflow().get_documents_for_review(
        case_id,
        needs_review=needs_review,
        category=category,
        min_confidence=min_confidence,
        max_confidence=max_confidence,
    )
    return {"documents": [d.to_dict() for d in documents], "total": len(documents)}


@app.post("/api/v1/documents/{document_id}/accept")
async def accept_classification(document_id: str, user_id: str = Depends(get_user_id)):
    try:
        record = _container.review_workflow().accept(document_id, user_id)
    except (CaseIntelError, ValueError) as e:
        raise _http_error(e)
    return record.to_dict()


@app.post("/api/v1/documents/{document_id}/reject")
async def reject_classification(
    document_id: str,
    request: RejectRequest,
    user_id: str = Depends(get_user_id),
):
    try:
        record = _container.review_workflow().reject(document_id, user_id, request.reason)
    except (CaseIntelError, ValueError) as e:
        raise _http_error(e)
    return record.to_dict()


@app.post("/api/v1/documents/{document_id}/override", response_model=OverrideResponse)
async def override_classification(
    document_id: str,
    request: OverrideRequest,
    user_id: str = Depends(get_user_id),
):
    try:
        result = _container.review_workflow().override(
            document_id, user_id, request.category, request.subtype,
        )
    except (CaseIntelError, ValueError) as e:
        raise _http_error(e)
    return result.to_dict()


@app.post("/api/v1/documents/{document_id}/reclassify")
async def reclassify_document(
    document_id: str,
    request: ReclassifyRequest,
    user_id: str = Depends(get_user_id),
):
    """Flag for re-classification and classify again with the given hints."""
    try:
        record = _container.review_workflow(with_pipeline=True).request_reclassification(
            document_id, user_id, request.hints,
        )
    except (CaseIntelError, ValueError) as e:
        raise _http_error(e)
    return record.to_dict()


@app.post("/api/v1/cases/{case_id}/review/bulk-accept", response_model=BulkActionResponse)
async def bulk_accept(
    case_id: str,
    request: BulkAcceptRequest,
    user_id: str = Depends(get_user_id),
):
    try:
        result = _container.review_workflow().bulk_accept(
            user_id,
            case_id=case_id,
            min_confidence=request.min_confidence,
            document_ids=request.document_ids,
        )
    except ValueError as e:
        raise _http_error(e)
    return result.to_dict()


@app.post("/api/v1/cases/{case_id}/review/bulk-reject", response_model=BulkActionResponse)
async def bulk_reject(
    case_id: str,
    request: BulkRejectRequest,
    user_id: str = Depends(get_user_id),
):
    try:
        result = _container.review_workflow().bulk_reject(
            request.document_ids, user_id, request.reason,
        )
    except ValueError as e:
        raise _http_error(e)
    return result.to_dict()


@app.get("/api/v1/documents/{document_id}/history", response_model=list[HistoryEntryInfo])
async def classification_history(document_id: str, user_id: str = Depends(get_user_id)):
    try:
        history = _container.review_workflow().get_classification_history(document_id)
    except CaseIntelError as e:
        raise _http_error(e)
    return [entry.to_dict() for entry in history]


@app.get("/api/v1/cases/{case_id}/review/stats")
async def review_stats(case_id: str, user_id: str = Depends(get_user_id)):
    return _container.review_workflow().get_review_stats(case_id)


# -----------------------------------------------------------------------------
# Insights
# -----------------------------------------------------------------------------

@app.get("/api/v1/cases/{case_id}/insights")
async def case_insights(case_id: str, user_id: str = Depends(get_user_id)):
    """Gap report, checklist and classification summary for a case."""
    store = _container.get_document_store()
    records = store.list_case_documents(case_id)
    report = detect_gaps(documents_from_records(records))

    by_category: dict[str, int] = {}
    for record in records:
        if record.category:
            by_category[record.category] = by_category.get(record.category, 0) + 1

    return {
        "case_id": case_id,
        "total_documents": len(records),
        "classified_documents": sum(1 for r in records if r.is_classified),
        "documents_needing_review": sum(1 for r in records if r.needs_review),
        "documents_by_category": by_category,
        "gaps": report.to_dict(),
        "checklist": get_document_checklist(),
    }
