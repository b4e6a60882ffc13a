"""
Pydantic models for the case intelligence FastAPI backend.
"""

from typing import Optional
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response body for health check."""
    status: str
    version: str
    database: str


# =========================================================================
# Search
# =========================================================================

class SearchRequest(BaseModel):
    """Request body for case search."""
    query: str = Field(..., min_length=1, max_length=2000)
    mode: str = Field(default="hybrid", pattern=r"^(full-text|semantic|hybrid)$")
    limit: int = Field(default=20, ge=1, le=50)
    min_similarity: float = Field(default=0.7, ge=0.0, le=1.0)
    categories: list[str] = []
    subtypes: list[str] = []
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    max_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    document_ids: list[str] = []


class SearchHitInfo(BaseModel):
    chunk_id: str
    document_id: str
    chunk_index: int
    file_name: str
    category: Optional[str] = None
    subtype: Optional[str] = None
    relevance_score: float
    match_type: str
    snippet: str
    highlights: list[str] = []
    similarity: Optional[float] = None
    page_number: Optional[int] = None


class SearchResponseModel(BaseModel):
    """Response body for case search."""
    query: str
    mode: str
    results: list[SearchHitInfo]
    total: int
    tokens_used: int
    timing: dict


# =========================================================================
# Review
# =========================================================================

class RejectRequest(BaseModel):
    """Request body for rejecting a classification."""
    reason: str = Field(..., min_length=1, max_length=2000)


class OverrideRequest(BaseModel):
    """Request body for overriding a classification."""
    category: str = Field(..., min_length=1)
    subtype: str = Field(..., min_length=1)


class ReclassifyRequest(BaseModel):
    hints: Optional[str] = Field(None, max_length=2000)


class BulkAcceptRequest(BaseModel):
    """Accept explicit documents, or every flagged document above a confidence."""
    document_ids: Optional[list[str]] = None
    min_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


class BulkRejectRequest(BaseModel):
    document_ids: list[str] = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=2000)


class BulkActionResponse(BaseModel):
    processed: int
    accepted: int
    rejected: int
    errors: list[str]


class OverrideResponse(BaseModel):
    success: bool
    document_id: str
    previous_category: Optional[str] = None
    previous_subtype: Optional[str] = None
    new_category: str
    new_subtype: str
    overridden_by: str
    timestamp: str


class HistoryEntryInfo(BaseModel):
    timestamp: Optional[str] = None
    category: str
    subtype: str
    confidence: float
    source: str
    user_id: Optional[str] = None
    previous_category: Optional[str] = None
    previous_subtype: Optional[str] = None
