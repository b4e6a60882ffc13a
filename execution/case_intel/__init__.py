"""
Case Intelligence - Document Understanding for Family-Law Cases

This module provides:
- Chunking of extracted document text with page tagging
- Embedding indexing with atomic per-document re-index
- Hybrid (keyword + semantic) search scoped to a case
- AI classification into a document taxonomy with capped confidence
- Human review (accept / reject / override) with an append-only history
- Gap detection against a required-document checklist
"""

from .chunker import Chunk, ChunkConfig, DocumentChunker
from .indexer import EmbeddingIndexer
from .retriever import HybridRetriever
from .classification import ClassificationPipeline
from .review import ReviewWorkflow
from .gap_detection import DocumentInfo, GapReport, detect_gaps

__all__ = [
    "Chunk",
    "ChunkConfig",
    "DocumentChunker",
    "EmbeddingIndexer",
    "HybridRetriever",
    "ClassificationPipeline",
    "ReviewWorkflow",
    "DocumentInfo",
    "GapReport",
    "detect_gaps",
]

__version__ = "0.1.0"
