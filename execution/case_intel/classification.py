"""
Document Classification Pipeline

Extracts text, asks the language model to place a document in the taxonomy,
derives deterministic metadata and stores the result with an audit entry.

The stored confidence is never the model's self-reported value alone: it is
capped by a heuristic built from taxonomy validity and text quality. Documents
whose text cannot be extracted are classified from their file name.
"""

import os
import math
import time
import logging
from datetime import datetime, timezone
from typing import Optional
from dataclasses import dataclass, field
from concurrent.futures import ThreadPoolExecutor

from .document_store import HistoryEntry, HistorySource, ReviewState
from .errors import FATAL_BATCH_ERRORS
from .llm_client import LLMClient
from .metadata_extraction import DocumentMetadata, MetadataExtractor, merge_metadata
from .model_config import ModelConfig, get_classification_config
from .patterns import LLM_PROMPTS
from .taxonomy import (
    DOCUMENT_CATEGORIES,
    is_valid_category,
    is_valid_pair,
    normalize_category_subtype,
)
from .text_extraction import DocumentTextSource, ExtractedText
from .usage import UsageRecord

logger = logging.getLogger(__name__)


@dataclass
class ClassificationConfig:
    """Configuration for the classification pipeline."""
    review_threshold: float = 0.8  # below this a human must look at it
    excerpt_chars: int = 4000  # text sent to the model
    min_text_chars: int = 10  # less than this counts as "no text"
    quality_word_floor: int = 100  # words needed for full text-quality credit
    default_model_confidence: float = 0.5  # when the model omits a confidence
    max_concurrency: int = field(
        default_factory=lambda: max(1, int(os.getenv("CLASSIFICATION_MAX_CONCURRENCY", "1")))
    )


@dataclass
class ModelClassification:
    """The model's answer, before validation."""
    category: Optional[str]
    subtype: Optional[str]
    confidence: float
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_response(cls, data: dict, default_confidence: float = 0.5) -> "ModelClassification":
        raw_confidence = data.get("confidence")
        try:
            confidence = float(raw_confidence)
        except (TypeError, ValueError):
            confidence = default_confidence
        if not math.isfinite(confidence):
            confidence = default_confidence
        elif 2.0 <= confidence <= 100.0:
            confidence = confidence / 100  # percentages
        confidence = max(0.0, min(1.0, confidence))

        metadata = data.get("metadata")
        return cls(
            category=data.get("category") if isinstance(data.get("category"), str) else None,
            subtype=data.get("subtype") if isinstance(data.get("subtype"), str) else None,
            confidence=confidence,
            metadata=metadata if isinstance(metadata, dict) else {},
        )


@dataclass
class ClassificationResult:
    """Final classification of one document."""
    document_id: Optional[str]
    category: str
    subtype: str
    confidence: float
    model_confidence: float
    heuristic_confidence: float
    needs_review: bool
    metadata: DocumentMetadata
    extraction_method: str = "text"
    used_filename: bool = False
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: float = 0.0
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "category": self.category,
            "subtype": self.subtype,
            "confidence": round(self.confidence, 4),
            "model_confidence": round(self.model_confidence, 4),
            "heuristic_confidence": round(self.heuristic_confidence, 4),
            "needs_review": self.needs_review,
            "metadata": self.metadata.to_dict(),
            "extraction_method": self.extraction_method,
            "used_filename": self.used_filename,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cost_cents": round(self.cost_cents, 4),
            "processing_time_ms": round(self.processing_time_ms, 1),
        }


@dataclass
class BatchClassificationResult:
    """Outcome of classifying every unclassified document in a case."""
    processed: int = 0
    successful: int = 0
    failed: int = 0
    results: list[ClassificationResult] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "successful": self.successful,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "errors": self.errors,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
        }


# ============================================================================
# Prompt and confidence
# ============================================================================

def format_taxonomy() -> str:
    return "\n".join(
        f"- {category}: {', '.join(subtypes)}"
        for category, subtypes in DOCUMENT_CATEGORIES.items()
    )


def build_classification_prompt(
    text: str,
    file_name: Optional[str] = None,
    hints: Optional[str] = None,
    excerpt_chars: int = 4000,
    min_text_chars: int = 10,
) -> list[dict]:
    """
    Chat messages asking for a JSON classification.

    Uses the first ``excerpt_chars`` of text, or the file name when the text
    is shorter than ``min_text_chars``.
    """
    text = (text or "").strip()
    if len(text) > min_text_chars:
        content_section = LLM_PROMPTS["classification_text_section"].format(
            excerpt=text[:excerpt_chars],
            truncated="\n...(truncated)" if len(text) > excerpt_chars else "",
        )
    else:
        content_section = LLM_PROMPTS["classification_filename_section"].format(
            file_name=file_name or "unknown",
        )

    user_prompt = LLM_PROMPTS["classification_user"].format(
        categories=format_taxonomy(),
        content_section=content_section,
    )
    if hints:
        user_prompt += LLM_PROMPTS["reclassification_hints"].format(hints=hints.strip())

    return [
        {"role": "system", "content": LLM_PROMPTS["classification_system"]},
        {"role": "user", "content": user_prompt},
    ]


def calculate_confidence(
    category: Optional[str],
    subtype: Optional[str],
    text_quality: float,
) -> float:
    """
    Heuristic confidence for a returned (category, subtype).

    0.5 base, +0.2 for a taxonomy category, +0.2 for a subtype of that
    category, + up to 0.1 for text quality (0-1).
    """
    confidence = 0.5
    if is_valid_category(category):
        confidence += 0.2
    if is_valid_pair(category, subtype):
        confidence += 0.2
    confidence += max(0.0, min(1.0, text_quality)) * 0.1
    return min(confidence, 1.0)


def text_quality(word_count: int, floor: int = 100) -> float:
    """Word count relative to ``floor``, capped at 1."""
    if floor <= 0:
        return 1.0
    return min(1.0, max(0, word_count) / floor)


# ============================================================================
# Pipeline
# ============================================================================

class ClassificationPipeline:
    """
    Classify documents and persist the outcome.

    Usage:
        pipeline = ClassificationPipeline(DocumentStore(db), LLMClient())
        result = pipeline.classify_and_store(document_id, user_id="user_1")
    """

    def __init__(
        self,
        document_store,
        llm_client: Optional[LLMClient] = None,
        text_source: Optional[DocumentTextSource] = None,
        extractor: Optional[MetadataExtractor] = None,
        config: Optional[ClassificationConfig] = None,
        model_config: Optional[ModelConfig] = None,
        usage_tracker=None,
    ):
        self.document_store = document_store
        self.llm = llm_client or LLMClient()
        self.text_source = text_source or DocumentTextSource()
        self.extractor = extractor or MetadataExtractor()
        self.config = config or ClassificationConfig()
        self.model_config = model_config or get_classification_config()
        self.usage_tracker = usage_tracker

    def classify_text(
        self,
        text: str,
        file_name: Optional[str] = None,
        word_count: Optional[int] = None,
        hints: Optional[str] = None,
        document_id: Optional[str] = None,
        case_id: Optional[str] = None,
    ) -> ClassificationResult:
        """
        Classify raw text without touching the store.

        Raises:
            InvalidModelResponse: The model did not return a JSON object
            ModelRateLimited, ModelTimeout, ModelAuthenticationError
        """
        start = time.perf_counter()
        text = text or ""
        used_filename = len(text.strip()) <= self.config.min_text_chars
        if word_count is None:
            word_count = len(text.split())

        messages = build_classification_prompt(
            text,
            file_name,
            hints=hints,
            excerpt_chars=self.config.excerpt_chars,
            min_text_chars=self.config.min_text_chars,
        )
        completion = self.llm.complete(messages, self.model_config, json_mode=True)
        self._record_usage(completion, case_id, document_id)

        answer = ModelClassification.from_response(
            completion.parse_json(), self.config.default_model_confidence,
        )

        heuristic = calculate_confidence(
            answer.category,
            answer.subtype,
            text_quality(word_count, self.config.quality_word_floor),
        )
        confidence = min(answer.confidence, heuristic)
        category, subtype = normalize_category_subtype(answer.category, answer.subtype)
        if (category, subtype) != (answer.category, answer.subtype):
            logger.warning(
                f"Model answer {answer.category!r}/{answer.subtype!r} normalized "
                f"to {category}/{subtype}"
            )

        metadata = merge_metadata(category, answer.metadata, self.extractor.extract(text, category))

        return ClassificationResult(
            document_id=document_id,
            category=category,
            subtype=subtype,
            confidence=confidence,
            model_confidence=answer.confidence,
            heuristic_confidence=heuristic,
            needs_review=confidence < self.config.review_threshold,
            metadata=metadata,
            extraction_method="filename" if used_filename else "text",
            used_filename=used_filename,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            cost_cents=completion.cost_cents,
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )

    def classify_and_store(
        self,
        document_id: str,
        user_id: Optional[str] = None,
        hints: Optional[str] = None,
    ) -> ClassificationResult:
        """
        Classify a stored document and write the result.

        Args:
            document_id: Document to classify
            user_id: Who triggered the run (recorded in history)
            hints: Optional reviewer hints appended to the prompt

        Returns:
            ClassificationResult

        Raises:
            DocumentNotFound, InvalidModelResponse and model service errors;
            nothing is written when any of them is raised.
        """
        start = time.perf_counter()
        record = self.document_store.get_document(document_id)
        extracted: ExtractedText = self.text_source.get_text(record)

        result = self.classify_text(
            extracted.text,
            file_name=record.file_name,
            word_count=extracted.word_count,
            hints=hints,
            document_id=record.id,
            case_id=record.case_id,
        )
        if not result.used_filename:
            result.extraction_method = extracted.method

        result.metadata.extra.update({
            "pages": extracted.pages,
            "word_count": extracted.word_count,
            "is_scanned": extracted.is_scanned,
            "extraction_method": result.extraction_method,
        })

        entry = HistoryEntry(
            timestamp=datetime.now(timezone.utc),
            category=result.category,
            subtype=result.subtype,
            confidence=result.confidence,
            source=HistorySource.AI.value,
            user_id=user_id,
            previous_category=record.category,
            previous_subtype=record.subtype,
        )
        self.document_store.update_classification(
            record.id,
            history_entry=entry,
            category=result.category,
            subtype=result.subtype,
            confidence=result.confidence,
            needs_review=result.needs_review,
            review_status=ReviewState.PENDING.value,
            reviewed_at=None,
            reviewed_by=None,
            metadata=result.metadata,
        )

        result.processing_time_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Classified {record.id} ({record.file_name}) as "
            f"{result.category}/{result.subtype} @ {result.confidence:.2f}"
            f"{' [filename]' if result.used_filename else ''}"
        )
        return result

    def classify_all_documents(
        self,
        case_id: str,
        user_id: Optional[str] = None,
    ) -> BatchClassificationResult:
        """
        Classify every document in a case that has no category yet.

        Documents run in windows of ``config.max_concurrency``. A failure is
        recorded and the batch continues, except for rate limits, timeouts and
        authentication failures, which stop it after the current window.
        """
        documents = self.document_store.list_case_documents(case_id, unclassified_only=True)
        batch = BatchClassificationResult()
        if not documents:
            return batch

        workers = max(1, self.config.max_concurrency)
        logger.info(
            f"Classifying {len(documents)} documents in case {case_id} "
            f"({workers} concurrent)"
        )

        with ThreadPoolExecutor(max_workers=workers) as executor:
            for window_start in range(0, len(documents), workers):
                window = documents[window_start:window_start + workers]
                futures = [
                    (doc, executor.submit(self.classify_and_store, doc.id, user_id))
                    for doc in window
                ]

                for doc, future in futures:
                    batch.processed += 1
                    try:
                        batch.results.append(future.result())
                        batch.successful += 1
                    except FATAL_BATCH_ERRORS as e:
                        batch.failed += 1
                        batch.errors.append({"document_id": doc.id, "error": str(e)})
                        batch.aborted = True
                        batch.abort_reason = f"{type(e).__name__}: {e}"
                        logger.error(f"Failed to classify document {doc.id}: {e}")
                    except Exception as e:
                        batch.failed += 1
                        batch.errors.append({"document_id": doc.id, "error": str(e)})
                        logger.error(f"Failed to classify document {doc.id}: {e}")

                if batch.aborted:
                    logger.error(f"Stopping batch for case {case_id}: {batch.abort_reason}")
                    break

        logger.info(
            f"Case {case_id}: {batch.successful}/{batch.processed} classified, "
            f"{batch.failed} failed"
        )
        return batch

    def get_classification_stats(self, case_id: str) -> dict:
        """Counts by category plus average confidence of classified documents."""
        documents = self.document_store.list_case_documents(case_id)
        classified = [d for d in documents if d.is_classified]

        by_category: dict[str, int] = {}
        for doc in classified:
            by_category[doc.category] = by_category.get(doc.category, 0) + 1

        confidences = [d.confidence for d in classified if d.confidence > 0]
        return {
            "total": len(documents),
            "classified": len(classified),
            "unclassified": len(documents) - len(classified),
            "needs_review": sum(1 for d in documents if d.needs_review),
            "by_category": by_category,
            "average_confidence": (
                round(sum(confidences) / len(confidences), 4) if confidences else 0.0
            ),
        }

    def _record_usage(self, completion, case_id: Optional[str], document_id: Optional[str]) -> None:
        if self.usage_tracker is None:
            return
        self.usage_tracker.record(UsageRecord(
            operation="classification",
            model=completion.model,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            cost_cents=completion.cost_cents,
            case_id=case_id,
            document_id=document_id,
        ))
