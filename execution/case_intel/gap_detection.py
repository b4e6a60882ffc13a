"""
Gap Detection for Family-Law Cases

Compares a case's classified documents with the required-document checklist
and reports missing document types, holes in recurring statement series and
a completion score. Recomputed on demand; nothing here is persisted.
"""

import logging
from datetime import date
from typing import Optional
from dataclasses import dataclass, field

from .metadata_extraction import parse_date
from .taxonomy import (
    FAMILY_LAW_DOCUMENT_CHECKLIST,
    RECURRING_DOCUMENT_TYPES,
    ChecklistCategory,
)

logger = logging.getLogger(__name__)

# Adjacent statement dates further apart than this are a gap
MAX_GAP_DAYS = 60
# Fewer financial documents than this triggers a recommendation
MIN_FINANCIAL_DOCUMENTS = 5


@dataclass
class DocumentInfo:
    """The slice of a document the detector needs."""
    id: str
    category: Optional[str] = None
    subtype: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    confidence: float = 0.0
    needs_review: bool = False
    file_name: str = ""


@dataclass
class MissingDocument:
    type: str
    description: str
    category: str
    priority: str = "high"
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "description": self.description,
            "category": self.category,
            "priority": self.priority,
            "reason": self.reason,
        }


@dataclass
class DateGap:
    type: str
    category: str
    missing_period: str
    start_date: str
    end_date: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "category": self.category,
            "missing_period": self.missing_period,
            "start_date": self.start_date,
            "end_date": self.end_date,
        }


@dataclass
class GapReport:
    missing_documents: list[MissingDocument] = field(default_factory=list)
    date_gaps: list[DateGap] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    completion_score: int = 0  # 0-100
    category_scores: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "missing_documents": [m.to_dict() for m in self.missing_documents],
            "date_gaps": [g.to_dict() for g in self.date_gaps],
            "recommendations": self.recommendations,
            "completion_score": self.completion_score,
            "category_scores": self.category_scores,
        }


def _subtype_matches(subtype: Optional[str], item_type: str) -> bool:
    """Case-insensitive substring match in either direction."""
    if not subtype or not subtype.strip():
        return False
    subtype = subtype.strip().lower()
    item_type = item_type.lower()
    return item_type in subtype or subtype in item_type


def _format_month(value: date) -> str:
    return value.strftime("%b %Y")


def _find_date_gaps(documents: list[DocumentInfo]) -> list[DateGap]:
    gaps = []
    for doc_type in RECURRING_DOCUMENT_TYPES:
        dates = []
        for doc in documents:
            if doc.subtype != doc_type:
                continue
            for value in (doc.start_date, doc.end_date):
                parsed = parse_date(value)
                if parsed is not None:
                    dates.append(parsed)

        dates.sort()
        for previous, current in zip(dates, dates[1:]):
            if (current - previous).days > MAX_GAP_DAYS:
                gaps.append(DateGap(
                    type=doc_type,
                    category="Financial",
                    missing_period=f"{_format_month(previous)} - {_format_month(current)}",
                    start_date=previous.isoformat(),
                    end_date=current.isoformat(),
                ))
    return gaps


def _recommendations(
    documents: list[DocumentInfo],
    missing: list[MissingDocument],
    gaps: list[DateGap],
) -> list[str]:
    recommendations = []

    high_priority = [m for m in missing if m.priority == "high"]
    if high_priority:
        names = ", ".join(m.type for m in high_priority[:3])
        more = "..." if len(high_priority) > 3 else ""
        recommendations.append(
            f"Obtain {len(high_priority)} critical missing documents: {names}{more}"
        )

    if gaps:
        recommendations.append(
            f"Fill {len(gaps)} date gap(s) in financial records to ensure complete coverage"
        )

    flagged = sum(1 for d in documents if d.category and d.needs_review)
    if flagged:
        recommendations.append(
            f"Review {flagged} AI-classified document(s) flagged for review to verify accuracy"
        )

    financial = sum(1 for d in documents if d.category == "Financial")
    if financial < MIN_FINANCIAL_DOCUMENTS:
        recommendations.append(
            "Financial documentation appears incomplete. Consider adding more bank "
            "statements, tax returns, or pay stubs."
        )
    return recommendations


def detect_gaps(
    documents: list[DocumentInfo],
    checklist: Optional[dict[str, ChecklistCategory]] = None,
) -> GapReport:
    """
    Build a gap report for a case.

    Args:
        documents: Every document of the case (unclassified ones are ignored)
        checklist: Category -> required/optional items; the family-law
            checklist by default

    Returns:
        GapReport with scores in [0, 100]. An empty case scores 0 and lists
        every required item as missing.
    """
    if checklist is None:
        checklist = FAMILY_LAW_DOCUMENT_CHECKLIST

    by_category: dict[str, list[DocumentInfo]] = {}
    for doc in documents:
        if doc.category:
            by_category.setdefault(doc.category, []).append(doc)

    report = GapReport()
    total_required = 0
    total_found = 0

    for category, items in checklist.items():
        category_docs = by_category.get(category, [])
        found = 0
        for item in items.required:
            if any(_subtype_matches(doc.subtype, item.type) for doc in category_docs):
                found += 1
            else:
                report.missing_documents.append(MissingDocument(
                    type=item.type,
                    description=item.description,
                    category=category,
                    priority="high",
                    reason=f"Required for {category.lower()} documentation",
                ))

        required = len(items.required)
        report.category_scores[category] = {
            "score": round(found / required * 100) if required else 100,
            "found": found,
            "required": required,
        }
        total_required += required
        total_found += found

    report.date_gaps = _find_date_gaps(documents)
    report.completion_score = (
        round(total_found / total_required * 100) if total_required else 0
    )
    report.recommendations = _recommendations(
        documents, report.missing_documents, report.date_gaps,
    )

    logger.info(
        f"Gap detection: {len(documents)} documents, "
        f"{len(report.missing_documents)} missing, {len(report.date_gaps)} date gaps, "
        f"score {report.completion_score}"
    )
    return report


def get_document_checklist(
    checklist: Optional[dict[str, ChecklistCategory]] = None,
) -> list[dict]:
    """Flattened checklist for display."""
    if checklist is None:
        checklist = FAMILY_LAW_DOCUMENT_CHECKLIST

    rows = []
    for category, items in checklist.items():
        for required, group in ((True, items.required), (False, items.optional)):
            for item in group:
                rows.append({"category": category, **item.to_dict(), "required": required})
    return rows


def documents_from_records(records) -> list[DocumentInfo]:
    """Convert DocumentRecords to DocumentInfo."""
    return [
        DocumentInfo(
            id=record.id,
            category=record.category,
            subtype=record.subtype,
            start_date=record.metadata.start_date,
            end_date=record.metadata.end_date,
            confidence=record.confidence,
            needs_review=record.needs_review,
            file_name=record.file_name,
        )
        for record in records
    ]
