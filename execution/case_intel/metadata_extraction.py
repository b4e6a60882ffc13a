"""
Deterministic Metadata Extraction

Pulls dates, amounts, account numbers, parties and a one-line summary out of
document text with an ordered table of regex rules. Each rule declares which
categories it applies to, so adding an extractor means adding a row rather
than another branch.

Metadata is typed by category:

    DocumentMetadata   -- dates, summary, account numbers, free-form extras
        FinancialMetadata  -- + amounts
        LegalMetadata      -- + parties
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Callable, ClassVar, Optional

from .patterns import (
    ACCOUNT_PATTERN,
    AMOUNT_PATTERN,
    DATE_PATTERNS,
    MONTH_NAMES,
    PARTY_PATTERNS,
    SUMMARY_MAX_LENGTH,
    SUMMARY_MIN_LENGTH,
    SUMMARY_SENTENCE_SPLIT,
)

logger = logging.getLogger(__name__)

# Model responses use camelCase keys
FIELD_ALIASES = {
    "startDate": "start_date",
    "endDate": "end_date",
    "accountNumbers": "account_numbers",
}

_MONTHS = {name.lower(): i for i, name in enumerate(MONTH_NAMES, start=1)}


def _is_empty(value) -> bool:
    return value is None or value == "" or value == [] or value == {}


# =============================================================================
# Typed metadata
# =============================================================================

@dataclass
class DocumentMetadata:
    """Metadata common to every category."""
    kind: ClassVar[str] = "generic"

    start_date: Optional[str] = None
    end_date: Optional[str] = None
    summary: Optional[str] = None
    account_numbers: list[str] = field(default_factory=list)
    # Anything without a typed field: page counts, review notes, model extras
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "DocumentMetadata":
        """Build from stored or model-returned JSON; unknown keys go to extra."""
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {}
        raw_extra = (data or {}).get("extra")
        if isinstance(raw_extra, dict):
            extra = dict(raw_extra)
        else:
            extra = {} if _is_empty(raw_extra) else {"extra": raw_extra}
        for key, value in (data or {}).items():
            if key in ("kind", "extra"):
                continue
            name = FIELD_ALIASES.get(key, key)
            if name in known:
                values[name] = value
            else:
                extra[key] = value
        return cls(extra=extra, **values)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        for f in fields(self):
            if f.name != "extra":
                data[f.name] = getattr(self, f.name)
        data["kind"] = self.kind
        return data

    def fill_missing(self, other: "DocumentMetadata") -> "DocumentMetadata":
        """Copy values from ``other`` into fields that are empty here."""
        for f in fields(self):
            if f.name == "extra" or not hasattr(other, f.name):
                continue
            if _is_empty(getattr(self, f.name)) and not _is_empty(getattr(other, f.name)):
                setattr(self, f.name, getattr(other, f.name))
        for key, value in other.extra.items():
            self.extra.setdefault(key, value)
        return self


@dataclass
class FinancialMetadata(DocumentMetadata):
    kind: ClassVar[str] = "financial"

    amounts: list[float] = field(default_factory=list)


@dataclass
class LegalMetadata(DocumentMetadata):
    kind: ClassVar[str] = "legal"

    parties: list[str] = field(default_factory=list)


METADATA_TYPES = {
    "Financial": FinancialMetadata,
    "Legal": LegalMetadata,
}


def metadata_for_category(category: Optional[str], data: Optional[dict] = None) -> DocumentMetadata:
    """Typed metadata instance for a category from a plain dict."""
    return METADATA_TYPES.get(category, DocumentMetadata).from_dict(data or {})


# =============================================================================
# Dates
# =============================================================================

def _iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def find_dates(text: str) -> list[str]:
    """All recognizable dates in text order, normalized to YYYY-MM-DD."""
    found = []
    for name, pattern in DATE_PATTERNS.items():
        for match in pattern.finditer(text):
            if name == "us":
                month, day, year = (int(g) for g in match.groups())
            elif name == "iso":
                year, month, day = (int(g) for g in match.groups())
            else:
                month = _MONTHS[match.group(1).lower()]
                day, year = int(match.group(2)), int(match.group(3))
            iso = _iso(year, month, day)
            if iso:
                found.append((match.start(), iso))
    found.sort(key=lambda item: item[0])
    return [iso for _, iso in found]


def parse_date(value) -> Optional[date]:
    """
    Parse a stored metadata date.

    Accepts date/datetime objects, ISO dates or timestamps, MM/DD/YYYY and
    spelled-out dates ("January 5, 2024"). Returns None when unparseable.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    value = value.strip()
    try:
        return datetime.fromisoformat(value[:10]).date()
    except ValueError:
        pass

    dates = find_dates(value)
    if dates:
        return date.fromisoformat(dates[0])
    return None


# =============================================================================
# Extraction rules
# =============================================================================

def _extract_dates(text: str) -> dict:
    dates = find_dates(text)
    if not dates:
        return {}
    values = {"start_date": dates[0]}
    if len(dates) > 1:
        values["end_date"] = dates[-1]
    return values


def _extract_amounts(text: str) -> dict:
    amounts = []
    for raw in AMOUNT_PATTERN.findall(text):
        try:
            amounts.append(float(raw.replace("$", "").replace(",", "")))
        except ValueError:
            continue
    return {"amounts": amounts} if amounts else {}


def _extract_accounts(text: str) -> dict:
    accounts = []
    for match in ACCOUNT_PATTERN.finditer(text):
        masked = "****" + match.group(1)[-4:]
        if masked not in accounts:
            accounts.append(masked)
    return {"account_numbers": accounts} if accounts else {}


def _extract_parties(text: str) -> dict:
    parties = []
    for pattern in PARTY_PATTERNS:
        for match in pattern.finditer(text):
            name = match.group(1).strip()
            if name not in parties:
                parties.append(name)
    return {"parties": parties} if parties else {}


def _extract_summary(text: str) -> dict:
    for sentence in SUMMARY_SENTENCE_SPLIT.split(text):
        sentence = " ".join(sentence.split())
        if len(sentence) > SUMMARY_MIN_LENGTH:
            if len(sentence) > SUMMARY_MAX_LENGTH:
                sentence = sentence[:SUMMARY_MAX_LENGTH] + "..."
            return {"summary": sentence}
    return {}


@dataclass(frozen=True)
class ExtractionRule:
    """One extractor and the categories it runs for (None = all)."""
    name: str
    extract: Callable[[str], dict]
    categories: Optional[frozenset] = None

    def applies_to(self, category: Optional[str]) -> bool:
        return self.categories is None or category in self.categories


DEFAULT_RULES = (
    ExtractionRule("dates", _extract_dates),
    ExtractionRule("amounts", _extract_amounts, frozenset({"Financial"})),
    ExtractionRule("accounts", _extract_accounts),
    ExtractionRule("parties", _extract_parties, frozenset({"Legal"})),
    ExtractionRule("summary", _extract_summary),
)


class MetadataExtractor:
    """Runs the rule table over a document's text."""

    def __init__(self, rules=DEFAULT_RULES):
        self.rules = tuple(rules)

    def extract(self, text: str, category: Optional[str]) -> DocumentMetadata:
        """
        Args:
            text: Extracted document text (may be empty)
            category: Taxonomy category; selects rules and the metadata type

        Returns:
            Typed metadata with whatever the rules found
        """
        values = {}
        if text:
            for rule in self.rules:
                if rule.applies_to(category):
                    values.update(rule.extract(text))
        return metadata_for_category(category, values)


def merge_metadata(
    category: Optional[str],
    model_metadata: Optional[dict],
    heuristic: DocumentMetadata,
) -> DocumentMetadata:
    """Model-returned values win; heuristic values fill the gaps."""
    merged = metadata_for_category(category, model_metadata if isinstance(model_metadata, dict) else {})
    return merged.fill_missing(heuristic)
