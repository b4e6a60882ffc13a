"""
Pattern Definitions for Case Document Intelligence

All regex patterns and prompt templates used by the chunker, metadata
extraction, search helpers and the classification pipeline.
Modules import from here instead of defining patterns inline.
"""

import re

# =============================================================================
# Chunk Boundaries
# =============================================================================

# Blank line(s) between paragraphs
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

# Whitespace following sentence-ending punctuation
SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")

WORD_BREAK = re.compile(r"\s+")

# Used when trimming an overlap window to a sentence start
SENTENCE_END = re.compile(r"[.!?]\s+")


# =============================================================================
# Page Markers
# =============================================================================

PAGE_MARKER_PATTERNS = [
    re.compile(r"Page\s+(\d+)", re.IGNORECASE),
    re.compile(r"- (\d+) -"),
    re.compile(r"\[Page (\d+)\]", re.IGNORECASE),
    re.compile(r"^(\d+)$", re.MULTILINE),
]

# Bare numbers outside this range are not page numbers (years, amounts)
MAX_PAGE_NUMBER = 10000


# =============================================================================
# Metadata Extraction
# =============================================================================

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
)

DATE_PATTERNS = {
    "us": re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b"),
    "iso": re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b"),
    "spelled": re.compile(
        r"\b(" + "|".join(MONTH_NAMES) + r")\s+(\d{1,2}),?\s+(\d{4})\b",
        re.IGNORECASE,
    ),
}

AMOUNT_PATTERN = re.compile(r"\$[\d,]+\.?\d*")

ACCOUNT_PATTERN = re.compile(r"(?:account|acct)[\s#:]*(\d{4,})", re.IGNORECASE)

PARTY_ROLES = r"(?:Petitioner|Respondent|Plaintiff|Defendant)"

PARTY_PATTERNS = [
    # "Jane Smith, Petitioner" / "Jane Smith (Respondent)"
    re.compile(r"(\w+\s+\w+)\s*(?:\(|,\s*)" + PARTY_ROLES, re.IGNORECASE),
    # "Petitioner: Jane Smith"
    re.compile(PARTY_ROLES + r"[:\s]+(\w+\s+\w+)", re.IGNORECASE),
]

SUMMARY_SENTENCE_SPLIT = re.compile(r"[.!?]+")
SUMMARY_MIN_LENGTH = 20
SUMMARY_MAX_LENGTH = 150


# =============================================================================
# Search
# =============================================================================

SEARCH_STOPWORDS = frozenset({"and", "or", "not", "the", "a"})

SEARCH_TERM_MIN_LENGTH = 3


# =============================================================================
# LLM Prompt Templates
# =============================================================================

LLM_PROMPTS = {
    "classification_system": (
        "You are a legal document classification assistant. "
        "Always respond with valid JSON."
    ),

    "classification_user": """You are a legal document classifier for family law cases. Analyze the following document and classify it.

DOCUMENT CATEGORIES AND SUBTYPES:
{categories}

{content_section}

Respond with a JSON object containing:
{{
  "category": "The main category from the list above",
  "subtype": "The specific subtype from that category",
  "confidence": 0.0-1.0 (how confident you are in this classification),
  "metadata": {{
    "startDate": "YYYY-MM-DD if applicable",
    "endDate": "YYYY-MM-DD if applicable",
    "parties": ["List of parties mentioned"],
    "amounts": [list of monetary amounts as numbers],
    "accountNumbers": ["last 4 digits only"],
    "summary": "Brief 1-2 sentence summary of the document"
  }}
}}

Only respond with valid JSON. Be conservative with confidence scores (use lower scores when classifying from filename only).""",

    "classification_text_section": "DOCUMENT TEXT:\n{excerpt}{truncated}",

    "classification_filename_section": (
        "FILENAME: {file_name}\n\n"
        "Note: Document text could not be extracted. "
        "Please classify based on the filename."
    ),

    "reclassification_hints": "\n\nREVIEWER HINTS:\n{hints}",
}
