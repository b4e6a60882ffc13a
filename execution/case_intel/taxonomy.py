"""
Document Taxonomy and Family-Law Checklist

Static tables shared by classification, review and gap detection:

- DOCUMENT_CATEGORIES: every category with its ordered list of subtypes
- FAMILY_LAW_DOCUMENT_CHECKLIST: required/optional document types per category
- RECURRING_DOCUMENT_TYPES: subtypes expected to cover a continuous date range
"""

from dataclasses import dataclass
from typing import Optional

from .errors import InvalidCategorySubtype


DOCUMENT_CATEGORIES: dict[str, list[str]] = {
    "Financial": [
        "Bank Statement",
        "Pay Stub",
        "Tax Return",
        "Investment Statement",
        "Credit Card Statement",
        "Loan Document",
        "Financial Affidavit",
    ],
    "Medical": [
        "Medical Records",
        "Medical Bills",
        "Insurance Claim",
        "Prescription Records",
        "Lab Results",
        "Doctor Notes",
    ],
    "Legal": [
        "Court Order",
        "Petition",
        "Motion",
        "Subpoena",
        "Affidavit",
        "Contract",
        "Agreement",
        "Judgment",
    ],
    "Communications": [
        "Email",
        "Text Messages",
        "Letter",
        "Social Media Posts",
    ],
    "Property": [
        "Deed",
        "Title",
        "Appraisal",
        "Property Tax Statement",
        "Mortgage Document",
    ],
    "Employment": [
        "Employment Contract",
        "W-2",
        "1099",
        "Performance Review",
        "Termination Letter",
    ],
    "Personal": [
        "ID Document",
        "Birth Certificate",
        "Marriage Certificate",
        "Divorce Decree",
        "Passport",
    ],
    "Other": [
        "Photograph",
        "Video",
        "Audio Recording",
        "Miscellaneous",
    ],
}

# Fallback pair used whenever a model answer cannot be mapped into the taxonomy
DEFAULT_CATEGORY = "Other"
DEFAULT_SUBTYPE = "Miscellaneous"


def valid_subtypes(category: str) -> list[str]:
    """Return the subtypes of a category, or an empty list for unknown ones."""
    return list(DOCUMENT_CATEGORIES.get(category, []))


def is_valid_category(category: Optional[str]) -> bool:
    return category in DOCUMENT_CATEGORIES


def is_valid_pair(category: Optional[str], subtype: Optional[str]) -> bool:
    return subtype in DOCUMENT_CATEGORIES.get(category, [])


def validate_category_subtype(category: str, subtype: str) -> None:
    """
    Raise InvalidCategorySubtype unless subtype belongs to category.

    Args:
        category: Taxonomy category name
        subtype: Subtype name, matched exactly
    """
    if not is_valid_pair(category, subtype):
        raise InvalidCategorySubtype(category, subtype)


def normalize_category_subtype(
    category: Optional[str],
    subtype: Optional[str],
) -> tuple[str, str]:
    """
    Map a (possibly sloppy) model answer onto a valid taxonomy pair.

    Exact matches pass through. Otherwise the category and subtype are matched
    case-insensitively; anything that still does not fit becomes
    Other / Miscellaneous.
    """
    if is_valid_pair(category, subtype):
        return category, subtype

    matched_category = None
    if isinstance(category, str):
        wanted = category.strip().lower()
        for name in DOCUMENT_CATEGORIES:
            if name.lower() == wanted:
                matched_category = name
                break

    if matched_category and isinstance(subtype, str):
        wanted = subtype.strip().lower()
        for name in DOCUMENT_CATEGORIES[matched_category]:
            if name.lower() == wanted:
                return matched_category, name

    return DEFAULT_CATEGORY, DEFAULT_SUBTYPE


# =============================================================================
# Family-law checklist
# =============================================================================

@dataclass(frozen=True)
class ChecklistItem:
    """One document type a family-law case is expected to contain."""
    type: str
    description: str
    years_needed: Optional[int] = None
    months_needed: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"type": self.type, "description": self.description}
        if self.years_needed is not None:
            data["years_needed"] = self.years_needed
        if self.months_needed is not None:
            data["months_needed"] = self.months_needed
        return data


@dataclass(frozen=True)
class ChecklistCategory:
    """Required and optional items for one taxonomy category."""
    required: tuple[ChecklistItem, ...] = ()
    optional: tuple[ChecklistItem, ...] = ()


FAMILY_LAW_DOCUMENT_CHECKLIST: dict[str, ChecklistCategory] = {
    "Financial": ChecklistCategory(
        required=(
            ChecklistItem("Tax Return", "Last 3 years of tax returns", years_needed=3),
            ChecklistItem("W-2", "Last 3 years of W-2 forms", years_needed=3),
            ChecklistItem("Bank Statement", "Last 12 months of bank statements", months_needed=12),
            ChecklistItem("Pay Stub", "Last 6 months of pay stubs", months_needed=6),
            ChecklistItem("Credit Card Statement", "Last 12 months of credit card statements", months_needed=12),
        ),
        optional=(
            ChecklistItem("Investment Statement", "Investment account statements"),
            ChecklistItem("Retirement Account", "401(k), IRA, pension statements"),
            ChecklistItem("Business Records", "If self-employed or business owner"),
            ChecklistItem("Loan Document", "Mortgage, auto, personal loan documents"),
        ),
    ),
    "Legal": ChecklistCategory(
        required=(
            ChecklistItem("Marriage Certificate", "Official marriage certificate"),
            ChecklistItem("Prenuptial Agreement", "If applicable"),
        ),
        optional=(
            ChecklistItem("Court Order", "Any existing court orders"),
            ChecklistItem("Divorce Decree", "If previously divorced"),
            ChecklistItem("Custody Agreement", "Existing custody arrangements"),
            ChecklistItem("Restraining Order", "If applicable"),
        ),
    ),
    "Property": ChecklistCategory(
        required=(
            ChecklistItem("Property Deed", "Deeds for all real estate"),
            ChecklistItem("Mortgage Statement", "Current mortgage statements"),
        ),
        optional=(
            ChecklistItem("Vehicle Title", "Titles for all vehicles"),
            ChecklistItem("Appraisal", "Property appraisals"),
            ChecklistItem("Insurance Policy", "Homeowners, auto insurance"),
        ),
    ),
    "Personal": ChecklistCategory(
        required=(
            ChecklistItem("Identification", "Driver's license or state ID"),
        ),
        optional=(
            ChecklistItem("Birth Certificate", "For all children"),
            ChecklistItem("Social Security Card", "For all parties"),
            ChecklistItem("Passport", "If applicable"),
        ),
    ),
    "Employment": ChecklistCategory(
        required=(
            ChecklistItem("Employment Contract", "Current employment agreement"),
        ),
        optional=(
            ChecklistItem("Benefits Statement", "Employee benefits summary"),
            ChecklistItem("Stock Options", "Stock option agreements"),
            ChecklistItem("Severance Agreement", "If applicable"),
        ),
    ),
    "Medical": ChecklistCategory(
        required=(),
        optional=(
            ChecklistItem("Medical Records", "If health issues are relevant"),
            ChecklistItem("Health Insurance", "Health insurance policy"),
            ChecklistItem("Medical Bills", "Outstanding medical expenses"),
        ),
    ),
}

# Subtypes that should form an unbroken monthly series
RECURRING_DOCUMENT_TYPES = ("Bank Statement", "Pay Stub", "Credit Card Statement")
