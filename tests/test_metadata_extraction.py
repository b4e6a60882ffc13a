"""
Tests for execution/case_intel/metadata_extraction.py and taxonomy.py

Covers: date discovery and parsing, per-category extraction rules, typed
        metadata round-trips, merging model output with heuristics, and the
        taxonomy validation helpers.
"""

from datetime import date, datetime

import pytest


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

class TestFindDates:
    """Tests for find_dates."""

    def test_all_formats_in_text_order(self):
        from execution.case_intel.metadata_extraction import find_dates

        text = "Paid on 01/15/2024, again March 3, 2024, and posted 2024-02-01."
        assert find_dates(text) == ["2024-01-15", "2024-03-03", "2024-02-01"]

    def test_spelled_month_case_insensitive(self):
        from execution.case_intel.metadata_extraction import find_dates

        assert find_dates("signed DECEMBER 31 2023") == ["2023-12-31"]

    def test_impossible_dates_skipped(self):
        from execution.case_intel.metadata_extraction import find_dates

        assert find_dates("13/45/2024 and 2024-02-30") == []

    def test_no_dates(self):
        from execution.case_intel.metadata_extraction import find_dates

        assert find_dates("nothing to see") == []


class TestParseDate:
    """Tests for parse_date."""

    @pytest.mark.parametrize("value, expected", [
        ("2024-03-01", date(2024, 3, 1)),
        ("2024-03-01T10:30:00", date(2024, 3, 1)),
        ("03/01/2024", date(2024, 3, 1)),
        ("January 5, 2024", date(2024, 1, 5)),
        (date(2023, 7, 4), date(2023, 7, 4)),
        (datetime(2023, 7, 4, 9, 0), date(2023, 7, 4)),
    ])
    def test_supported_inputs(self, value, expected):
        from execution.case_intel.metadata_extraction import parse_date

        assert parse_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "   ", "garbage", 42])
    def test_unparseable_returns_none(self, value):
        from execution.case_intel.metadata_extraction import parse_date

        assert parse_date(value) is None


# ---------------------------------------------------------------------------
# Extraction rules
# ---------------------------------------------------------------------------

class TestMetadataExtractor:
    """Tests for MetadataExtractor.extract."""

    def test_financial_document(self, bank_statement_text):
        from execution.case_intel.metadata_extraction import FinancialMetadata, MetadataExtractor

        metadata = MetadataExtractor().extract(bank_statement_text, "Financial")

        assert isinstance(metadata, FinancialMetadata)
        assert metadata.start_date == "2024-01-01"
        assert metadata.end_date == "2024-01-31"
        assert metadata.account_numbers == ["****6789"]
        assert 4250.0 in metadata.amounts
        assert 3980.15 in metadata.amounts
        assert 1850.0 in metadata.amounts

    def test_legal_document_has_parties_not_amounts(self, petition_text):
        from execution.case_intel.metadata_extraction import LegalMetadata, MetadataExtractor

        metadata = MetadataExtractor().extract(petition_text, "Legal")

        assert isinstance(metadata, LegalMetadata)
        assert "Jane Smith" in metadata.parties
        assert "John Smith" in metadata.parties
        assert not hasattr(metadata, "amounts")
        assert metadata.start_date == "2024-03-03"

    def test_amounts_only_for_financial(self, bank_statement_text):
        from execution.case_intel.metadata_extraction import MetadataExtractor

        metadata = MetadataExtractor().extract(bank_statement_text, "Medical")
        assert type(metadata).__name__ == "DocumentMetadata"
        assert "amounts" not in metadata.to_dict()

    def test_account_numbers_masked_and_deduplicated(self):
        from execution.case_intel.metadata_extraction import MetadataExtractor

        text = "Acct: 987654321 and account 987654321, transfer to account #11112222."
        metadata = MetadataExtractor().extract(text, "Financial")
        assert metadata.account_numbers == ["****4321", "****2222"]

    def test_single_date_sets_start_only(self):
        from execution.case_intel.metadata_extraction import MetadataExtractor

        metadata = MetadataExtractor().extract("Order entered on 2024-05-06 by the court.", "Legal")
        assert metadata.start_date == "2024-05-06"
        assert metadata.end_date is None

    def test_summary_first_long_sentence(self):
        from execution.case_intel.metadata_extraction import MetadataExtractor

        text = "Short one. This sentence is comfortably longer than twenty characters. Another."
        metadata = MetadataExtractor().extract(text, None)
        assert metadata.summary == "This sentence is comfortably longer than twenty characters"

    def test_summary_truncated(self):
        from execution.case_intel.metadata_extraction import MetadataExtractor

        text = "word " * 100
        summary = MetadataExtractor().extract(text, None).summary
        assert summary.endswith("...")
        assert len(summary) == 153

    def test_empty_text(self):
        from execution.case_intel.metadata_extraction import MetadataExtractor

        metadata = MetadataExtractor().extract("", "Financial")
        assert metadata.amounts == []
        assert metadata.summary is None

    def test_custom_rule_table(self):
        from execution.case_intel.metadata_extraction import ExtractionRule, MetadataExtractor

        rule = ExtractionRule("case_number", lambda text: {"case_number": "FL-2024-001"})
        metadata = MetadataExtractor(rules=[rule]).extract("anything", None)
        assert metadata.extra == {"case_number": "FL-2024-001"}


# ---------------------------------------------------------------------------
# Typed metadata
# ---------------------------------------------------------------------------

class TestTypedMetadata:
    """Tests for DocumentMetadata subclasses and merging."""

    def test_kind_in_dict(self):
        from execution.case_intel.metadata_extraction import (
            DocumentMetadata, FinancialMetadata, LegalMetadata,
        )

        assert DocumentMetadata().to_dict()["kind"] == "generic"
        assert FinancialMetadata().to_dict()["kind"] == "financial"
        assert LegalMetadata().to_dict()["kind"] == "legal"

    def test_unknown_keys_go_to_extra(self):
        from execution.case_intel.metadata_extraction import DocumentMetadata

        metadata = DocumentMetadata.from_dict({"summary": "s", "pages": 3, "kind": "generic"})
        assert metadata.summary == "s"
        assert metadata.extra == {"pages": 3}

    def test_non_mapping_extra_kept_as_value(self):
        from execution.case_intel.metadata_extraction import DocumentMetadata, merge_metadata

        merged = merge_metadata("Other", {"extra": "note"}, DocumentMetadata())
        assert merged.extra == {"extra": "note"}
        assert DocumentMetadata.from_dict({"extra": None}).extra == {}
        assert DocumentMetadata.from_dict({"extra": {"pages": 2}}).extra == {"pages": 2}

    def test_extra_flattened_in_dict(self):
        from execution.case_intel.metadata_extraction import DocumentMetadata

        data = DocumentMetadata(summary="s", extra={"pages": 3}).to_dict()
        assert data["pages"] == 3
        assert "extra" not in data

    def test_camel_case_aliases(self):
        from execution.case_intel.metadata_extraction import metadata_for_category

        metadata = metadata_for_category(
            "Financial",
            {"startDate": "2024-01-01", "endDate": "2024-01-31", "accountNumbers": ["1234"]},
        )
        assert metadata.start_date == "2024-01-01"
        assert metadata.end_date == "2024-01-31"
        assert metadata.account_numbers == ["1234"]

    def test_metadata_for_unknown_category_is_generic(self):
        from execution.case_intel.metadata_extraction import DocumentMetadata, metadata_for_category

        assert type(metadata_for_category("Other", {})) is DocumentMetadata
        assert type(metadata_for_category(None)) is DocumentMetadata

    def test_merge_prefers_model_values(self):
        from execution.case_intel.metadata_extraction import FinancialMetadata, merge_metadata

        heuristic = FinancialMetadata(
            start_date="2024-01-01", end_date="2024-01-31", amounts=[1.0], extra={"pages": 2},
        )
        merged = merge_metadata(
            "Financial",
            {"startDate": "2024-02-01", "amounts": [10.0], "bank": "First National"},
            heuristic,
        )
        assert merged.start_date == "2024-02-01"
        assert merged.end_date == "2024-01-31"
        assert merged.amounts == [10.0]
        assert merged.extra == {"bank": "First National", "pages": 2}

    def test_merge_with_non_dict_model_metadata(self):
        from execution.case_intel.metadata_extraction import FinancialMetadata, merge_metadata

        merged = merge_metadata("Financial", None, FinancialMetadata(amounts=[5.0]))
        assert merged.amounts == [5.0]

        merged = merge_metadata("Financial", ["not", "a", "dict"], FinancialMetadata(amounts=[5.0]))
        assert merged.amounts == [5.0]


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------

class TestTaxonomy:
    """Tests for taxonomy validation and normalization."""

    def test_valid_pair(self):
        from execution.case_intel.taxonomy import is_valid_pair

        assert is_valid_pair("Financial", "Bank Statement")
        assert not is_valid_pair("Financial", "Court Order")
        assert not is_valid_pair("Unknown", "Bank Statement")

    def test_validate_raises_for_invalid_pair(self):
        from execution.case_intel.errors import InvalidCategorySubtype
        from execution.case_intel.taxonomy import validate_category_subtype

        with pytest.raises(InvalidCategorySubtype) as exc:
            validate_category_subtype("Financial", "Court Order")
        assert exc.value.category == "Financial"
        assert exc.value.subtype == "Court Order"
        assert isinstance(exc.value, ValueError)

    def test_normalize_case_insensitive(self):
        from execution.case_intel.taxonomy import normalize_category_subtype

        assert normalize_category_subtype(" financial ", "bank statement") == (
            "Financial", "Bank Statement",
        )

    @pytest.mark.parametrize("category, subtype", [
        ("Finance", "Bank Statement"),
        ("Financial", "Court Order"),
        (None, None),
        (42, "Pay Stub"),
    ])
    def test_normalize_falls_back_to_other(self, category, subtype):
        from execution.case_intel.taxonomy import normalize_category_subtype

        assert normalize_category_subtype(category, subtype) == ("Other", "Miscellaneous")

    def test_valid_subtypes_copy(self):
        from execution.case_intel.taxonomy import DOCUMENT_CATEGORIES, valid_subtypes

        subtypes = valid_subtypes("Legal")
        subtypes.append("Bogus")
        assert "Bogus" not in DOCUMENT_CATEGORIES["Legal"]
        assert valid_subtypes("Nope") == []

    def test_checklist_required_counts(self):
        from execution.case_intel.taxonomy import FAMILY_LAW_DOCUMENT_CHECKLIST

        counts = {cat: len(items.required) for cat, items in FAMILY_LAW_DOCUMENT_CHECKLIST.items()}
        assert counts == {
            "Financial": 5, "Legal": 2, "Property": 2,
            "Personal": 1, "Employment": 1, "Medical": 0,
        }
