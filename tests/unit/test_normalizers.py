"""
Unit tests for spreadsheet cell normalizers.

Run: pytest tests/unit/test_normalizers.py -v
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from utils.normalizers import (
    clean_text,
    is_blank,
    is_valid_email,
    normalize_debtor_type,
    normalize_header,
    normalize_phone,
    normalize_priority,
    normalize_treatment_type,
    parse_amount,
    parse_date,
)


class TestNormalizeHeader:
    """Tests for normalize_header()"""

    def test_strips_accents_and_case(self):
        assert normalize_header("  Type Débiteur (PP/PM) ") == "type debiteur (pp/pm)"

    def test_collapses_inner_whitespace(self):
        assert normalize_header("Date   de\tdéfaut") == "date de defaut"


class TestCleanText:
    """Tests for clean_text() and is_blank()"""

    def test_blank_values(self):
        assert is_blank(None)
        assert is_blank("   ")
        assert is_blank(float("nan"))
        assert not is_blank(0)

    def test_integer_float_loses_decimal(self):
        """Excel turns 1234 into 1234.0; the text keeps 1234."""
        assert clean_text(1234.0) == "1234"

    def test_blank_becomes_none(self):
        assert clean_text("  ") is None


class TestParseAmount:
    """Tests for parse_amount()"""

    @pytest.mark.parametrize("value,expected", [
        (150000, Decimal("150000")),
        ("1 250 000", Decimal("1250000")),
        ("1250,50", Decimal("1250.50")),
        ("12 500 MRU", Decimal("12500")),
        ("-300", Decimal("-300")),
    ])
    def test_parses_numbers_and_text(self, value, expected):
        assert parse_amount(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", True])
    def test_rejects_non_amounts(self, value):
        assert parse_amount(value) is None


class TestParseDate:
    """Tests for parse_date()"""

    def test_day_first_text(self):
        assert parse_date("15/03/2024") == "2024-03-15"
        assert parse_date("15-03-2024") == "2024-03-15"
        assert parse_date("15.03.2024") == "2024-03-15"

    def test_iso_text(self):
        assert parse_date("2024-03-15") == "2024-03-15"

    def test_datetime_objects(self):
        assert parse_date(datetime(2024, 3, 15, 10, 30)) == "2024-03-15"
        assert parse_date(date(2024, 3, 15)) == "2024-03-15"

    def test_excel_serial(self):
        """Serial 45366 is 2024-03-15 in the 1900 date system."""
        assert parse_date(45366) == "2024-03-15"

    def test_impossible_date(self):
        assert parse_date("31/02/2024") is None

    def test_garbage(self):
        assert parse_date("next monday") is None


class TestNormalizePhone:
    """Tests for normalize_phone()"""

    def test_local_number_gets_country_code(self):
        assert normalize_phone("22 33 44 55") == "+22222334455"

    def test_double_zero_prefix(self):
        assert normalize_phone("0022222334455") == "+22222334455"

    def test_bare_country_prefix(self):
        assert normalize_phone("22222334455") == "+22222334455"

    def test_numeric_cell(self):
        assert normalize_phone(22334455.0) == "+22222334455"

    def test_foreign_number_is_kept(self):
        assert normalize_phone("+33 6 12 34 56 78") == "+33612345678"

    def test_blank(self):
        assert normalize_phone(None) is None


class TestVocabularies:
    """Tests for debtor type, priority and treatment aliases."""

    @pytest.mark.parametrize("value,expected", [
        ("PP", "individual"),
        ("Personne physique", "individual"),
        ("pm", "company"),
        ("Société", "company"),
        ("XYZ", None),
        (None, None),
    ])
    def test_debtor_type(self, value, expected):
        assert normalize_debtor_type(value) == expected

    def test_priority_defaults_to_medium(self):
        assert normalize_priority("Haute") == "high"
        assert normalize_priority(None) == "medium"
        assert normalize_priority("whatever") == "medium"

    def test_treatment_type(self):
        assert normalize_treatment_type("Judiciaire") == "legal"
        assert normalize_treatment_type("Pré-contentieux") == "pre_legal"
        assert normalize_treatment_type(None) == "amicable"

    def test_email(self):
        assert is_valid_email("agent@recouvrement.mr")
        assert not is_valid_email("agent@")
        assert not is_valid_email(None)
