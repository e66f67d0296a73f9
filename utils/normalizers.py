"""
Cell normalizers for case spreadsheets.

Spreadsheets arrive from banks in French, with accents, local phone numbers,
day-first dates and amounts typed with spaces and decimal commas. These helpers
turn individual cells into the values stored in a proposed record.
"""

import math
import re
import unicodedata
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

# Excel serial day 0 (1900 date system, including the 1900 leap-year bug)
EXCEL_EPOCH = date(1899, 12, 30)

_DMY_PATTERN = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")
_ISO_PATTERN = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

DEBTOR_TYPE_ALIASES = {
    "individual": ("pp", "personne physique", "physique", "individu", "particulier", "individual"),
    "company": ("pm", "personne morale", "morale", "entreprise", "societe", "company"),
}

PRIORITY_ALIASES = {
    "low": ("low", "basse", "faible"),
    "medium": ("medium", "moyenne", "moyen", "normal", "normale"),
    "high": ("high", "haute", "elevee"),
    "urgent": ("urgent", "urgente", "critique"),
}

TREATMENT_ALIASES = {
    "amicable": ("amicable", "amiable", "a l'amiable"),
    "pre_legal": ("pre_legal", "pre-legal", "pre-contentieux", "precontentieux"),
    "legal": ("legal", "judiciaire", "contentieux"),
}


def is_blank(value: Any) -> bool:
    """True for None, empty/whitespace strings and NaN cells."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def strip_accents(text: str) -> str:
    """
    Remove accent marks, keeping base characters.

    "Débiteur" → "Debiteur"
    """
    normalized = unicodedata.normalize("NFD", text)
    return "".join(c for c in normalized if unicodedata.category(c) != "Mn")


def normalize_header(col: Any) -> str:
    """
    Normalize a column header for alias lookup.

    "  Type Débiteur (PP/PM)* " → "type debiteur (pp/pm)*"
    """
    text = strip_accents(str(col)).lower().strip()
    return re.sub(r"\s+", " ", text)


def clean_text(value: Any, max_length: int = 500) -> Optional[str]:
    """Cell as stripped text, or None when blank."""
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text[:max_length] if text else None


def parse_amount(value: Any) -> Optional[Decimal]:
    """
    Parse an amount cell.

    Accepts numbers and text such as "1 250 000", "1250,50" or "12 500 MRU".

    Returns:
        Decimal amount, or None if blank or not a number
    """
    if is_blank(value):
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))

    text = re.sub(r"\s", "", str(value)).replace(",", ".")
    text = re.sub(r"[^\d.\-]", "", text)
    if not text:
        return None
    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def parse_date(value: Any) -> Optional[str]:
    """
    Parse a date cell to an ISO string (YYYY-MM-DD).

    Handles datetime objects, Excel serial numbers, day-first text
    (31/12/2024, 31-12-2024, 31.12.2024) and ISO text.
    """
    if is_blank(value):
        return None

    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return (EXCEL_EPOCH + timedelta(days=int(value))).isoformat()
        except OverflowError:
            return None

    text = str(value).strip()

    match = _DMY_PATTERN.match(text)
    if match:
        day, month, year = (int(g) for g in match.groups())
        return _safe_iso(year, month, day)

    match = _ISO_PATTERN.match(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _safe_iso(year, month, day)

    return None


def _safe_iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_phone(value: Any, country_code: str = "222") -> Optional[str]:
    """
    Normalize a phone number to international form.

    With country code 222:
        "22 33 44 55"    → "+22222334455"
        "0022222334455"  → "+22222334455"
        "22222334455"    → "+22222334455"

    Numbers that do not look local are returned stripped of separators.
    """
    text = clean_text(value)
    if text is None:
        return None

    digits = re.sub(r"[\s\-().]", "", text)
    local_length = 8

    if digits.startswith("00" + country_code):
        digits = "+" + digits[2:]
    if re.fullmatch(rf"\d{{{local_length}}}", digits):
        digits = f"+{country_code}{digits}"
    if digits.startswith(country_code) and len(digits) == len(country_code) + local_length:
        digits = "+" + digits

    return digits or None


def _match_alias(value: Any, aliases: dict[str, tuple[str, ...]]) -> Optional[str]:
    text = clean_text(value)
    if text is None:
        return None
    key = strip_accents(text).lower().strip()
    for canonical, options in aliases.items():
        if key in options:
            return canonical
    return None


def normalize_debtor_type(value: Any) -> Optional[str]:
    """
    Map PP/PM vocabulary to the record discriminant.

    Returns:
        "individual", "company", or None if unrecognized
    """
    return _match_alias(value, DEBTOR_TYPE_ALIASES)


def normalize_priority(value: Any) -> str:
    """Case priority, defaulting to medium."""
    return _match_alias(value, PRIORITY_ALIASES) or "medium"


def normalize_treatment_type(value: Any) -> str:
    """Recovery treatment, defaulting to amicable."""
    return _match_alias(value, TREATMENT_ALIASES) or "amicable"


def is_valid_email(value: Any) -> bool:
    text = clean_text(value)
    return bool(text and _EMAIL_PATTERN.match(text))
