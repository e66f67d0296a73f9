"""
Row validation rules.

Shared by the analyzer (first pass over the spreadsheet) and by inline edits
(every edit re-validates the whole record), so a row's errors and warnings
always describe its current proposed record.

Errors block approval of the row; warnings are informational only.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from models.proposed_record import parse_proposed_record
from exceptions import ValidationError
from utils.normalizers import (
    clean_text,
    is_blank,
    normalize_header,
    is_valid_email,
    normalize_debtor_type,
    parse_amount,
    parse_date,
)

# Headers of a bank column, checked against the bank chosen at upload
BANK_HEADERS = ("banque", "bank")

OPTIONAL_AMOUNT_FIELDS = ("amount_interest", "amount_penalties", "amount_fees")


@dataclass
class RowContext:
    """
    Facts from outside the row that its validation depends on.

    Attributes:
        earlier_contract_refs: contract_ref → row_number of its first
            occurrence among rows that come before this one
        bank_name: Name of the bank the import was uploaded for
        raw_bank_value: Bank cell of the source line, if the sheet had one
        default_currency: Currency cases are booked in
    """
    earlier_contract_refs: dict[str, int] = field(default_factory=dict)
    bank_name: Optional[str] = None
    raw_bank_value: Optional[str] = None
    default_currency: str = "MRU"


@dataclass
class RowValidation:
    """Findings for one row, in rule order."""
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)

    def error(self, field_name: str, message: str) -> None:
        self.errors.append({"field": field_name, "message": message})

    def warn(self, field_name: str, message: str) -> None:
        self.warnings.append({"field": field_name, "message": message})


def validate_proposed_record(record: dict[str, Any], context: Optional[RowContext] = None) -> RowValidation:
    """
    Validate one proposed record.

    Args:
        record: Proposed record as stored on the row
        context: Cross-row and import-level facts

    Returns:
        RowValidation with ordered errors and warnings
    """
    context = context or RowContext()
    result = RowValidation()

    # --- Required fields ---
    debtor_type = record.get("debtor_type")
    if is_blank(debtor_type):
        result.error("debtor_type", "Debtor type is required (PP or PM)")
    elif normalize_debtor_type(debtor_type) is None:
        result.error("debtor_type", f"Invalid debtor type: {debtor_type} (expected PP or PM)")

    if is_blank(record.get("debtor_name")):
        result.error("debtor_name", "Debtor name is required")

    if is_blank(record.get("phone_1")):
        result.error("phone_1", "Primary phone is required")

    if is_blank(record.get("contract_ref")):
        result.error("contract_ref", "Contract reference is required")

    default_date = record.get("default_date")
    if is_blank(default_date):
        result.error("default_date", "Default date is required")
    elif parse_date(default_date) is None:
        result.error("default_date", "Default date is invalid")

    principal = record.get("amount_principal")
    if is_blank(principal):
        result.error("amount_principal", "Principal amount is required")
    else:
        amount = parse_amount(principal)
        if amount is None:
            result.error("amount_principal", "Principal amount is not a number")
        elif amount < 0:
            result.error("amount_principal", "Principal amount is negative")

    # --- Field shapes ---
    normalized_type = normalize_debtor_type(debtor_type)
    if normalized_type:
        reported = {issue["field"] for issue in result.errors}
        try:
            parse_proposed_record({**record, "debtor_type": normalized_type})
        except ValidationError as e:
            for issue in e.details.get("errors", []):
                field_name = issue["field"].split(".")[-1]
                if field_name not in reported:
                    reported.add(field_name)
                    result.error(field_name, f"Invalid value: {issue['message']}")

    if context.bank_name and context.raw_bank_value:
        if context.raw_bank_value.strip().lower() != context.bank_name.strip().lower():
            result.error(
                "bank",
                f'Bank "{context.raw_bank_value}" does not match the selected bank "{context.bank_name}"'
            )

    # --- Optional amounts ---
    for field_name in OPTIONAL_AMOUNT_FIELDS:
        value = record.get(field_name)
        if is_blank(value):
            continue
        amount = parse_amount(value)
        if amount is None:
            result.warn(field_name, "Amount is not a number and will be booked as 0")
        elif amount < 0:
            result.warn(field_name, "Amount is negative")

    currency = clean_text(record.get("currency"))
    if currency and currency.upper() != context.default_currency:
        result.warn("currency", f'Currency "{currency}" differs from {context.default_currency}')

    email = record.get("email")
    if not is_blank(email) and not is_valid_email(email):
        result.warn("email", "Email format is invalid")

    if normalize_debtor_type(debtor_type) == "company" and is_blank(record.get("nif")):
        result.warn("nif", "NIF is recommended for a company debtor")

    contract_ref = clean_text(record.get("contract_ref"))
    if contract_ref and contract_ref in context.earlier_contract_refs:
        result.warn(
            "contract_ref",
            f"Probable duplicate of row {context.earlier_contract_refs[contract_ref]} (same contract reference)"
        )

    return result


def earlier_contract_refs(rows: list[dict], before_row_number: int) -> dict[str, int]:
    """
    First row number of each contract_ref among rows preceding a given row.

    Args:
        rows: Stored rows (row_number + proposed_record)
        before_row_number: Only rows strictly before this one count
    """
    seen: dict[str, int] = {}
    for row in sorted(rows, key=lambda r: r["row_number"]):
        if row["row_number"] >= before_row_number:
            break
        ref = clean_text((row.get("proposed_record") or {}).get("contract_ref"))
        if ref and ref not in seen:
            seen[ref] = row["row_number"]
    return seen


def extract_bank_value(raw_record: Optional[dict[str, Any]]) -> Optional[str]:
    """Bank cell of a stored raw record, if the source sheet had a bank column."""
    for header, value in (raw_record or {}).items():
        if normalize_header(header).rstrip("*").strip() in BANK_HEADERS:
            return clean_text(value)
    return None
