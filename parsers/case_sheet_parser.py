"""
Case spreadsheet parser.

Reads the bank's case template (sheet "Dossiers", or the first sheet) and
turns every non-empty line into a proposed record with validation findings.

The bank an import belongs to is chosen at upload time, never read from the
file. A "Banque" column is tolerated: it is ignored for mapping and only
checked for consistency with the selected bank.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Any, Optional, Union
import re
import structlog

import pandas as pd

from exceptions import AnalysisError
from services.row_validation import BANK_HEADERS, RowContext, validate_proposed_record
from utils.normalizers import (
    clean_text,
    normalize_debtor_type,
    normalize_header,
    normalize_phone,
    normalize_priority,
    normalize_treatment_type,
    parse_amount,
    parse_date,
)

logger = structlog.get_logger(__name__)

PREFERRED_SHEET = "dossiers"

# Normalized header → proposed record key. French template headers first,
# snake_case headers of the older technical template after.
COLUMN_ALIASES: dict[str, str] = {
    # Debtor identity
    "type debiteur (pp/pm)": "debtor_type",
    "type debiteur": "debtor_type",
    "type_debiteur": "debtor_type",
    "debtor_type": "debtor_type",
    "nom / raison sociale": "debtor_name",
    "nom/raison sociale": "debtor_name",
    "nom": "debtor_name",
    "nom_debiteur": "debtor_name",
    "raison_sociale": "debtor_name",
    "debtor_name": "debtor_name",
    "prenom (pp)": "debtor_first_name",
    "prenom": "debtor_first_name",
    "first_name": "debtor_first_name",
    "numero client": "id_number",
    "n° client": "id_number",
    "num client": "id_number",
    "numero identification": "id_number",
    "numero_client": "id_number",
    "id_number": "id_number",
    "type identifiant": "id_type",
    "type piece": "id_type",
    "type_identifiant": "id_type",
    "id_type": "id_type",
    "emploi": "occupation",
    "profession": "occupation",
    "occupation": "occupation",
    "employeur": "employer",
    "employer": "employer",

    # Company
    "rc (pm)": "rc_number",
    "rc": "rc_number",
    "registre_commerce": "rc_number",
    "rc_number": "rc_number",
    "nif (pm)": "nif",
    "nif": "nif",
    "representant legal (pm)": "legal_rep_name",
    "representant legal": "legal_rep_name",
    "representant_legal": "legal_rep_name",
    "legal_rep_name": "legal_rep_name",
    "fonction representant (pm)": "legal_rep_title",
    "fonction representant": "legal_rep_title",
    "telephone representant": "legal_rep_phone",
    "legal_rep_phone": "legal_rep_phone",
    "secteur d'activite": "sector_activity",
    "secteur dactivite": "sector_activity",
    "secteur_activite": "sector_activity",
    "sector_activity": "sector_activity",

    # Contact
    "telephone principal": "phone_1",
    "contact": "phone_1",
    "telephone": "phone_1",
    "telephone_1": "phone_1",
    "tel_1": "phone_1",
    "phone_1": "phone_1",
    "telephone secondaire": "phone_2",
    "telephone_2": "phone_2",
    "phone_2": "phone_2",
    "email": "email",
    "adresse": "address",
    "adresse geo": "address",
    "adresse geographique": "address",
    "ville": "city",
    "secteur": "sector",
    "region": "region",

    # Case
    "reference banque": "bank_reference",
    "reference_banque": "bank_reference",
    "ref_banque": "bank_reference",
    "bank_reference": "bank_reference",
    "type de produit": "product_type",
    "produit": "product_type",
    "product_type": "product_type",
    "date d'ouverture": "open_date",
    "date douverture": "open_date",
    "date d'affectation": "open_date",
    "date daffectation": "open_date",
    "open_date": "open_date",
    "date de defaut": "default_date",
    "date_defaut": "default_date",
    "default_date": "default_date",
    "ref. contrat": "contract_ref",
    "ref contrat": "contract_ref",
    "reference contrat": "contract_ref",
    "reference_contrat": "contract_ref",
    "ref_contrat": "contract_ref",
    "contract_ref": "contract_ref",
    "priorite": "priority",
    "priority": "priority",
    "type de traitement": "treatment_type",
    "treatment_type": "treatment_type",
    "agent assigne (email)": "agent_email",
    "agent assigne": "agent_email",
    "agent_email": "agent_email",
    "notes": "notes",

    # Amounts
    "montant principal": "amount_principal",
    "montant_principal": "amount_principal",
    "principal": "amount_principal",
    "amount_principal": "amount_principal",
    "interets / penalites": "amount_interest",
    "interets/penalites": "amount_interest",
    "montant_interets": "amount_interest",
    "interets": "amount_interest",
    "amount_interest": "amount_interest",
    "penalites de retard": "amount_penalties",
    "montant_penalites": "amount_penalties",
    "penalites": "amount_penalties",
    "amount_penalties": "amount_penalties",
    "frais": "amount_fees",
    "montant_frais": "amount_fees",
    "amount_fees": "amount_fees",
    "total du (auto)": "total_due",
    "total du": "total_due",
    "montant_total": "total_due",
    "total": "total_due",
    "total_due": "total_due",
    "solde restant (auto)": "remaining_balance",
    "solde restant": "remaining_balance",
    "remaining_balance": "remaining_balance",
    "devise": "currency",
    "currency": "currency",

    # Guarantee
    "type de garantie": "guarantee_type",
    "garantie": "guarantee_type",
    "guarantee_type": "guarantee_type",
    "description garantie": "guarantee_description",
    "guarantee_description": "guarantee_description",
}


REQUIRED_COLUMNS = ("debtor_type", "debtor_name", "contract_ref", "amount_principal")

DISPLAY_NAMES = {
    "debtor_type": "Type débiteur (PP/PM)",
    "debtor_name": "Nom / Raison sociale",
    "contract_ref": "Réf. contrat",
    "amount_principal": "Montant principal",
}

PHONE_FIELDS = ("phone_1", "phone_2", "legal_rep_phone")
DATE_FIELDS = ("open_date", "default_date")
COMPONENT_AMOUNT_FIELDS = ("amount_principal", "amount_interest", "amount_penalties", "amount_fees")
INDIVIDUAL_ONLY_FIELDS = ("debtor_first_name", "id_type", "id_number", "employer", "occupation")
COMPANY_ONLY_FIELDS = (
    "rc_number", "nif", "legal_rep_name", "legal_rep_title", "legal_rep_phone", "sector_activity"
)
TEXT_FIELDS = (
    "debtor_name", "debtor_first_name", "id_type", "id_number", "employer", "occupation",
    "rc_number", "nif", "legal_rep_name", "legal_rep_title", "sector_activity",
    "address", "city", "sector", "region", "bank_reference", "product_type",
    "contract_ref", "guarantee_type", "guarantee_description", "notes",
)


@dataclass
class ParsedRow:
    """One source line, ready to be stored as an import row."""
    row_number: int
    raw_record: dict[str, Any]
    proposed_record: dict[str, Any]
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0


@dataclass
class CaseSheetParseResult:
    """Result of parsing a case spreadsheet."""
    sheet_name: str
    rows: list[ParsedRow] = field(default_factory=list)
    has_bank_column: bool = False
    unmapped_columns: list[str] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    @property
    def error_rows(self) -> int:
        return sum(1 for r in self.rows if r.has_errors)

    @property
    def warning_rows(self) -> int:
        return sum(1 for r in self.rows if not r.has_errors and r.has_warnings)

    @property
    def valid_rows(self) -> int:
        return sum(1 for r in self.rows if not r.has_errors)


def parse_case_sheet(
    file: Union[str, Path, BytesIO, bytes],
    bank_name: Optional[str] = None,
    phone_country_code: str = "222",
    default_currency: str = "MRU",
) -> CaseSheetParseResult:
    """
    Parse a case spreadsheet into proposed import rows.

    Args:
        file: File path, file-like object or raw bytes
        bank_name: Name of the bank selected for the import, used to check a
            "Banque" column if the sheet has one
        phone_country_code: Calling code for local phone numbers
        default_currency: Currency cases are booked in

    Returns:
        CaseSheetParseResult with one ParsedRow per non-empty line

    Raises:
        AnalysisError: If the file cannot be read, the sheet is empty or
            required columns are missing
    """
    if isinstance(file, bytes):
        file = BytesIO(file)

    logger.info("parsing_case_sheet", file_type=type(file).__name__)

    try:
        excel = pd.ExcelFile(file, engine="openpyxl")
    except Exception as e:
        logger.error("case_sheet_read_failed", error=str(e))
        raise AnalysisError(
            message="Failed to read spreadsheet",
            details={"original_error": str(e)}
        )

    sheet_name = _pick_sheet(excel.sheet_names)

    try:
        df = excel.parse(sheet_name)
    except Exception as e:
        raise AnalysisError(
            message=f"Failed to read sheet {sheet_name}",
            details={"original_error": str(e)}
        )

    df = df.dropna(how="all")
    if df.empty:
        raise AnalysisError(message="Sheet is empty", details={"sheet": sheet_name})

    column_map, bank_column, unmapped = _map_columns(list(df.columns))

    missing = [key for key in REQUIRED_COLUMNS if key not in column_map.values()]
    if missing:
        raise AnalysisError(
            message=f"Missing required columns: {', '.join(DISPLAY_NAMES[m] for m in missing)}",
            details={"missing": missing, "sheet": sheet_name}
        )

    result = CaseSheetParseResult(
        sheet_name=sheet_name,
        has_bank_column=bank_column is not None,
        unmapped_columns=unmapped,
    )

    contract_refs: dict[str, int] = {}

    for index, cells in enumerate(df.to_dict(orient="records")):
        row_number = index + 1
        raw_record = {str(k): _json_safe(v) for k, v in cells.items()}

        mapped = {
            key: None if _is_missing(cells[header]) else cells[header]
            for header, key in column_map.items()
        }
        proposed = normalize_row(mapped, phone_country_code, default_currency)

        context = RowContext(
            earlier_contract_refs=dict(contract_refs),
            bank_name=bank_name,
            raw_bank_value=_bank_cell(cells, bank_column),
            default_currency=default_currency,
        )
        validation = validate_proposed_record(proposed, context)

        ref = proposed.get("contract_ref")
        if ref and ref not in contract_refs:
            contract_refs[ref] = row_number

        result.rows.append(ParsedRow(
            row_number=row_number,
            raw_record=raw_record,
            proposed_record=proposed,
            errors=validation.errors,
            warnings=validation.warnings,
        ))

    logger.info(
        "case_sheet_parsed",
        sheet=sheet_name,
        total_rows=result.total_rows,
        valid_rows=result.valid_rows,
        warning_rows=result.warning_rows,
        error_rows=result.error_rows,
        has_bank_column=result.has_bank_column,
    )

    return result


def normalize_row(
    mapped: dict[str, Any],
    phone_country_code: str = "222",
    default_currency: str = "MRU",
) -> dict[str, Any]:
    """
    Normalize mapped cells into a proposed record.

    Values that cannot be normalized (an unknown debtor type, a date or an
    amount that does not parse) are kept as typed so validation can point at
    them and a reviewer can correct them.
    """
    record: dict[str, Any] = {}

    raw_type = mapped.get("debtor_type")
    record["debtor_type"] = normalize_debtor_type(raw_type) or clean_text(raw_type)

    for key in TEXT_FIELDS:
        record[key] = clean_text(mapped.get(key))

    for key in PHONE_FIELDS:
        record[key] = normalize_phone(mapped.get(key), phone_country_code)

    email = clean_text(mapped.get("email"))
    record["email"] = email.lower() if email else None
    agent_email = clean_text(mapped.get("agent_email"))
    record["agent_email"] = agent_email.lower() if agent_email else None

    for key in DATE_FIELDS:
        value = mapped.get(key)
        record[key] = parse_date(value) or clean_text(value)

    components = Decimal("0")
    for key in COMPONENT_AMOUNT_FIELDS:
        value = mapped.get(key)
        amount = parse_amount(value)
        if amount is not None:
            components += amount
            record[key] = float(amount)
        else:
            record[key] = clean_text(value)

    provided_total = parse_amount(mapped.get("total_due"))
    total_due = provided_total if provided_total is not None and provided_total > 0 else components
    record["total_due"] = float(total_due)

    provided_balance = parse_amount(mapped.get("remaining_balance"))
    record["remaining_balance"] = float(
        provided_balance if provided_balance is not None and provided_balance >= 0 else total_due
    )

    currency = clean_text(mapped.get("currency"))
    record["currency"] = currency.upper() if currency else default_currency

    record["priority"] = normalize_priority(mapped.get("priority"))
    record["treatment_type"] = normalize_treatment_type(mapped.get("treatment_type"))

    # Drop the other variant's fields once the discriminant is known
    if record["debtor_type"] == "individual":
        for key in COMPANY_ONLY_FIELDS:
            record.pop(key, None)
    elif record["debtor_type"] == "company":
        for key in INDIVIDUAL_ONLY_FIELDS:
            record.pop(key, None)

    return record


# ===================
# HELPER FUNCTIONS
# ===================

def _pick_sheet(sheet_names: list[str]) -> str:
    for name in sheet_names:
        if re.sub(r"\s", "", str(name)).lower() == PREFERRED_SHEET:
            return name
    return sheet_names[0]


def _map_columns(headers: list[Any]) -> tuple[dict[Any, str], Optional[Any], list[str]]:
    """
    Resolve source headers to record keys.

    Returns:
        (header → key map, bank header or None, headers left unmapped)
    """
    column_map: dict[Any, str] = {}
    bank_column = None
    unmapped: list[str] = []

    for header in headers:
        key = _header_key(header)
        if key in BANK_HEADERS:
            bank_column = header
            continue

        internal = COLUMN_ALIASES.get(key)
        if internal is None:
            snake = re.sub(r"[^a-z0-9_]", "", key.replace(" ", "_"))
            internal = COLUMN_ALIASES.get(snake)

        # First header wins when two map to the same key
        if internal and internal not in column_map.values():
            column_map[header] = internal
        elif not internal:
            unmapped.append(str(header))

    return column_map, bank_column, unmapped


def _bank_cell(cells: dict, bank_column: Optional[Any]) -> Optional[str]:
    if bank_column is None:
        return None
    value = cells.get(bank_column)
    return None if _is_missing(value) else clean_text(value)


def _header_key(header: Any) -> str:
    """Normalized header with the template's required-field star removed."""
    return normalize_header(header).rstrip("*").strip()


def _is_missing(value: Any) -> bool:
    """True for NaN/NaT cells and blank strings."""
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _json_safe(value: Any) -> Any:
    """Convert a pandas cell to a JSON-serializable value."""
    if _is_missing(value):
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "item"):
        return value.item()
    return value
