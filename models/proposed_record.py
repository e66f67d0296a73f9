"""
Proposed record carried by each import row.

A row proposes one debtor plus one case. The debtor half is a tagged union
on `debtor_type`: individual debtors (PP) carry identity and employment
fields, company debtors (PM) carry registry and legal-representative fields.
Amounts stay as whatever the spreadsheet or the reviewer typed (number or
free text) until validation and finalize coerce them.
"""

from typing import Annotated, Literal, Optional, Union
from enum import Enum

from pydantic import ConfigDict, Field, TypeAdapter, ValidationError as PydanticValidationError

from models.base import BaseSchema
from exceptions import ValidationError


class DebtorType(str, Enum):
    """Debtor variant a row resolves to."""
    INDIVIDUAL = "individual"  # Personne physique (PP)
    COMPANY = "company"        # Personne morale (PM)


AmountValue = Optional[Union[int, float, str]]


class _ProposedRecordBase(BaseSchema):
    """Case and contact attributes shared by both debtor variants."""

    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="ignore",
    )

    # Case
    bank_reference: Optional[str] = None
    contract_ref: Optional[str] = None
    product_type: Optional[str] = None
    open_date: Optional[str] = None
    default_date: Optional[str] = None
    priority: Optional[str] = "medium"
    treatment_type: Optional[str] = "amicable"
    agent_email: Optional[str] = None
    notes: Optional[str] = None

    # Debt
    amount_principal: AmountValue = None
    amount_interest: AmountValue = None
    amount_penalties: AmountValue = None
    amount_fees: AmountValue = None
    total_due: AmountValue = None
    remaining_balance: AmountValue = None
    currency: Optional[str] = None

    # Guarantee
    guarantee_type: Optional[str] = None
    guarantee_description: Optional[str] = None

    # Debtor contact
    debtor_name: Optional[str] = None
    phone_1: Optional[str] = None
    phone_2: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    sector: Optional[str] = None
    region: Optional[str] = None


class IndividualRecord(_ProposedRecordBase):
    """Row proposing an individual (PP) debtor."""

    debtor_type: Literal["individual"] = "individual"
    debtor_first_name: Optional[str] = None
    id_type: Optional[str] = None
    id_number: Optional[str] = None
    employer: Optional[str] = None
    occupation: Optional[str] = None


class CompanyRecord(_ProposedRecordBase):
    """Row proposing a company (PM) debtor."""

    debtor_type: Literal["company"] = "company"
    rc_number: Optional[str] = None
    nif: Optional[str] = None
    legal_rep_name: Optional[str] = None
    legal_rep_title: Optional[str] = None
    legal_rep_phone: Optional[str] = None
    sector_activity: Optional[str] = None


ProposedRecord = Annotated[
    Union[IndividualRecord, CompanyRecord],
    Field(discriminator="debtor_type"),
]

_proposed_record_adapter = TypeAdapter(ProposedRecord)

AMOUNT_FIELDS = (
    "amount_principal",
    "amount_interest",
    "amount_penalties",
    "amount_fees",
    "total_due",
    "remaining_balance",
)

# Every key a reviewer may edit, across both variants
EDITABLE_FIELDS = frozenset(
    set(IndividualRecord.model_fields) | set(CompanyRecord.model_fields)
)


def parse_proposed_record(data: dict) -> Union[IndividualRecord, CompanyRecord]:
    """
    Validate a stored proposed record against the declared schema.

    Raises:
        ValidationError: If the discriminant is missing/unknown or a field has
            the wrong shape
    """
    try:
        return _proposed_record_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(
            message="Proposed record does not match the import row schema",
            code="INVALID_PROPOSED_RECORD",
            details={"errors": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]}
        ) from e
