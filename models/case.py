"""
Case and debtor schemas as read back after finalize.
"""

from pydantic import Field
from typing import Optional
from datetime import datetime, date
from decimal import Decimal

from models.base import BaseSchema


class CaseResponse(BaseSchema):
    """Case created from an import row."""

    id: str
    reference: str
    bank_id: str
    bank_reference: Optional[str] = None
    debtor_pp_id: Optional[str] = None
    debtor_pm_id: Optional[str] = None
    assigned_agent_id: Optional[str] = None
    status: str = "new"
    phase: str = "amicable"
    priority: Optional[str] = None
    product_type: Optional[str] = None
    contract_reference: Optional[str] = None
    default_date: Optional[date] = None

    amount_principal: Decimal = Decimal("0")
    amount_interest: Decimal = Decimal("0")
    amount_penalties: Decimal = Decimal("0")
    amount_fees: Decimal = Decimal("0")

    created_at: Optional[datetime] = None

    @property
    def total_due(self) -> Decimal:
        return self.amount_principal + self.amount_interest + self.amount_penalties + self.amount_fees


class ImportCasesResponse(BaseSchema):
    """Cases traced back to one import through provenance records."""

    import_id: str
    data: list[CaseResponse] = Field(default_factory=list)
    total: int = 0
