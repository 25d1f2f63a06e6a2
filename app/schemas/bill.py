"""Bill schemas."""
from dataclasses import asdict
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.bill import BillStatus
from app.services.payment_terms import refresh_statuses, schedule_from_json
from app.utils.time import utctoday


class BillCreate(BaseModel):
    mda_id: int
    invoice_number: str = Field(..., max_length=100)
    invoice_date: date
    due_date: date | None = None
    amount: Decimal
    currency: str | None = Field(default=None, pattern="^[A-Za-z]{3}$")
    description: str | None = None
    contract_reference: str | None = Field(default=None, max_length=100)


class TransitionNote(BaseModel):
    note: str | None = None


class OfferCreate(BaseModel):
    offer_amount: Decimal
    discount_rate: Decimal = Decimal("0")


class RejectionPayload(BaseModel):
    reason: str = ""


class ApprovalPayload(BaseModel):
    payment_quarters: int
    start_quarter: str
    annual_rate: Decimal = Decimal("0")
    notes: str | None = None


class CertificationPayload(BaseModel):
    certificate_number: str


class AmendTermsPayload(BaseModel):
    """Treasury revision of the quarterly schedule."""

    payment_quarters: int
    start_quarter: str
    annual_rate: Decimal = Decimal("0")
    rate_overrides: dict[int, Decimal] | None = None
    note: str | None = None


class PaymentTermsPreview(BaseModel):
    principal: Decimal
    payment_quarters: int
    start_quarter: str
    annual_rate: Decimal = Decimal("0")
    rate_overrides: dict[int, Decimal] | None = None
    paid_quarters: int = 0
    as_of: date | None = None


class StatusEventRead(BaseModel):
    seq: int
    status: BillStatus
    note: str | None = None
    actor_user_id: int | None = None
    timestamp: datetime = Field(validation_alias="at")

    model_config = ConfigDict(from_attributes=True)


class ScheduleEntryRead(BaseModel):
    index: int
    quarter_label: str
    amount: Decimal
    interest: Decimal
    total_due: Decimal
    due_date: date
    status: str

    model_config = ConfigDict(from_attributes=True)


class PaymentTermsRead(BaseModel):
    principal: Decimal
    quarters: int
    start_quarter: str
    annual_rate: Decimal
    quarterly_amount: Decimal
    total_interest: Decimal
    revision: int | None = None
    entries: list[ScheduleEntryRead]

    model_config = ConfigDict(from_attributes=True)


class BillRead(BaseModel):
    id: int
    supplier_id: int
    mda_id: int
    spv_id: int | None = None
    invoice_number: str
    invoice_date: date
    due_date: date | None = None
    amount: Decimal
    currency: str
    description: str | None = None
    contract_reference: str | None = None
    status: BillStatus
    version: int

    offer_amount: Decimal | None = None
    offer_discount_rate: Decimal | None = None
    offer_date: datetime | None = None
    offer_accepted_date: datetime | None = None

    mda_approved_date: datetime | None = None
    mda_approved_by: int | None = None
    mda_notes: str | None = None
    payment_quarters: int | None = None
    payment_start_quarter: str | None = None
    payment_terms: PaymentTermsRead | None = Field(default=None, validation_alias="payment_terms_json")

    treasury_certified_date: datetime | None = None
    treasury_certified_by: int | None = None
    certificate_number: str | None = None
    deed_id: str | None = None

    rejection_reason: str | None = None
    last_rejected_by_supplier: bool = False
    last_rejection_date: datetime | None = None

    status_history: list[StatusEventRead] = Field(default_factory=list, validation_alias="status_events")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("payment_terms", mode="before")
    @classmethod
    def _refresh_schedule(cls, value: Any) -> Any:
        """Stored schedules carry the statuses of their computation date."""

        if not isinstance(value, dict):
            return value
        schedule = refresh_statuses(schedule_from_json(value), as_of=utctoday())
        return _terms_payload(schedule, value.get("revision"))


def _terms_payload(schedule, revision: int | None = None) -> dict[str, Any]:
    return {
        "principal": schedule.principal,
        "quarters": schedule.quarters,
        "start_quarter": schedule.start_quarter,
        "annual_rate": schedule.annual_rate,
        "quarterly_amount": schedule.quarterly_amount,
        "total_interest": schedule.total_interest,
        "revision": revision,
        "entries": [asdict(entry) for entry in schedule.entries],
    }


class BillSummary(BaseModel):
    id: int
    invoice_number: str
    supplier_id: int
    mda_id: int
    spv_id: int | None = None
    amount: Decimal
    currency: str
    status: BillStatus
    offer_amount: Decimal | None = None
    last_rejected_by_supplier: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SpvOffersRead(BaseModel):
    pending: list[BillSummary]
    rejected: list[BillSummary]
    accepted: list[BillSummary]
    completed: list[BillSummary]
    closed: list[BillSummary]


class AvailableActionsRead(BaseModel):
    bill_id: int
    status: BillStatus
    actions: list[str]


class StatusBreakdownRead(BaseModel):
    counts: dict[str, int]
    total: int


def payment_terms_read(schedule, revision: int | None = None) -> PaymentTermsRead:
    return PaymentTermsRead.model_validate(_terms_payload(schedule, revision))
