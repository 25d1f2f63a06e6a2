"""Bill (invoice receivable) models."""
from datetime import date, datetime
from decimal import Decimal
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class BillStatus(str, PyEnum):
    """Lifecycle states of a bill."""

    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    OFFER_MADE = "offer_made"
    OFFER_ACCEPTED = "offer_accepted"
    MDA_REVIEWING = "mda_reviewing"
    MDA_APPROVED = "mda_approved"
    TERMS_SET = "terms_set"
    AGREEMENT_SENT = "agreement_sent"
    TREASURY_REVIEWING = "treasury_reviewing"
    CERTIFIED = "certified"
    REJECTED = "rejected"


class Bill(Base):
    """A supplier invoice moving through offer, approval and certification."""

    __tablename__ = "bills"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bill_amount_positive"),
        CheckConstraint("version >= 1", name="ck_bill_version_positive"),
        CheckConstraint(
            "payment_quarters IS NULL OR payment_quarters > 0",
            name="ck_bill_payment_quarters_positive",
        ),
        UniqueConstraint("certificate_number", name="uq_bill_certificate_number"),
        Index("ix_bills_status", "status"),
        Index("ix_bills_mda_status", "mda_id", "status"),
    )

    supplier_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    mda_id: Mapped[int] = mapped_column(ForeignKey("mdas.id"), nullable=False)
    spv_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    contract_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    offer_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    offer_discount_rate: Mapped[Decimal | None] = mapped_column(Numeric(7, 4), nullable=True)
    offer_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    offer_accepted_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    mda_approved_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    mda_approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    mda_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_quarters: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_start_quarter: Mapped[str | None] = mapped_column(String(16), nullable=True)
    payment_terms_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    treasury_certified_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    treasury_certified_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    certificate_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_rejected_by_supplier: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_rejection_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    deed_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[BillStatus] = mapped_column(
        SqlEnum(BillStatus, name="bill_status"), default=BillStatus.SUBMITTED, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    status_events = relationship(
        "BillStatusEvent",
        back_populates="bill",
        order_by="BillStatusEvent.seq",
        lazy="selectin",
        cascade="all, delete-orphan",
    )


class BillStatusEvent(Base):
    """Append-only status history entry for a bill."""

    __tablename__ = "bill_status_events"
    __table_args__ = (UniqueConstraint("bill_id", "seq", name="uq_bill_status_event_seq"),)

    bill_id: Mapped[int] = mapped_column(ForeignKey("bills.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BillStatus] = mapped_column(SqlEnum(BillStatus, name="bill_status"), nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    bill = relationship("Bill", back_populates="status_events")
