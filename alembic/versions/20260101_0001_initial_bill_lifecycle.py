"""Initial bill lifecycle schema.

Revision ID: 20260101_0001
Revises:
Create Date: 2026-01-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20260101_0001"
down_revision = None
branch_labels = None
depends_on = None

# SQLAlchemy persists enum member names.
ENUMS = {
    "user_role": ("SUPPLIER", "SPV", "MDA", "TREASURY", "ADMIN"),
    "bill_status": (
        "SUBMITTED",
        "UNDER_REVIEW",
        "OFFER_MADE",
        "OFFER_ACCEPTED",
        "MDA_REVIEWING",
        "MDA_APPROVED",
        "TERMS_SET",
        "AGREEMENT_SENT",
        "TREASURY_REVIEWING",
        "CERTIFIED",
        "REJECTED",
    ),
    "notification_kind": ("INFO", "SUCCESS", "WARNING", "ERROR"),
    "side_effect_kind": ("NOTIFY", "ACTIVITY", "DEED"),
    "side_effect_status": ("PENDING", "DONE", "FAILED"),
}


def _enum(name: str) -> sa.Enum:
    values = ENUMS[name]
    return sa.Enum(*values, name=name).with_variant(
        postgresql.ENUM(*values, name=name, create_type=False), "postgresql"
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "mdas",
        *_timestamps(),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.UniqueConstraint("code", name="uq_mdas_code"),
    )

    op.create_table(
        "users",
        *_timestamps(),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", _enum("user_role"), nullable=False),
        sa.Column("role_scope_id", sa.Integer(), sa.ForeignKey("mdas.id"), nullable=True),
        sa.Column("company_name", sa.String(length=200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_role_scope", "users", ["role", "role_scope_id"])

    op.create_table(
        "api_keys",
        *_timestamps(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("prefix", sa.String(length=32), nullable=False),
        sa.Column("key_hash", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("name", name="uq_api_keys_name"),
        sa.UniqueConstraint("key_hash", name="uq_api_keys_key_hash"),
    )
    op.create_index("ix_api_keys_prefix", "api_keys", ["prefix"])
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    op.create_table(
        "bills",
        *_timestamps(),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("mda_id", sa.Integer(), sa.ForeignKey("mdas.id"), nullable=False),
        sa.Column("spv_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("invoice_number", sa.String(length=100), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("contract_reference", sa.String(length=100), nullable=True),
        sa.Column("offer_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("offer_discount_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("offer_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("offer_accepted_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mda_approved_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mda_approved_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("mda_notes", sa.Text(), nullable=True),
        sa.Column("payment_quarters", sa.Integer(), nullable=True),
        sa.Column("payment_start_quarter", sa.String(length=16), nullable=True),
        sa.Column("payment_terms_json", sa.JSON(), nullable=True),
        sa.Column("treasury_certified_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("treasury_certified_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("certificate_number", sa.String(length=64), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("last_rejected_by_supplier", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_rejection_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deed_id", sa.String(length=100), nullable=True),
        sa.Column("status", _enum("bill_status"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("amount > 0", name="ck_bill_amount_positive"),
        sa.CheckConstraint("version >= 1", name="ck_bill_version_positive"),
        sa.CheckConstraint(
            "payment_quarters IS NULL OR payment_quarters > 0",
            name="ck_bill_payment_quarters_positive",
        ),
        sa.UniqueConstraint("certificate_number", name="uq_bill_certificate_number"),
    )
    op.create_index("ix_bills_supplier_id", "bills", ["supplier_id"])
    op.create_index("ix_bills_spv_id", "bills", ["spv_id"])
    op.create_index("ix_bills_status", "bills", ["status"])
    op.create_index("ix_bills_mda_status", "bills", ["mda_id", "status"])

    op.create_table(
        "bill_status_events",
        *_timestamps(),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("status", _enum("bill_status"), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("bill_id", "seq", name="uq_bill_status_event_seq"),
    )
    op.create_index("ix_bill_status_events_bill_id", "bill_status_events", ["bill_id"])

    op.create_table(
        "notifications",
        *_timestamps(),
        sa.Column("recipient_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("kind", _enum("notification_kind"), nullable=False),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id"), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_notifications_recipient_read", "notifications", ["recipient_user_id", "read"])
    op.create_index("ix_notifications_bill_id", "notifications", ["bill_id"])

    op.create_table(
        "activity_logs",
        *_timestamps(),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id"), nullable=True),
        sa.Column("details_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_activity_logs_actor_user_id", "activity_logs", ["actor_user_id"])
    op.create_index("ix_activity_logs_bill_id", "activity_logs", ["bill_id"])

    op.create_table(
        "side_effects",
        *_timestamps(),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id"), nullable=True),
        sa.Column("kind", _enum("side_effect_kind"), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("status", _enum("side_effect_status"), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.String(length=500), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_side_effects_status", "side_effects", ["status"])
    op.create_index("ix_side_effects_bill_id", "side_effects", ["bill_id"])


def downgrade() -> None:
    for table, indexes in (
        ("side_effects", ("ix_side_effects_bill_id", "ix_side_effects_status")),
        ("activity_logs", ("ix_activity_logs_bill_id", "ix_activity_logs_actor_user_id")),
        ("notifications", ("ix_notifications_bill_id", "ix_notifications_recipient_read")),
        ("bill_status_events", ("ix_bill_status_events_bill_id",)),
        ("bills", ("ix_bills_mda_status", "ix_bills_status", "ix_bills_spv_id", "ix_bills_supplier_id")),
        ("api_keys", ("ix_api_keys_user_id", "ix_api_keys_prefix")),
        ("users", ("ix_users_role_scope",)),
        ("mdas", ()),
    ):
        for index in indexes:
            op.drop_index(index, table_name=table)
        op.drop_table(table)

    bind = op.get_bind()
    for name, values in reversed(list(ENUMS.items())):
        sa.Enum(*values, name=name).drop(bind, checkfirst=True)
