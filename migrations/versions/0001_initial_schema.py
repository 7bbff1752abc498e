"""Initial schema for payment reconciliation."""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

ENUM_TYPES = {
    "proforma_status": ("ACTIVE", "CANCELLED", "DELETED"),
    "payment_direction": ("IN", "OUT"),
    "payment_match_status": ("UNMATCHED", "NEEDS_REVIEW", "MATCHED"),
    "payment_manual_status": ("APPROVED", "REJECTED"),
    "payment_backup_type": ("PRE_IMPORT", "RESTORED"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    for name, labels in ENUM_TYPES.items():
        values = ", ".join(f"'{label}'" for label in labels)
        op.execute(f"CREATE TYPE {name} AS ENUM ({values})")

    op.create_table(
        "proformas",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("fullnumber", sa.String(length=64), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("total", sa.Numeric(18, 2), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(18, 6), nullable=True),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("buyer_normalized_name", sa.String(length=255), nullable=True),
        sa.Column("issued_at", sa.Date(), nullable=False),
        sa.Column("status", _enum("proforma_status"), nullable=False),
        sa.Column("payments_total", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("payments_total_base", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("payments_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payments_currency_exchange", sa.Numeric(18, 6), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_proformas_fullnumber", "proformas", ["fullnumber"], unique=True)
    op.create_index("ix_proformas_buyer_normalized_name", "proformas", ["buyer_normalized_name"])
    op.create_index("ix_proformas_issued_at", "proformas", ["issued_at"])

    op.create_table(
        "payment_imports",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("filename", sa.String(length=255), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_name", sa.String(length=128), nullable=True),
        sa.Column("total_records", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("matched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("needs_review", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("unmatched", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("operation_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("account", sa.String(length=255), nullable=True),
        sa.Column("category", sa.String(length=255), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("direction", _enum("payment_direction"), nullable=False),
        sa.Column("amount_raw", sa.String(length=64), nullable=True),
        sa.Column("raw_line", sa.Text(), nullable=False),
        sa.Column("payer_name", sa.String(length=255), nullable=True),
        sa.Column("payer_normalized_name", sa.String(length=255), nullable=True),
        sa.Column("invoice_number_hint", sa.String(length=64), nullable=True),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("import_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("income_category", sa.String(length=64), nullable=True),
        sa.Column("is_refund", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("match_status", _enum("payment_match_status"), nullable=False),
        sa.Column("match_confidence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("match_reason", sa.String(length=255), nullable=True),
        sa.Column("match_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("proforma_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("proforma_fullnumber", sa.String(length=64), nullable=True),
        sa.Column("manual_status", _enum("payment_manual_status"), nullable=True),
        sa.Column("manual_proforma_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("manual_proforma_fullnumber", sa.String(length=64), nullable=True),
        sa.Column("manual_comment", sa.Text(), nullable=True),
        sa.Column("manual_user", sa.String(length=128), nullable=True),
        sa.Column("manual_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", _enum("payment_match_status"), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["import_id"], ["payment_imports.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["proforma_id"], ["proformas.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["manual_proforma_id"], ["proformas.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_payments_content_hash", "payments", ["content_hash"], unique=True)
    op.create_index("ix_payments_operation_date", "payments", ["operation_date"])
    op.create_index("ix_payments_manual_proforma_id", "payments", ["manual_proforma_id"])
    op.create_index("ix_payments_status", "payments", ["status"])

    op.create_table(
        "payment_backups",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("import_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("backup_type", _enum("payment_backup_type"), nullable=False),
        sa.Column("payments_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payments_data", postgresql.JSONB(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("restored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["import_id"], ["payment_imports.id"], ondelete="SET NULL"),
    )


def downgrade() -> None:
    op.drop_table("payment_backups")
    op.drop_table("payments")
    op.drop_table("payment_imports")
    op.drop_table("proformas")

    for name in reversed(list(ENUM_TYPES)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
