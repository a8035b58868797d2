"""edi_exchange_schema — partners, transactions, maps, settings, sequences

Tables:
  - edi_trading_partners: identity + AS2/SFTP channel configuration
  - edi_transactions: one row per exchange attempt
  - edi_document_maps: field-mapping rule sets
  - edi_settings: per-tenant company identifiers and toggles
  - edi_sequences: per-tenant transaction / control number counters

Revision ID: 001
Revises:
Create Date: 2026-03-02
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_DOCUMENT_TYPES = "('850', '855', '810', '856', '997', 'custom')"
_DIRECTIONS = "('inbound', 'outbound')"
_FORMATS = "('csv', 'xml', 'json', 'x12')"


def upgrade() -> None:
    # ─── edi_trading_partners ───────────────────────────────────────────
    op.create_table(
        "edi_trading_partners",
        sa.Column("partner_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("partner_code", sa.String(length=50), nullable=False),
        sa.Column("partner_name", sa.String(length=255), nullable=False),
        sa.Column("partner_type", sa.String(length=20), nullable=False, server_default="customer"),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("vendor_id", sa.String(length=64), nullable=True),
        sa.Column("communication_method", sa.String(length=20), nullable=False, server_default="manual"),
        sa.Column("default_format", sa.String(length=10), nullable=False, server_default="csv"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="testing"),
        sa.Column("isa_qualifier", sa.String(length=2), nullable=False, server_default="ZZ"),
        sa.Column("isa_id", sa.String(length=15), nullable=True),
        sa.Column("gs_id", sa.String(length=15), nullable=True),
        sa.Column("as2_id", sa.String(length=128), nullable=True),
        sa.Column("as2_url", sa.String(length=500), nullable=True),
        sa.Column("partner_certificate", sa.Text(), nullable=True),
        sa.Column("encryption_algorithm", sa.String(length=20), nullable=False, server_default="aes256"),
        sa.Column("signature_algorithm", sa.String(length=20), nullable=False, server_default="sha256"),
        sa.Column("sftp_host", sa.String(length=255), nullable=True),
        sa.Column("sftp_port", sa.Integer(), nullable=False, server_default="22"),
        sa.Column("sftp_username", sa.String(length=255), nullable=True),
        sa.Column("sftp_password_encrypted", sa.Text(), nullable=True),
        sa.Column("sftp_private_key_encrypted", sa.Text(), nullable=True),
        sa.Column("sftp_remote_dir", sa.String(length=500), nullable=True),
        sa.Column("sftp_outgoing_dir", sa.String(length=500), nullable=True),
        sa.Column("sftp_poll_schedule", sa.String(length=100), nullable=True),
        sa.Column("contact_name", sa.String(length=255), nullable=True),
        sa.Column("contact_email", sa.String(length=255), nullable=True),
        sa.Column("contact_phone", sa.String(length=50), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "partner_code", name="uq_edi_partner_code"),
        sa.CheckConstraint("partner_type IN ('customer', 'vendor', 'both')", name="ck_edi_partner_type"),
        sa.CheckConstraint(
            "status IN ('active', 'inactive', 'testing', 'suspended')",
            name="ck_edi_partner_status",
        ),
        sa.CheckConstraint(
            "communication_method IN ('manual', 'api', 'sftp', 'as2', 'email')",
            name="ck_edi_partner_comm",
        ),
        sa.CheckConstraint(f"default_format IN {_FORMATS}", name="ck_edi_partner_format"),
    )
    op.create_index("ix_edi_partners_tenant", "edi_trading_partners", ["tenant_id"])

    # ─── edi_transactions ───────────────────────────────────────────────
    op.create_table(
        "edi_transactions",
        sa.Column("transaction_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column("transaction_number", sa.String(length=30), nullable=False),
        sa.Column(
            "partner_id",
            UUID(as_uuid=True),
            sa.ForeignKey("edi_trading_partners.partner_id"),
            nullable=False,
        ),
        sa.Column("document_type", sa.String(length=10), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("format", sa.String(length=10), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("raw_content", sa.Text(), nullable=True),
        sa.Column("parsed_content", sa.Text(), nullable=True),
        sa.Column("filename", sa.String(length=500), nullable=True),
        sa.Column("sales_order_id", sa.String(length=64), nullable=True),
        sa.Column("purchase_order_id", sa.String(length=64), nullable=True),
        sa.Column("record_number", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("as2_message_id", sa.String(length=255), nullable=True),
        sa.Column("control_number", sa.String(length=20), nullable=True),
        sa.Column(
            "acknowledgment_id",
            UUID(as_uuid=True),
            sa.ForeignKey("edi_transactions.transaction_id"),
            nullable=True,
        ),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("processed_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("tenant_id", "transaction_number", name="uq_edi_transaction_number"),
        sa.CheckConstraint(f"document_type IN {_DOCUMENT_TYPES}", name="ck_edi_txn_doc_type"),
        sa.CheckConstraint(f"direction IN {_DIRECTIONS}", name="ck_edi_txn_direction"),
        sa.CheckConstraint(f"format IN {_FORMATS}", name="ck_edi_txn_format"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'acknowledged')",
            name="ck_edi_txn_status",
        ),
        sa.CheckConstraint(
            "sales_order_id IS NULL OR purchase_order_id IS NULL",
            name="ck_edi_txn_single_record_link",
        ),
    )
    op.create_index("ix_edi_transactions_tenant_created", "edi_transactions", ["tenant_id", "created_at"])
    op.create_index("ix_edi_transactions_partner", "edi_transactions", ["partner_id"])
    op.create_index("ix_edi_transactions_as2_message", "edi_transactions", ["as2_message_id"])

    # ─── edi_document_maps ──────────────────────────────────────────────
    op.create_table(
        "edi_document_maps",
        sa.Column("map_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False),
        sa.Column(
            "partner_id",
            UUID(as_uuid=True),
            sa.ForeignKey("edi_trading_partners.partner_id"),
            nullable=True,
        ),
        sa.Column("map_name", sa.String(length=255), nullable=False),
        sa.Column("document_type", sa.String(length=10), nullable=False),
        sa.Column("direction", sa.String(length=10), nullable=False),
        sa.Column("mapping_rules", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(f"document_type IN {_DOCUMENT_TYPES}", name="ck_edi_map_doc_type"),
        sa.CheckConstraint(f"direction IN {_DIRECTIONS}", name="ck_edi_map_direction"),
    )
    op.create_index("ix_edi_maps_lookup", "edi_document_maps", ["tenant_id", "document_type", "direction"])

    # ─── edi_settings ───────────────────────────────────────────────────
    op.create_table(
        "edi_settings",
        sa.Column("settings_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("company_isa_qualifier", sa.String(length=2), nullable=False, server_default="ZZ"),
        sa.Column("company_isa_id", sa.String(length=15), nullable=True),
        sa.Column("company_gs_id", sa.String(length=15), nullable=True),
        sa.Column("company_as2_id", sa.String(length=128), nullable=True),
        sa.Column("company_certificate", sa.Text(), nullable=True),
        sa.Column("company_private_key_encrypted", sa.Text(), nullable=True),
        sa.Column("auto_acknowledge_997", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("auto_create_sales_orders", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("auto_generate_on_approval", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("default_format", sa.String(length=10), nullable=False, server_default="csv"),
        sa.Column("retention_days", sa.Integer(), nullable=False, server_default="365"),
        sa.Column("sftp_polling_enabled", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("sftp_polling_interval_minutes", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(f"default_format IN {_FORMATS}", name="ck_edi_settings_format"),
        sa.CheckConstraint("retention_days > 0", name="ck_edi_settings_retention"),
        sa.CheckConstraint("sftp_polling_interval_minutes > 0", name="ck_edi_settings_interval"),
    )

    # ─── edi_sequences ──────────────────────────────────────────────────
    op.create_table(
        "edi_sequences",
        sa.Column("tenant_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=50), primary_key=True),
        sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("edi_sequences")
    op.drop_table("edi_settings")
    op.drop_index("ix_edi_maps_lookup", table_name="edi_document_maps")
    op.drop_table("edi_document_maps")
    op.drop_index("ix_edi_transactions_as2_message", table_name="edi_transactions")
    op.drop_index("ix_edi_transactions_partner", table_name="edi_transactions")
    op.drop_index("ix_edi_transactions_tenant_created", table_name="edi_transactions")
    op.drop_table("edi_transactions")
    op.drop_index("ix_edi_partners_tenant", table_name="edi_trading_partners")
    op.drop_table("edi_trading_partners")
