"""
EDI Exchange Database Models

Multi-tenant via tenant_id on all tables.

Tables:
  1. edi_trading_partners  - Counterparty identity + channel configuration
  2. edi_transactions      - One row per exchange attempt (audit log)
  3. edi_document_maps     - Field-mapping rule sets per doc type / direction
  4. edi_settings          - Per-tenant company IDs, certificates, toggles
  5. edi_sequences         - Per-tenant counters (transaction / control numbers)
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

DOCUMENT_TYPES = ("850", "855", "810", "856", "997", "custom")
DIRECTIONS = ("inbound", "outbound")
FORMATS = ("csv", "xml", "json", "x12")
TRANSACTION_STATUSES = ("pending", "processing", "completed", "failed", "acknowledged")
PARTNER_TYPES = ("customer", "vendor", "both")
PARTNER_STATUSES = ("active", "inactive", "testing", "suspended")
COMMUNICATION_METHODS = ("manual", "api", "sftp", "as2", "email")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ─── 1. Trading Partners ───────────────────────────────────────────────────


class TradingPartner(Base):
    __tablename__ = "edi_trading_partners"

    partner_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), nullable=False)
    partner_code = Column(String(50), nullable=False)
    partner_name = Column(String(255), nullable=False)
    partner_type = Column(String(20), nullable=False, default="customer")
    customer_id = Column(String(64))  # ERP customer record (opaque)
    vendor_id = Column(String(64))  # ERP vendor record (opaque)
    communication_method = Column(String(20), nullable=False, default="manual")
    default_format = Column(String(10), nullable=False, default="csv")
    status = Column(String(20), nullable=False, default="testing")

    # X12 identifiers
    isa_qualifier = Column(String(2), nullable=False, default="ZZ")
    isa_id = Column(String(15))
    gs_id = Column(String(15))

    # AS2
    as2_id = Column(String(128))
    as2_url = Column(String(500))
    partner_certificate = Column(Text)  # PEM
    encryption_algorithm = Column(String(20), nullable=False, default="aes256")
    signature_algorithm = Column(String(20), nullable=False, default="sha256")

    # SFTP
    sftp_host = Column(String(255))
    sftp_port = Column(Integer, nullable=False, default=22)
    sftp_username = Column(String(255))
    sftp_password_encrypted = Column(Text)
    sftp_private_key_encrypted = Column(Text)
    sftp_remote_dir = Column(String(500))
    sftp_outgoing_dir = Column(String(500))
    sftp_poll_schedule = Column(String(100))  # "*/15 * * * *" or minutes

    contact_name = Column(String(255))
    contact_email = Column(String(255))
    contact_phone = Column(String(50))
    notes = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "partner_code", name="uq_edi_partner_code"),
        Index("ix_edi_partners_tenant", "tenant_id"),
        CheckConstraint(_in("partner_type", PARTNER_TYPES), name="ck_edi_partner_type"),
        CheckConstraint(_in("status", PARTNER_STATUSES), name="ck_edi_partner_status"),
        CheckConstraint(_in("communication_method", COMMUNICATION_METHODS), name="ck_edi_partner_comm"),
        CheckConstraint(_in("default_format", FORMATS), name="ck_edi_partner_format"),
    )

    transactions = relationship("EdiTransaction", back_populates="partner")


# ─── 2. Transactions ───────────────────────────────────────────────────────


class EdiTransaction(Base):
    """
    One exchange attempt of one document.

    Status only ever moves forward:
        processing → completed | failed → acknowledged (inbound only)
    Reprocess re-enters processing; nothing is deleted by the engine.
    """

    __tablename__ = "edi_transactions"

    transaction_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), nullable=False)
    transaction_number = Column(String(30), nullable=False)
    partner_id = Column(GUID(), ForeignKey("edi_trading_partners.partner_id"), nullable=False)
    document_type = Column(String(10), nullable=False)
    direction = Column(String(10), nullable=False)
    format = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default="pending")

    raw_content = Column(Text)
    parsed_content = Column(Text)  # JSON array of rows
    filename = Column(String(500))

    # ERP record linkage: at most one is set
    sales_order_id = Column(String(64))
    purchase_order_id = Column(String(64))
    record_number = Column(String(64))

    error_message = Column(Text)
    as2_message_id = Column(String(255))
    control_number = Column(String(20))
    acknowledgment_id = Column(GUID(), ForeignKey("edi_transactions.transaction_id"))

    processed_at = Column(DateTime)
    processed_by = Column(String(255))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "transaction_number", name="uq_edi_transaction_number"),
        Index("ix_edi_transactions_tenant_created", "tenant_id", "created_at"),
        Index("ix_edi_transactions_partner", "partner_id"),
        Index("ix_edi_transactions_as2_message", "as2_message_id"),
        CheckConstraint(_in("document_type", DOCUMENT_TYPES), name="ck_edi_txn_doc_type"),
        CheckConstraint(_in("direction", DIRECTIONS), name="ck_edi_txn_direction"),
        CheckConstraint(_in("format", FORMATS), name="ck_edi_txn_format"),
        CheckConstraint(_in("status", TRANSACTION_STATUSES), name="ck_edi_txn_status"),
        CheckConstraint(
            "sales_order_id IS NULL OR purchase_order_id IS NULL",
            name="ck_edi_txn_single_record_link",
        ),
    )

    partner = relationship("TradingPartner", back_populates="transactions")


# ─── 3. Document Maps ──────────────────────────────────────────────────────


class EdiDocumentMap(Base):
    __tablename__ = "edi_document_maps"

    map_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), nullable=False)
    partner_id = Column(GUID(), ForeignKey("edi_trading_partners.partner_id"))
    map_name = Column(String(255), nullable=False)
    document_type = Column(String(10), nullable=False)
    direction = Column(String(10), nullable=False)
    mapping_rules = Column(Text, nullable=False, default="[]")  # JSON array of rules
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_edi_maps_lookup", "tenant_id", "document_type", "direction"),
        CheckConstraint(_in("document_type", DOCUMENT_TYPES), name="ck_edi_map_doc_type"),
        CheckConstraint(_in("direction", DIRECTIONS), name="ck_edi_map_direction"),
    )


# ─── 4. Settings ───────────────────────────────────────────────────────────


class EdiSettings(Base):
    __tablename__ = "edi_settings"

    settings_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(GUID(), nullable=False, unique=True)

    company_isa_qualifier = Column(String(2), nullable=False, default="ZZ")
    company_isa_id = Column(String(15))
    company_gs_id = Column(String(15))
    company_as2_id = Column(String(128))
    company_certificate = Column(Text)  # PEM
    company_private_key_encrypted = Column(Text)  # Fernet(PEM)

    auto_acknowledge_997 = Column(Boolean, nullable=False, default=True)
    auto_create_sales_orders = Column(Boolean, nullable=False, default=False)
    auto_generate_on_approval = Column(Boolean, nullable=False, default=False)
    default_format = Column(String(10), nullable=False, default="csv")
    retention_days = Column(Integer, nullable=False, default=365)
    sftp_polling_enabled = Column(Boolean, nullable=False, default=False)
    sftp_polling_interval_minutes = Column(Integer, nullable=False, default=15)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(_in("default_format", FORMATS), name="ck_edi_settings_format"),
        CheckConstraint("retention_days > 0", name="ck_edi_settings_retention"),
        CheckConstraint("sftp_polling_interval_minutes > 0", name="ck_edi_settings_interval"),
    )


# ─── 5. Sequences ──────────────────────────────────────────────────────────


class EdiSequence(Base):
    """Monotonic per-tenant counter; incremented under a row lock."""

    __tablename__ = "edi_sequences"

    tenant_id = Column(GUID(), primary_key=True)
    name = Column(String(50), primary_key=True)
    value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
