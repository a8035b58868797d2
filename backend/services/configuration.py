"""
EDI Configuration Service — trading partners, document maps, settings.

Every write that can change which partners are polled (channel, schedule,
status, polling toggles) ends with a scheduler refresh. Pipelines never
read live rows: they take a ``PartnerSnapshot`` / ``SettingsSnapshot`` at
start so a concurrent edit cannot change an in-flight exchange.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import func, select, update

from core.config import Settings, get_settings
from core.errors import ConfigurationError, InvalidStateError, NotFoundError
from core.security import decrypt_optional, encrypt_optional
from db.models import (
    COMMUNICATION_METHODS,
    DIRECTIONS,
    DOCUMENT_TYPES,
    FORMATS,
    PARTNER_STATUSES,
    PARTNER_TYPES,
    EdiDocumentMap,
    EdiSettings,
    EdiTransaction,
    TradingPartner,
)
from edi.field_mapping import FieldMappingRule, dump_rules, load_rules, validate_rules
from integrations.as2_adapter import As2Config
from integrations.base import TransportChannel
from integrations.certificates import ENCRYPTION_ALGORITHMS, NO_ENCRYPTION, SIGNATURE_HASHES
from integrations.sftp_adapter import SftpConfig

logger = structlog.get_logger()

PRIVATE_KEY_MASK = "*** PRIVATE KEY SET ***"
EXCHANGE_PARTNER_STATUSES = ("active", "testing")

PARTNER_FIELDS = (
    "partner_code",
    "partner_name",
    "partner_type",
    "customer_id",
    "vendor_id",
    "communication_method",
    "default_format",
    "status",
    "isa_qualifier",
    "isa_id",
    "gs_id",
    "as2_id",
    "as2_url",
    "partner_certificate",
    "encryption_algorithm",
    "signature_algorithm",
    "sftp_host",
    "sftp_port",
    "sftp_username",
    "sftp_remote_dir",
    "sftp_outgoing_dir",
    "sftp_poll_schedule",
    "contact_name",
    "contact_email",
    "contact_phone",
    "notes",
    "is_active",
)
# Write-only; stored encrypted under *_encrypted
PARTNER_SECRET_FIELDS = ("sftp_password", "sftp_private_key")

SCHEDULE_FIELDS = {"communication_method", "sftp_poll_schedule", "status", "is_active"}

SETTINGS_DEFAULTS: dict[str, Any] = {
    "company_isa_qualifier": "ZZ",
    "company_isa_id": None,
    "company_gs_id": None,
    "company_as2_id": None,
    "company_certificate": None,
    "auto_acknowledge_997": True,
    "auto_create_sales_orders": False,
    "auto_generate_on_approval": False,
    "default_format": "csv",
    "retention_days": 365,
    "sftp_polling_enabled": False,
    "sftp_polling_interval_minutes": 15,
}

MAP_FIELDS = ("partner_id", "map_name", "document_type", "direction", "is_default", "is_active")


# ── Snapshots ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PartnerSnapshot:
    partner_id: uuid.UUID
    tenant_id: uuid.UUID
    partner_code: str
    partner_name: str
    partner_type: str
    communication_method: str
    default_format: str
    status: str
    is_active: bool
    isa_qualifier: str
    isa_id: str | None
    gs_id: str | None
    as2_id: str | None
    as2_url: str | None
    partner_certificate: str | None
    encryption_algorithm: str
    signature_algorithm: str
    sftp_host: str | None
    sftp_port: int
    sftp_username: str | None
    sftp_password: str | None
    sftp_private_key: str | None
    sftp_remote_dir: str | None
    sftp_outgoing_dir: str | None
    sftp_poll_schedule: str | None

    @property
    def can_exchange(self) -> bool:
        return self.is_active and self.status in EXCHANGE_PARTNER_STATUSES


@dataclass(frozen=True)
class SettingsSnapshot:
    tenant_id: uuid.UUID
    company_isa_qualifier: str = "ZZ"
    company_isa_id: str | None = None
    company_gs_id: str | None = None
    company_as2_id: str | None = None
    company_certificate: str | None = None
    company_private_key: str | None = None
    auto_acknowledge_997: bool = True
    auto_create_sales_orders: bool = False
    auto_generate_on_approval: bool = False
    default_format: str = "csv"
    retention_days: int = 365
    sftp_polling_enabled: bool = False
    sftp_polling_interval_minutes: int = 15


def partner_snapshot(partner: TradingPartner) -> PartnerSnapshot:
    return PartnerSnapshot(
        partner_id=partner.partner_id,
        tenant_id=partner.tenant_id,
        partner_code=partner.partner_code,
        partner_name=partner.partner_name,
        partner_type=partner.partner_type,
        communication_method=partner.communication_method,
        default_format=partner.default_format,
        status=partner.status,
        is_active=bool(partner.is_active),
        isa_qualifier=partner.isa_qualifier or "ZZ",
        isa_id=partner.isa_id,
        gs_id=partner.gs_id,
        as2_id=partner.as2_id,
        as2_url=partner.as2_url,
        partner_certificate=partner.partner_certificate,
        encryption_algorithm=partner.encryption_algorithm or "aes256",
        signature_algorithm=partner.signature_algorithm or "sha256",
        sftp_host=partner.sftp_host,
        sftp_port=partner.sftp_port or 22,
        sftp_username=partner.sftp_username,
        sftp_password=decrypt_optional(partner.sftp_password_encrypted),
        sftp_private_key=decrypt_optional(partner.sftp_private_key_encrypted),
        sftp_remote_dir=partner.sftp_remote_dir,
        sftp_outgoing_dir=partner.sftp_outgoing_dir,
        sftp_poll_schedule=partner.sftp_poll_schedule,
    )


def settings_snapshot(tenant_id, row: EdiSettings | None) -> SettingsSnapshot:
    if row is None:
        return SettingsSnapshot(tenant_id=tenant_id)
    values = {name: getattr(row, name) for name in SETTINGS_DEFAULTS}
    return SettingsSnapshot(
        tenant_id=tenant_id,
        company_private_key=decrypt_optional(row.company_private_key_encrypted),
        **values,
    )


# ── Channel config builders ───────────────────────────────────────────────


def as2_config(partner: PartnerSnapshot, settings: SettingsSnapshot, app_settings: Settings | None = None) -> As2Config:
    app_settings = app_settings or get_settings()
    return As2Config(
        url=partner.as2_url,
        as2_from=settings.company_as2_id,
        as2_to=partner.as2_id,
        company_certificate=settings.company_certificate,
        company_private_key=settings.company_private_key,
        partner_certificate=partner.partner_certificate,
        encryption_algorithm=partner.encryption_algorithm,
        signature_algorithm=partner.signature_algorithm,
        timeout_seconds=app_settings.as2_request_timeout_seconds,
        message_id_domain=app_settings.as2_message_id_domain,
    )


def sftp_config(partner: PartnerSnapshot, app_settings: Settings | None = None) -> SftpConfig:
    app_settings = app_settings or get_settings()
    return SftpConfig(
        host=partner.sftp_host,
        port=partner.sftp_port,
        username=partner.sftp_username,
        password=partner.sftp_password,
        private_key=partner.sftp_private_key,
        remote_dir=partner.sftp_remote_dir or app_settings.sftp_default_remote_dir,
        outgoing_dir=partner.sftp_outgoing_dir or app_settings.sftp_default_outgoing_dir,
        processed_dir_name=app_settings.sftp_processed_dir_name,
        connect_timeout=app_settings.sftp_connect_timeout_seconds,
    )


def channel_config(partner: PartnerSnapshot, settings: SettingsSnapshot, app_settings: Settings | None = None):
    """Config payload for the partner's channel, or None for adapter-less channels."""
    channel = TransportChannel(partner.communication_method)
    if channel == TransportChannel.AS2:
        return as2_config(partner, settings, app_settings)
    if channel == TransportChannel.SFTP:
        return sftp_config(partner, app_settings)
    return None


# ── Service ───────────────────────────────────────────────────────────────


class ConfigurationService:
    """CRUD for partners, document maps and settings, scoped by tenant."""

    def __init__(self, session_factory, scheduler=None):
        self.session_factory = session_factory
        self.scheduler = scheduler

    async def _refresh_scheduler(self, reason: str) -> None:
        if self.scheduler is None:
            return
        try:
            await self.scheduler.refresh_schedules()
        except Exception:
            # The write itself succeeded; polling picks up on the next refresh
            logger.exception("scheduler.refresh_failed", reason=reason)

    # ── Trading partners ─────────────────────────────────────────────────

    async def list_partners(self, tenant_id, status: str | None = None) -> list[TradingPartner]:
        async with self.session_factory() as session:
            query = select(TradingPartner).where(TradingPartner.tenant_id == tenant_id)
            if status:
                query = query.where(TradingPartner.status == status)
            result = await session.execute(query.order_by(TradingPartner.partner_code))
            return list(result.scalars().all())

    async def get_partner(self, tenant_id, partner_id) -> TradingPartner:
        async with self.session_factory() as session:
            return await _partner_row(session, tenant_id, partner_id)

    async def create_partner(self, tenant_id, data: dict[str, Any]) -> TradingPartner:
        values = _partner_values(data, creating=True)
        async with self.session_factory() as session:
            existing = await session.execute(
                select(TradingPartner.partner_id).where(
                    TradingPartner.tenant_id == tenant_id,
                    TradingPartner.partner_code == values["partner_code"],
                )
            )
            if existing.first() is not None:
                raise ConfigurationError(f"Partner code '{values['partner_code']}' already exists")

            partner = TradingPartner(tenant_id=tenant_id, **values)
            session.add(partner)
            await session.commit()
            await session.refresh(partner)

        logger.info("edi.partner.created", tenant_id=str(tenant_id), partner_code=partner.partner_code)
        await self._refresh_scheduler("partner_created")
        return partner

    async def update_partner(self, tenant_id, partner_id, data: dict[str, Any]) -> TradingPartner:
        values = _partner_values(data, creating=False)
        async with self.session_factory() as session:
            partner = await _partner_row(session, tenant_id, partner_id)
            if "partner_code" in values and values["partner_code"] != partner.partner_code:
                clash = await session.execute(
                    select(TradingPartner.partner_id).where(
                        TradingPartner.tenant_id == tenant_id,
                        TradingPartner.partner_code == values["partner_code"],
                    )
                )
                if clash.first() is not None:
                    raise ConfigurationError(f"Partner code '{values['partner_code']}' already exists")

            changed = {key for key, value in values.items() if getattr(partner, key) != value}
            for key, value in values.items():
                setattr(partner, key, value)
            await session.commit()
            await session.refresh(partner)

        logger.info("edi.partner.updated", tenant_id=str(tenant_id), partner_id=str(partner_id), fields=sorted(changed))
        if changed & SCHEDULE_FIELDS:
            await self._refresh_scheduler("partner_updated")
        return partner

    async def delete_partner(self, tenant_id, partner_id) -> None:
        async with self.session_factory() as session:
            partner = await _partner_row(session, tenant_id, partner_id)
            count = await session.scalar(
                select(func.count()).select_from(EdiTransaction).where(EdiTransaction.partner_id == partner.partner_id)
            )
            if count:
                raise InvalidStateError(
                    f"Partner '{partner.partner_code}' has {count} transactions; deactivate it instead of deleting"
                )
            await session.execute(
                update(EdiDocumentMap)
                .where(EdiDocumentMap.partner_id == partner.partner_id)
                .values(partner_id=None, is_active=False, is_default=False)
            )
            await session.delete(partner)
            await session.commit()

        logger.info("edi.partner.deleted", tenant_id=str(tenant_id), partner_id=str(partner_id))
        await self._refresh_scheduler("partner_deleted")

    async def load_partner_snapshot(self, tenant_id, partner_id) -> PartnerSnapshot:
        async with self.session_factory() as session:
            return partner_snapshot(await _partner_row(session, tenant_id, partner_id))

    async def find_partner_by_as2_id(self, as2_from: str, as2_to: str | None = None) -> PartnerSnapshot:
        """Inbound AS2 has no tenant context; the (AS2-From, AS2-To) pair identifies it."""
        async with self.session_factory() as session:
            query = select(TradingPartner).where(TradingPartner.as2_id == as2_from)
            if as2_to:
                query = query.join(EdiSettings, EdiSettings.tenant_id == TradingPartner.tenant_id).where(
                    EdiSettings.company_as2_id == as2_to
                )
            partners = list((await session.execute(query)).scalars().all())
        if not partners:
            raise NotFoundError("AS2 partner", as2_from)
        if len(partners) > 1:
            raise ConfigurationError(f"AS2 id '{as2_from}' is configured on more than one partner")
        return partner_snapshot(partners[0])

    # ── Document maps ────────────────────────────────────────────────────

    async def list_maps(self, tenant_id, document_type: str | None = None, direction: str | None = None):
        async with self.session_factory() as session:
            query = select(EdiDocumentMap).where(EdiDocumentMap.tenant_id == tenant_id)
            if document_type:
                query = query.where(EdiDocumentMap.document_type == document_type)
            if direction:
                query = query.where(EdiDocumentMap.direction == direction)
            result = await session.execute(query.order_by(EdiDocumentMap.map_name))
            return list(result.scalars().all())

    async def get_map(self, tenant_id, map_id) -> EdiDocumentMap:
        async with self.session_factory() as session:
            return await _map_row(session, tenant_id, map_id)

    async def create_map(self, tenant_id, data: dict[str, Any]) -> EdiDocumentMap:
        values = _map_values(data, creating=True)
        async with self.session_factory() as session:
            if values.get("partner_id") is not None:
                await _partner_row(session, tenant_id, values["partner_id"])
            document_map = EdiDocumentMap(tenant_id=tenant_id, **values)
            session.add(document_map)
            await session.flush()
            if document_map.is_default:
                await _clear_other_defaults(session, document_map)
            await session.commit()
            await session.refresh(document_map)

        logger.info(
            "edi.map.created",
            tenant_id=str(tenant_id),
            document_type=document_map.document_type,
            direction=document_map.direction,
        )
        return document_map

    async def update_map(self, tenant_id, map_id, data: dict[str, Any]) -> EdiDocumentMap:
        values = _map_values(data, creating=False)
        async with self.session_factory() as session:
            document_map = await _map_row(session, tenant_id, map_id)
            if values.get("partner_id") is not None:
                await _partner_row(session, tenant_id, values["partner_id"])
            for key, value in values.items():
                setattr(document_map, key, value)
            await session.flush()
            if document_map.is_default:
                await _clear_other_defaults(session, document_map)
            await session.commit()
            await session.refresh(document_map)
        return document_map

    async def delete_map(self, tenant_id, map_id) -> None:
        async with self.session_factory() as session:
            document_map = await _map_row(session, tenant_id, map_id)
            await session.delete(document_map)
            await session.commit()

    async def resolve_map(
        self, tenant_id, document_type: str, direction: str, partner_id=None
    ) -> list[FieldMappingRule] | None:
        """Rules of the partner-specific active map, else the tenant default, else None."""
        async with self.session_factory() as session:
            base = select(EdiDocumentMap).where(
                EdiDocumentMap.tenant_id == tenant_id,
                EdiDocumentMap.document_type == document_type,
                EdiDocumentMap.direction == direction,
                EdiDocumentMap.is_active.is_(True),
            )
            document_map = None
            if partner_id is not None:
                result = await session.execute(
                    base.where(EdiDocumentMap.partner_id == partner_id).order_by(
                        EdiDocumentMap.is_default.desc(), EdiDocumentMap.updated_at.desc()
                    )
                )
                document_map = result.scalars().first()
            if document_map is None:
                result = await session.execute(
                    base.where(EdiDocumentMap.partner_id.is_(None), EdiDocumentMap.is_default.is_(True))
                )
                document_map = result.scalars().first()

        if document_map is None:
            return None
        return load_rules(document_map.mapping_rules)

    # ── Settings ─────────────────────────────────────────────────────────

    async def get_settings(self, tenant_id) -> dict[str, Any]:
        async with self.session_factory() as session:
            row = await _settings_row(session, tenant_id)
        return _masked_settings(tenant_id, row)

    async def upsert_settings(self, tenant_id, data: dict[str, Any]) -> dict[str, Any]:
        unknown = set(data) - set(SETTINGS_DEFAULTS) - {"company_private_key"}
        if unknown:
            raise ConfigurationError(f"Unknown settings fields: {', '.join(sorted(unknown))}")
        if "default_format" in data and data["default_format"] not in FORMATS:
            raise ConfigurationError(f"Invalid default_format: {data['default_format']}")
        data = dict(data)
        for key in ("retention_days", "sftp_polling_interval_minutes"):
            if key not in data:
                continue
            try:
                data[key] = int(data[key])
            except (TypeError, ValueError):
                raise ConfigurationError(f"{key} must be a positive integer") from None
            if data[key] <= 0:
                raise ConfigurationError(f"{key} must be a positive integer")

        async with self.session_factory() as session:
            row = await _settings_row(session, tenant_id)
            if row is None:
                row = EdiSettings(tenant_id=tenant_id, **SETTINGS_DEFAULTS)
                session.add(row)
            for key, value in data.items():
                if key == "company_private_key":
                    if value != PRIVATE_KEY_MASK:
                        row.company_private_key_encrypted = encrypt_optional(value)
                    continue
                setattr(row, key, value)
            await session.commit()
            await session.refresh(row)

        logger.info("edi.settings.saved", tenant_id=str(tenant_id), fields=sorted(data))
        await self._refresh_scheduler("settings_saved")
        return _masked_settings(tenant_id, row)

    async def load_settings_snapshot(self, tenant_id) -> SettingsSnapshot:
        async with self.session_factory() as session:
            return settings_snapshot(tenant_id, await _settings_row(session, tenant_id))


# ── Helpers ───────────────────────────────────────────────────────────────


async def _partner_row(session, tenant_id, partner_id) -> TradingPartner:
    result = await session.execute(
        select(TradingPartner).where(
            TradingPartner.tenant_id == tenant_id,
            TradingPartner.partner_id == partner_id,
        )
    )
    partner = result.scalar_one_or_none()
    if partner is None:
        raise NotFoundError("Trading partner", partner_id)
    return partner


async def _map_row(session, tenant_id, map_id) -> EdiDocumentMap:
    result = await session.execute(
        select(EdiDocumentMap).where(EdiDocumentMap.tenant_id == tenant_id, EdiDocumentMap.map_id == map_id)
    )
    document_map = result.scalar_one_or_none()
    if document_map is None:
        raise NotFoundError("Document map", map_id)
    return document_map


async def _settings_row(session, tenant_id) -> EdiSettings | None:
    result = await session.execute(select(EdiSettings).where(EdiSettings.tenant_id == tenant_id))
    return result.scalar_one_or_none()


async def _clear_other_defaults(session, document_map: EdiDocumentMap) -> None:
    scope = (
        EdiDocumentMap.partner_id.is_(None)
        if document_map.partner_id is None
        else EdiDocumentMap.partner_id == document_map.partner_id
    )
    await session.execute(
        update(EdiDocumentMap)
        .where(
            EdiDocumentMap.tenant_id == document_map.tenant_id,
            EdiDocumentMap.document_type == document_map.document_type,
            EdiDocumentMap.direction == document_map.direction,
            EdiDocumentMap.map_id != document_map.map_id,
            scope,
        )
        .values(is_default=False)
    )


def _masked_settings(tenant_id, row: EdiSettings | None) -> dict[str, Any]:
    if row is None:
        values = dict(SETTINGS_DEFAULTS)
        has_key = False
    else:
        values = {name: getattr(row, name) for name in SETTINGS_DEFAULTS}
        has_key = bool(row.company_private_key_encrypted)
    values["tenant_id"] = tenant_id
    values["company_private_key"] = PRIVATE_KEY_MASK if has_key else None
    return values


def _check_choice(name: str, value: Any, allowed) -> None:
    if value is not None and value not in allowed:
        raise ConfigurationError(f"Invalid {name}: {value!r} (expected one of {', '.join(allowed)})")


def _partner_values(data: dict[str, Any], creating: bool) -> dict[str, Any]:
    unknown = set(data) - set(PARTNER_FIELDS) - set(PARTNER_SECRET_FIELDS)
    if unknown:
        raise ConfigurationError(f"Unknown partner fields: {', '.join(sorted(unknown))}")

    values = {key: data[key] for key in PARTNER_FIELDS if key in data}
    if creating:
        for required in ("partner_code", "partner_name"):
            if not values.get(required):
                raise ConfigurationError(f"{required} is required")
    elif any(key in values and not values[key] for key in ("partner_code", "partner_name")):
        raise ConfigurationError("partner_code and partner_name cannot be blank")

    _check_choice("partner_type", values.get("partner_type"), PARTNER_TYPES)
    _check_choice("communication_method", values.get("communication_method"), COMMUNICATION_METHODS)
    _check_choice("default_format", values.get("default_format"), FORMATS)
    _check_choice("status", values.get("status"), PARTNER_STATUSES)
    _check_choice("encryption_algorithm", values.get("encryption_algorithm"), (*ENCRYPTION_ALGORITHMS, NO_ENCRYPTION))
    _check_choice("signature_algorithm", values.get("signature_algorithm"), tuple(SIGNATURE_HASHES))

    if "sftp_password" in data:
        values["sftp_password_encrypted"] = encrypt_optional(data["sftp_password"])
    if "sftp_private_key" in data:
        values["sftp_private_key_encrypted"] = encrypt_optional(data["sftp_private_key"])
    return values


def _map_values(data: dict[str, Any], creating: bool) -> dict[str, Any]:
    unknown = set(data) - set(MAP_FIELDS) - {"mapping_rules"}
    if unknown:
        raise ConfigurationError(f"Unknown map fields: {', '.join(sorted(unknown))}")

    values = {key: data[key] for key in MAP_FIELDS if key in data}
    if creating:
        for required in ("map_name", "document_type", "direction"):
            if not values.get(required):
                raise ConfigurationError(f"{required} is required")
    _check_choice("document_type", values.get("document_type"), DOCUMENT_TYPES)
    _check_choice("direction", values.get("direction"), DIRECTIONS)

    if "mapping_rules" in data or creating:
        # Unknown transforms are rejected here, never at apply time
        values["mapping_rules"] = dump_rules(validate_rules(data.get("mapping_rules") or []))
    return values
