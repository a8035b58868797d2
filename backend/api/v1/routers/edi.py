"""
EDI Router — transactions, trading partners, document maps, settings.

Transactions:
  GET  /transactions                     list (newest first)
  GET  /transactions/{id}                detail incl. raw / parsed content
  POST /transactions/inbound             receive a document (upload / API)
  POST /transactions/outbound            generate from an ERP record, optionally send
  POST /transactions/{id}/acknowledge    997 for a completed inbound document
  POST /transactions/{id}/reprocess      re-run the inbound pipeline
  POST /transactions/{id}/send           (re)deliver an outbound document

Partners / maps / settings are plain CRUD; partner and settings writes
refresh the SFTP polling scheduler.
"""

import json
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field, field_validator

from api.deps import get_configuration_service, get_current_user, get_tenant_id, get_transaction_service
from services.configuration import ConfigurationService
from services.transactions import EdiTransactionService

router = APIRouter(prefix="/api/v1/edi", tags=["edi"])

DocumentType = Literal["850", "855", "810", "856", "997", "custom"]
ErpDocumentType = Literal["850", "810", "856"]
DocumentFormat = Literal["csv", "xml", "json", "x12"]
Direction = Literal["inbound", "outbound"]
Transform = Literal["uppercase", "lowercase", "trim", "number", "date", "boolean"]


# ─── Schemas ────────────────────────────────────────────────────────────────


class TransactionResponse(BaseModel):
    transaction_id: UUID
    tenant_id: UUID
    transaction_number: str
    partner_id: UUID
    document_type: str
    direction: str
    format: str
    status: str
    filename: str | None
    sales_order_id: str | None
    purchase_order_id: str | None
    record_number: str | None
    error_message: str | None
    as2_message_id: str | None
    control_number: str | None
    acknowledgment_id: UUID | None
    processed_at: datetime | None
    processed_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TransactionDetail(TransactionResponse):
    raw_content: str | None
    parsed_content: list[dict[str, Any]] | None

    @field_validator("parsed_content", mode="before")
    @classmethod
    def _decode_rows(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value


class InboundRequest(BaseModel):
    partner_id: UUID
    document_type: DocumentType
    raw_content: str = Field(..., min_length=1)
    format: DocumentFormat | None = None  # partner default when omitted
    filename: str | None = None


class OutboundRequest(BaseModel):
    partner_id: UUID
    document_type: ErpDocumentType
    source_record_id: str = Field(..., min_length=1)
    format: DocumentFormat | None = None
    send_via: Literal["as2", "sftp"] | None = None


class AcknowledgeRequest(BaseModel):
    accepted: bool = True


class PartnerFields(BaseModel):
    partner_name: str | None = None
    partner_type: Literal["customer", "vendor", "both"] | None = None
    customer_id: str | None = None
    vendor_id: str | None = None
    communication_method: Literal["manual", "api", "sftp", "as2", "email"] | None = None
    default_format: DocumentFormat | None = None
    status: Literal["active", "inactive", "testing", "suspended"] | None = None
    isa_qualifier: str | None = Field(None, max_length=2)
    isa_id: str | None = Field(None, max_length=15)
    gs_id: str | None = Field(None, max_length=15)
    as2_id: str | None = None
    as2_url: str | None = None
    partner_certificate: str | None = None
    encryption_algorithm: Literal["aes128", "aes256", "none"] | None = None
    signature_algorithm: Literal["sha1", "sha256", "sha384", "sha512"] | None = None
    sftp_host: str | None = None
    sftp_port: int | None = Field(None, ge=1, le=65535)
    sftp_username: str | None = None
    sftp_password: str | None = None  # write-only
    sftp_private_key: str | None = None  # write-only
    sftp_remote_dir: str | None = None
    sftp_outgoing_dir: str | None = None
    sftp_poll_schedule: str | None = None
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    notes: str | None = None
    is_active: bool | None = None


class PartnerCreate(PartnerFields):
    partner_code: str = Field(..., min_length=1, max_length=50)
    partner_name: str = Field(..., min_length=1, max_length=255)


class PartnerUpdate(PartnerFields):
    partner_code: str | None = Field(None, min_length=1, max_length=50)


class PartnerResponse(BaseModel):
    partner_id: UUID
    tenant_id: UUID
    partner_code: str
    partner_name: str
    partner_type: str
    customer_id: str | None
    vendor_id: str | None
    communication_method: str
    default_format: str
    status: str
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
    sftp_remote_dir: str | None
    sftp_outgoing_dir: str | None
    sftp_poll_schedule: str | None
    contact_name: str | None
    contact_email: str | None
    contact_phone: str | None
    notes: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None
    error_kind: str | None = None


class MappingRuleSchema(BaseModel):
    source_field: str = Field(..., min_length=1)
    target_field: str = Field(..., min_length=1)
    transform: Transform | None = None
    default_value: Any = None


class MapCreate(BaseModel):
    partner_id: UUID | None = None
    map_name: str = Field(..., min_length=1, max_length=255)
    document_type: DocumentType
    direction: Direction
    mapping_rules: list[MappingRuleSchema] = []
    is_default: bool = False
    is_active: bool = True


class MapUpdate(BaseModel):
    partner_id: UUID | None = None
    map_name: str | None = Field(None, min_length=1, max_length=255)
    document_type: DocumentType | None = None
    direction: Direction | None = None
    mapping_rules: list[MappingRuleSchema] | None = None
    is_default: bool | None = None
    is_active: bool | None = None


class MapResponse(BaseModel):
    map_id: UUID
    tenant_id: UUID
    partner_id: UUID | None
    map_name: str
    document_type: str
    direction: str
    mapping_rules: list[MappingRuleSchema]
    is_default: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("mapping_rules", mode="before")
    @classmethod
    def _decode_rules(cls, value):
        if isinstance(value, str):
            return json.loads(value)
        return value


class SettingsPayload(BaseModel):
    company_isa_qualifier: str | None = Field(None, max_length=2)
    company_isa_id: str | None = Field(None, max_length=15)
    company_gs_id: str | None = Field(None, max_length=15)
    company_as2_id: str | None = None
    company_certificate: str | None = None
    company_private_key: str | None = None  # write-only; mask value = unchanged
    auto_acknowledge_997: bool | None = None
    auto_create_sales_orders: bool | None = None
    auto_generate_on_approval: bool | None = None
    default_format: DocumentFormat | None = None
    retention_days: int | None = Field(None, gt=0)
    sftp_polling_enabled: bool | None = None
    sftp_polling_interval_minutes: int | None = Field(None, gt=0)


class SettingsResponse(BaseModel):
    tenant_id: UUID
    company_isa_qualifier: str
    company_isa_id: str | None
    company_gs_id: str | None
    company_as2_id: str | None
    company_certificate: str | None
    company_private_key: str | None  # always masked
    auto_acknowledge_997: bool
    auto_create_sales_orders: bool
    auto_generate_on_approval: bool
    default_format: str
    retention_days: int
    sftp_polling_enabled: bool
    sftp_polling_interval_minutes: int


def _user_id(user: dict) -> str:
    return str(user.get("sub") or user.get("email") or "api")


# ─── Transactions ───────────────────────────────────────────────────────────


@router.get("/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    partner_id: UUID | None = None,
    status: str | None = None,
    document_type: str | None = None,
    direction: Direction | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    tenant_id: UUID = Depends(get_tenant_id),
    service: EdiTransactionService = Depends(get_transaction_service),
):
    return await service.list_transactions(
        tenant_id,
        partner_id=partner_id,
        status=status,
        document_type=document_type,
        direction=direction,
        skip=skip,
        limit=limit,
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionDetail)
async def get_transaction(
    transaction_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    service: EdiTransactionService = Depends(get_transaction_service),
):
    return await service.get_transaction(tenant_id, transaction_id)


@router.post("/transactions/inbound", response_model=TransactionDetail, status_code=status.HTTP_201_CREATED)
async def create_inbound_transaction(
    body: InboundRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    user: dict = Depends(get_current_user),
    service: EdiTransactionService = Depends(get_transaction_service),
):
    """Receive a document; the response carries the terminal status (completed / failed)."""
    return await service.create_inbound(
        tenant_id,
        _user_id(user),
        body.partner_id,
        body.document_type,
        body.raw_content,
        format=body.format,
        filename=body.filename,
    )


@router.post("/transactions/outbound", response_model=TransactionDetail, status_code=status.HTTP_201_CREATED)
async def create_outbound_transaction(
    body: OutboundRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    user: dict = Depends(get_current_user),
    service: EdiTransactionService = Depends(get_transaction_service),
):
    return await service.create_outbound(
        tenant_id,
        _user_id(user),
        body.partner_id,
        body.document_type,
        body.source_record_id,
        format=body.format,
        send_via=body.send_via,
    )


@router.post("/transactions/{transaction_id}/acknowledge", response_model=TransactionDetail)
async def acknowledge_transaction(
    transaction_id: UUID,
    body: AcknowledgeRequest | None = None,
    tenant_id: UUID = Depends(get_tenant_id),
    user: dict = Depends(get_current_user),
    service: EdiTransactionService = Depends(get_transaction_service),
):
    """Returns the new 997 transaction."""
    accepted = body.accepted if body else True
    return await service.acknowledge(tenant_id, _user_id(user), transaction_id, accepted=accepted)


@router.post("/transactions/{transaction_id}/reprocess", response_model=TransactionDetail)
async def reprocess_transaction(
    transaction_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    user: dict = Depends(get_current_user),
    service: EdiTransactionService = Depends(get_transaction_service),
):
    return await service.reprocess(tenant_id, _user_id(user), transaction_id)


@router.post("/transactions/{transaction_id}/send", response_model=TransactionDetail)
async def send_transaction(
    transaction_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    user: dict = Depends(get_current_user),
    service: EdiTransactionService = Depends(get_transaction_service),
):
    return await service.send(tenant_id, _user_id(user), transaction_id)


# ─── Trading Partners ───────────────────────────────────────────────────────


@router.get("/partners", response_model=list[PartnerResponse])
async def list_partners(
    status: str | None = None,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.list_partners(tenant_id, status=status)


@router.post("/partners", response_model=PartnerResponse, status_code=status.HTTP_201_CREATED)
async def create_partner(
    body: PartnerCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.create_partner(tenant_id, body.model_dump(exclude_none=True))


@router.get("/partners/{partner_id}", response_model=PartnerResponse)
async def get_partner(
    partner_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.get_partner(tenant_id, partner_id)


@router.patch("/partners/{partner_id}", response_model=PartnerResponse)
async def update_partner(
    partner_id: UUID,
    body: PartnerUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.update_partner(tenant_id, partner_id, body.model_dump(exclude_unset=True))


@router.delete("/partners/{partner_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_partner(
    partner_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    await config.delete_partner(tenant_id, partner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/partners/{partner_id}/test-connection", response_model=ConnectionTestResponse)
async def test_partner_connection(
    partner_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    service: EdiTransactionService = Depends(get_transaction_service),
):
    result = await service.test_partner_connection(tenant_id, partner_id)
    return ConnectionTestResponse(
        success=result.success,
        message=result.metadata.get("message"),
        error=result.error,
        error_kind=result.error_kind.value if result.error_kind else None,
    )


# ─── Document Maps ──────────────────────────────────────────────────────────


@router.get("/maps", response_model=list[MapResponse])
async def list_maps(
    document_type: str | None = None,
    direction: Direction | None = None,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.list_maps(tenant_id, document_type=document_type, direction=direction)


@router.post("/maps", response_model=MapResponse, status_code=status.HTTP_201_CREATED)
async def create_map(
    body: MapCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.create_map(tenant_id, body.model_dump())


@router.get("/maps/{map_id}", response_model=MapResponse)
async def get_map(
    map_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.get_map(tenant_id, map_id)


@router.patch("/maps/{map_id}", response_model=MapResponse)
async def update_map(
    map_id: UUID,
    body: MapUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.update_map(tenant_id, map_id, body.model_dump(exclude_unset=True))


@router.delete("/maps/{map_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_map(
    map_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    await config.delete_map(tenant_id, map_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ─── Settings ───────────────────────────────────────────────────────────────


@router.get("/settings", response_model=SettingsResponse)
async def get_edi_settings(
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    """Virtual defaults when the tenant has never saved settings."""
    return await config.get_settings(tenant_id)


@router.put("/settings", response_model=SettingsResponse)
async def put_edi_settings(
    body: SettingsPayload,
    tenant_id: UUID = Depends(get_tenant_id),
    config: ConfigurationService = Depends(get_configuration_service),
):
    return await config.upsert_settings(tenant_id, body.model_dump(exclude_unset=True))
