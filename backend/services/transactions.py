"""
EDI Transaction Service — the exchange state machine.

    pending → processing → completed | failed → acknowledged (inbound only)

Inbound:  persist(processing) → parse → inbound map → ERP process_<doc>
          → completed | failed
Outbound: ERP generate_<doc> → outbound map (reversed) → X12 / generic
          serialize → persist(completed | failed) → optional dispatch
Acknowledge: completed inbound T → new outbound 997 T'; T.ack → T',
          T'.ack → T, T becomes acknowledged
Reprocess: re-run the inbound pipeline on stored raw content

No pipeline returns with its row still in ``processing``: every exception
past row creation is written to ``error_message`` with status=failed.
Delivery failures never revert a completed outbound document.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select, update

from core.config import Settings, get_settings
from core.errors import ConfigurationError, EdiError, FormatError, IntegrityError, InvalidStateError, NotFoundError
from db.models import DOCUMENT_TYPES, FORMATS, EdiTransaction
from edi import flat_formats
from edi.field_mapping import apply_field_mappings, reverse_field_mappings
from edi.transaction_sets import AcknowledgmentHeader, build_997, build_transaction_set, extract_rows, generate_997
from edi.x12_generator import EnvelopeParties, X12Generator
from edi.x12_parser import X12Parser
from integrations.as2_adapter import open_signed_entity, receive_message
from integrations.base import DispatchResult, get_adapter, has_adapter
from integrations.mdn import GeneratedMdn, MdnReceipt, generate_mdn, parse_mdn
from services.configuration import (
    ConfigurationService,
    PartnerSnapshot,
    SettingsSnapshot,
    channel_config,
)
from services.erp import ERP_DOCUMENT_TYPES, ErpGateway, generate_document, load_gateway, process_document
from services.numbering import (
    INTERCHANGE_CONTROL_SEQUENCE,
    TRANSACTION_SEQUENCE,
    format_transaction_number,
    next_sequence_value,
)

logger = structlog.get_logger()

AS2_SYSTEM_USER = "as2"


def _as2_id(value: str | None) -> str:
    return (value or "").strip().strip('"')


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, EdiError):
        return exc.message
    return str(exc) or exc.__class__.__name__


class EdiTransactionService:
    """Create, acknowledge, reprocess and deliver EDI transactions."""

    def __init__(
        self,
        session_factory,
        erp: ErpGateway | None = None,
        configuration: ConfigurationService | None = None,
        adapter_factory: Callable[..., Any] = get_adapter,
        app_settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self._erp = erp
        self.configuration = configuration or ConfigurationService(session_factory)
        self.adapter_factory = adapter_factory
        self.app_settings = app_settings or get_settings()

    @property
    def erp(self) -> ErpGateway:
        if self._erp is None:
            self._erp = load_gateway(self.app_settings.erp_gateway)
        return self._erp

    # ── Queries ──────────────────────────────────────────────────────────

    async def get_transaction(self, tenant_id, transaction_id) -> EdiTransaction:
        async with self.session_factory() as session:
            result = await session.execute(
                select(EdiTransaction).where(
                    EdiTransaction.tenant_id == tenant_id,
                    EdiTransaction.transaction_id == transaction_id,
                )
            )
            txn = result.scalar_one_or_none()
        if txn is None:
            raise NotFoundError("EDI transaction", transaction_id)
        return txn

    async def list_transactions(
        self,
        tenant_id,
        partner_id=None,
        status: str | None = None,
        document_type: str | None = None,
        direction: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[EdiTransaction]:
        query = select(EdiTransaction).where(EdiTransaction.tenant_id == tenant_id)
        if partner_id:
            query = query.where(EdiTransaction.partner_id == partner_id)
        if status:
            query = query.where(EdiTransaction.status == status)
        if document_type:
            query = query.where(EdiTransaction.document_type == document_type)
        if direction:
            query = query.where(EdiTransaction.direction == direction)
        query = query.order_by(EdiTransaction.created_at.desc()).offset(skip).limit(limit)
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # ── Inbound ──────────────────────────────────────────────────────────

    async def create_inbound(
        self,
        tenant_id,
        user_id: str,
        partner_id,
        document_type: str,
        raw_content: str,
        format: str | None = None,
        filename: str | None = None,
        as2_message_id: str | None = None,
    ) -> EdiTransaction:
        """Persist an inbound document and run it through the pipeline.

        Raises NotFoundError / ConfigurationError before any row is
        written (unknown partner, inactive partner, bad type/format).
        Everything after that ends in completed or failed.
        """
        if document_type not in DOCUMENT_TYPES:
            raise ConfigurationError(f"Unsupported document type: {document_type}")
        partner = await self.configuration.load_partner_snapshot(tenant_id, partner_id)
        if not partner.can_exchange:
            raise ConfigurationError(
                f"Trading partner '{partner.partner_code}' is {partner.status} and cannot exchange documents"
            )
        fmt = (format or partner.default_format).lower()
        if fmt not in FORMATS:
            raise ConfigurationError(f"Unsupported format: {fmt}")

        transaction_number = await self._next_transaction_number(tenant_id)
        async with self.session_factory() as session:
            txn = EdiTransaction(
                tenant_id=tenant_id,
                transaction_number=transaction_number,
                partner_id=partner.partner_id,
                document_type=document_type,
                direction="inbound",
                format=fmt,
                status="processing",
                raw_content=raw_content,
                filename=filename,
                as2_message_id=as2_message_id,
                processed_by=user_id,
            )
            session.add(txn)
            await session.commit()
            transaction_id = txn.transaction_id

        await self._run_inbound(tenant_id, user_id, transaction_id, partner, document_type, fmt, raw_content)
        return await self.get_transaction(tenant_id, transaction_id)

    async def reprocess(self, tenant_id, user_id: str, transaction_id) -> EdiTransaction:
        """Re-run the inbound pipeline on stored raw content, whatever the status or direction.

        An outbound document keeps its sales order link; the ERP record from
        the re-run is kept as ``record_number`` only.
        """
        txn = await self.get_transaction(tenant_id, transaction_id)
        if not txn.raw_content:
            raise InvalidStateError(f"Transaction {txn.transaction_number} has no raw content to reprocess")
        partner = await self.configuration.load_partner_snapshot(tenant_id, txn.partner_id)

        await self._update(transaction_id, status="processing", error_message=None, processed_by=user_id)
        logger.info(
            "edi.reprocess.started",
            tenant_id=str(tenant_id),
            transaction_number=txn.transaction_number,
            direction=txn.direction,
        )
        await self._run_inbound(
            tenant_id,
            user_id,
            transaction_id,
            partner,
            txn.document_type,
            txn.format,
            txn.raw_content,
            link_purchase_order=txn.sales_order_id is None,
        )
        return await self.get_transaction(tenant_id, transaction_id)

    async def _run_inbound(
        self,
        tenant_id,
        user_id: str,
        transaction_id,
        partner: PartnerSnapshot,
        document_type: str,
        fmt: str,
        raw_content: str,
        link_purchase_order: bool = True,
    ) -> None:
        values: dict[str, Any] = {"parsed_content": None}
        try:
            rows, control_number = self._parse_inbound(document_type, fmt, raw_content)
            values["control_number"] = control_number

            rules = await self.configuration.resolve_map(tenant_id, document_type, "inbound", partner.partner_id)
            if rules:
                rows = apply_field_mappings(rows, rules)
            values["parsed_content"] = json.dumps(rows, default=str)

            if document_type in ERP_DOCUMENT_TYPES:
                result = await process_document(self.erp, document_type, rows, str(tenant_id), user_id)
                if not result.success:
                    raise IntegrityError("; ".join(result.errors) or f"ERP rejected the {document_type} document")
                if link_purchase_order:
                    values["purchase_order_id"] = result.record_id
                values["record_number"] = result.record_number

            values.update(status="completed", error_message=None)
            logger.info(
                "edi.inbound.completed",
                tenant_id=str(tenant_id),
                transaction_id=str(transaction_id),
                document_type=document_type,
                rows=len(rows),
            )
        except Exception as exc:
            logger.error(
                "edi.inbound.failed",
                tenant_id=str(tenant_id),
                transaction_id=str(transaction_id),
                document_type=document_type,
                error=_error_text(exc),
                error_type=type(exc).__name__,
            )
            values.update(status="failed", error_message=_error_text(exc))

        values["processed_at"] = datetime.utcnow()
        await self._update(transaction_id, **values)

    @staticmethod
    def _parse_inbound(document_type: str, fmt: str, raw_content: str) -> tuple[list[dict[str, Any]], str | None]:
        if fmt != "x12":
            return flat_formats.parse_document(raw_content, fmt), None

        interchange = X12Parser.parse(raw_content)
        sets = [
            ts
            for ts in interchange.transaction_sets
            if document_type == "custom" or ts.transaction_type == document_type
        ]
        if not sets:
            found = sorted({ts.transaction_type for ts in interchange.transaction_sets}) or ["none"]
            raise FormatError(f"Interchange has no {document_type} transaction set (found {', '.join(found)})")
        rows = [row for ts in sets for row in extract_rows(ts)]
        return rows, interchange.control_number

    # ── Outbound ─────────────────────────────────────────────────────────

    async def create_outbound(
        self,
        tenant_id,
        user_id: str,
        partner_id,
        document_type: str,
        source_record_id: str,
        format: str | None = None,
        send_via: str | None = None,
    ) -> EdiTransaction:
        """Generate a document from an ERP record, persist it, optionally deliver it."""
        if document_type not in ERP_DOCUMENT_TYPES:
            raise ConfigurationError(f"Outbound generation supports {', '.join(ERP_DOCUMENT_TYPES)}, not {document_type}")
        partner = await self.configuration.load_partner_snapshot(tenant_id, partner_id)
        if not partner.can_exchange:
            raise ConfigurationError(
                f"Trading partner '{partner.partner_code}' is {partner.status} and cannot exchange documents"
            )
        settings = await self.configuration.load_settings_snapshot(tenant_id)
        fmt = (format or partner.default_format).lower()
        if fmt not in FORMATS:
            raise ConfigurationError(f"Unsupported format: {fmt}")

        transaction_number = await self._next_transaction_number(tenant_id)
        link_field = "purchase_order_id" if document_type == "850" else "sales_order_id"
        values: dict[str, Any] = {
            "tenant_id": tenant_id,
            "transaction_number": transaction_number,
            "partner_id": partner.partner_id,
            "document_type": document_type,
            "direction": "outbound",
            "format": fmt,
            "filename": f"{transaction_number}_{document_type}.{flat_formats.FILE_EXTENSIONS[fmt]}",
            "processed_by": user_id,
            "processed_at": datetime.utcnow(),
            link_field: source_record_id,
        }
        try:
            generated = await generate_document(self.erp, document_type, source_record_id)
            rows = generated.rows
            rules = await self.configuration.resolve_map(tenant_id, document_type, "outbound", partner.partner_id)
            if rules:
                rows = reverse_field_mappings(rows, rules)
            record_number = generated.metadata.record_number or str(source_record_id)

            if fmt == "x12":
                segments = build_transaction_set(document_type, rows, record_number)
                raw_content, control_number = await self._envelope(tenant_id, document_type, segments, partner, settings)
            else:
                raw_content, control_number = flat_formats.generate_document(rows, fmt), None

            values.update(
                status="completed",
                raw_content=raw_content,
                parsed_content=json.dumps(rows, default=str),
                control_number=control_number,
                record_number=record_number,
            )
            values[link_field] = generated.metadata.record_id or source_record_id
        except Exception as exc:
            logger.error(
                "edi.outbound.failed",
                tenant_id=str(tenant_id),
                document_type=document_type,
                source_record_id=str(source_record_id),
                error=_error_text(exc),
            )
            values.update(status="failed", error_message=_error_text(exc))

        async with self.session_factory() as session:
            txn = EdiTransaction(**values)
            session.add(txn)
            await session.commit()
            transaction_id = txn.transaction_id

        if values["status"] == "completed":
            logger.info(
                "edi.outbound.completed",
                tenant_id=str(tenant_id),
                transaction_number=transaction_number,
                document_type=document_type,
            )
            if send_via:
                await self._maybe_dispatch(tenant_id, transaction_id, partner, settings, send_via, values)
        return await self.get_transaction(tenant_id, transaction_id)

    async def _maybe_dispatch(
        self,
        tenant_id,
        transaction_id,
        partner: PartnerSnapshot,
        settings: SettingsSnapshot,
        send_via: str,
        values: Mapping[str, Any],
    ) -> None:
        if send_via != partner.communication_method:
            logger.warning(
                "edi.outbound.send_via_mismatch",
                transaction_id=str(transaction_id),
                send_via=send_via,
                partner_channel=partner.communication_method,
            )
            return
        if not has_adapter(send_via):
            return
        await self._dispatch(
            tenant_id,
            transaction_id,
            partner,
            settings,
            values["filename"],
            values["raw_content"],
            values["format"],
        )

    async def send(self, tenant_id, user_id: str, transaction_id) -> EdiTransaction:
        """(Re)deliver an already generated outbound document over the partner's channel."""
        txn = await self.get_transaction(tenant_id, transaction_id)
        if txn.direction != "outbound" or txn.status != "completed":
            raise InvalidStateError(
                f"Only completed outbound transactions can be sent ({txn.direction}, {txn.status})"
            )
        if not txn.raw_content:
            raise InvalidStateError(f"Transaction {txn.transaction_number} has no content to send")
        partner = await self.configuration.load_partner_snapshot(tenant_id, txn.partner_id)
        if not has_adapter(partner.communication_method):
            raise ConfigurationError(
                f"Partner '{partner.partner_code}' uses {partner.communication_method}; nothing to send over"
            )
        settings = await self.configuration.load_settings_snapshot(tenant_id)
        extension = flat_formats.FILE_EXTENSIONS[txn.format]
        filename = txn.filename or f"{txn.transaction_number}_{txn.document_type}.{extension}"
        await self._dispatch(tenant_id, transaction_id, partner, settings, filename, txn.raw_content, txn.format)
        return await self.get_transaction(tenant_id, transaction_id)

    async def _dispatch(
        self,
        tenant_id,
        transaction_id,
        partner: PartnerSnapshot,
        settings: SettingsSnapshot,
        filename: str,
        content: str,
        fmt: str,
    ) -> DispatchResult:
        """Deliver and record the outcome; only error_message / as2_message_id change."""
        try:
            adapter = self.adapter_factory(
                partner.communication_method,
                tenant_id,
                channel_config(partner, settings, self.app_settings),
            )
            result = await adapter.send(filename, content, content_type=flat_formats.CONTENT_TYPES[fmt])
        except Exception as exc:
            result = DispatchResult(success=False, error=_error_text(exc)).complete()

        values: dict[str, Any] = {"error_message": None if result.success else result.error}
        if result.message_id:
            values["as2_message_id"] = result.message_id
        await self._update(transaction_id, **values)

        if result.success:
            logger.info(
                "edi.outbound.dispatched",
                transaction_id=str(transaction_id),
                channel=partner.communication_method,
                message_id=result.message_id,
            )
        else:
            logger.warning(
                "edi.outbound.dispatch_failed",
                transaction_id=str(transaction_id),
                channel=partner.communication_method,
                error=result.error,
                error_kind=result.error_kind.value if result.error_kind else None,
            )
        return result

    # ── Acknowledgment ───────────────────────────────────────────────────

    async def acknowledge(self, tenant_id, user_id: str, transaction_id, accepted: bool = True) -> EdiTransaction:
        """Generate a 997 for a completed inbound transaction and link the pair."""
        original = await self.get_transaction(tenant_id, transaction_id)
        if original.direction != "inbound" or original.status != "completed":
            raise InvalidStateError(
                f"Only completed inbound transactions can be acknowledged "
                f"({original.transaction_number} is {original.direction}/{original.status})"
            )
        partner = await self.configuration.load_partner_snapshot(tenant_id, original.partner_id)
        settings = await self.configuration.load_settings_snapshot(tenant_id)

        control_number = None
        if original.format == "x12":
            interchange = X12Parser.parse(original.raw_content or "")
            if not interchange.functional_groups:
                raise FormatError(f"Transaction {original.transaction_number} has no functional group to acknowledge")
            group = interchange.functional_groups[0]
            lines = [
                {
                    "line_number": str(index),
                    "transaction_type": ts.transaction_type,
                    "control_number": ts.control_number,
                    "status": "A" if accepted else "R",
                }
                for index, ts in enumerate(group.transaction_sets, start=1)
            ]
            header = AcknowledgmentHeader(
                functional_code=group.functional_code,
                group_control_number=group.control_number,
                accepted=accepted,
            )
            rows = [
                {
                    "functional_code": header.functional_code,
                    "group_control_number": header.group_control_number,
                    "group_status": "A" if accepted else "R",
                    **line,
                }
                for line in lines
            ]
            content, control_number = await self._envelope(tenant_id, "997", build_997(header, lines), partner, settings)
        else:
            rows = generate_997(original.transaction_number, original.document_type, accepted)
            content = flat_formats.generate_document(rows, original.format)

        transaction_number = await self._next_transaction_number(tenant_id)
        async with self.session_factory() as session:
            async with session.begin():
                current = await session.get(EdiTransaction, original.transaction_id, with_for_update=True)
                if current is None or current.status != "completed":
                    raise InvalidStateError(f"Transaction {original.transaction_number} changed state; not acknowledged")

                ack = EdiTransaction(
                    tenant_id=tenant_id,
                    transaction_number=transaction_number,
                    partner_id=original.partner_id,
                    document_type="997",
                    direction="outbound",
                    format=original.format,
                    status="completed",
                    raw_content=content,
                    parsed_content=json.dumps(rows),
                    filename=f"{transaction_number}_997.{flat_formats.FILE_EXTENSIONS[original.format]}",
                    control_number=control_number,
                    acknowledgment_id=original.transaction_id,
                    processed_at=datetime.utcnow(),
                    processed_by=user_id,
                )
                session.add(ack)
                await session.flush()
                current.status = "acknowledged"
                current.acknowledgment_id = ack.transaction_id
                ack_id = ack.transaction_id

        logger.info(
            "edi.acknowledged",
            tenant_id=str(tenant_id),
            transaction_number=original.transaction_number,
            acknowledgment_number=transaction_number,
            accepted=accepted,
        )
        return await self.get_transaction(tenant_id, ack_id)

    # ── AS2 inbound / async MDN ──────────────────────────────────────────

    async def receive_as2(self, body: bytes, headers: Mapping[str, str]) -> tuple[EdiTransaction | None, GeneratedMdn]:
        """Ingest one AS2 POST and build the MDN to return for it."""
        lowered = {k.lower(): v for k, v in headers.items()}
        message_id = lowered.get("message-id", "")
        as2_from = _as2_id(lowered.get("as2-from"))
        as2_to = _as2_id(lowered.get("as2-to"))
        mic = None
        algorithm = "sha256"
        txn = None
        try:
            if not as2_from:
                raise ConfigurationError("AS2-From header is missing")
            partner = await self.configuration.find_partner_by_as2_id(as2_from, as2_to or None)
            settings = await self.configuration.load_settings_snapshot(partner.tenant_id)
            algorithm = partner.signature_algorithm
            inbound = receive_message(
                body,
                headers,
                company_certificate=settings.company_certificate,
                company_private_key=settings.company_private_key,
                partner_certificate=partner.partner_certificate,
                signature_algorithm=algorithm,
            )
            mic = inbound.mic
            fmt = flat_formats.infer_format(inbound.filename, partner.default_format, inbound.content)
            document_type = flat_formats.infer_document_type(inbound.content, fmt, inbound.filename)
            txn = await self.create_inbound(
                partner.tenant_id,
                AS2_SYSTEM_USER,
                partner.partner_id,
                document_type,
                inbound.content,
                format=fmt,
                filename=inbound.filename,
                as2_message_id=message_id or None,
            )
            success, error = txn.status == "completed", txn.error_message
        except EdiError as exc:
            logger.warning("as2.receive.rejected", as2_from=as2_from, message_id=message_id, error=exc.message)
            success, error = False, exc.message
        except Exception:
            logger.exception("as2.receive.unexpected_error", as2_from=as2_from, message_id=message_id)
            success, error = False, "unexpected-processing-error"

        mdn = generate_mdn(
            original_message_id=message_id,
            recipient_as2_id=as2_to or "unknown",
            mic=mic,
            success=success,
            error=error,
            algorithm=algorithm,
            reporting_ua=self.app_settings.as2_reporting_ua,
            message_id_domain=self.app_settings.as2_message_id_domain,
        )
        return txn, mdn

    async def record_async_mdn(self, body: bytes, headers: Mapping[str, str]) -> tuple[EdiTransaction, MdnReceipt]:
        """Attach a late MDN to its outbound transaction; status is left unchanged.

        The MDN must come from the partner the original message went to
        (matching AS2-From) and be signed with that partner's certificate.
        """
        lowered = {k.lower(): v for k, v in headers.items()}
        content_type = lowered.get("content-type", "text/plain")
        entity = f"Content-Type: {content_type}\r\n\r\n".encode() + body

        receipt = parse_mdn(entity.decode("utf-8", errors="replace"))
        if receipt is None:
            raise FormatError("Request body is not a disposition notification")
        if not receipt.original_message_id:
            raise FormatError("MDN has no Original-Message-ID")

        async with self.session_factory() as session:
            result = await session.execute(
                select(EdiTransaction).where(
                    EdiTransaction.as2_message_id == receipt.original_message_id,
                    EdiTransaction.direction == "outbound",
                )
            )
            txn = result.scalars().first()
        if txn is None:
            raise NotFoundError("AS2 message", receipt.original_message_id)

        partner = await self.configuration.load_partner_snapshot(txn.tenant_id, txn.partner_id)
        if not partner.as2_id or _as2_id(lowered.get("as2-from")) != partner.as2_id:
            raise FormatError("MDN AS2-From does not match the partner the message was sent to")
        signed_part = open_signed_entity(entity, partner.partner_certificate)
        signed_receipt = parse_mdn(signed_part.decode("utf-8", errors="replace"))
        if signed_receipt is None or signed_receipt.original_message_id != receipt.original_message_id:
            raise FormatError("Signed MDN content does not carry the disposition")

        error = None if signed_receipt.processed else f"Partner MDN reported failure: {signed_receipt.error}"
        await self._update(txn.transaction_id, error_message=error)
        logger.info(
            "as2.mdn.recorded",
            transaction_id=str(txn.transaction_id),
            processed=signed_receipt.processed,
            disposition=signed_receipt.disposition,
        )
        return await self.get_transaction(txn.tenant_id, txn.transaction_id), signed_receipt

    # ── Connection test ──────────────────────────────────────────────────

    async def test_partner_connection(self, tenant_id, partner_id) -> DispatchResult:
        partner = await self.configuration.load_partner_snapshot(tenant_id, partner_id)
        if not has_adapter(partner.communication_method):
            return DispatchResult(success=True, metadata={"message": "No connection test needed"}).complete()
        settings = await self.configuration.load_settings_snapshot(tenant_id)
        adapter = self.adapter_factory(
            partner.communication_method,
            tenant_id,
            channel_config(partner, settings, self.app_settings),
        )
        return await adapter.test_connection()

    # ── Internals ────────────────────────────────────────────────────────

    async def _next_transaction_number(self, tenant_id) -> str:
        value = await next_sequence_value(self.session_factory, tenant_id, TRANSACTION_SEQUENCE)
        return format_transaction_number(
            value,
            prefix=self.app_settings.edi_transaction_prefix,
            width=self.app_settings.edi_transaction_number_width,
        )

    async def _envelope(
        self,
        tenant_id,
        document_type: str,
        segments: list[str],
        partner: PartnerSnapshot,
        settings: SettingsSnapshot,
    ) -> tuple[str, str]:
        app = self.app_settings
        parties = EnvelopeParties(
            sender_id=settings.company_isa_id or settings.company_as2_id or app.x12_default_sender_id,
            receiver_id=partner.isa_id or partner.as2_id or app.x12_default_receiver_id,
            sender_qualifier=settings.company_isa_qualifier or "ZZ",
            receiver_qualifier=partner.isa_qualifier or "ZZ",
            sender_gs_id=settings.company_gs_id,
            receiver_gs_id=partner.gs_id,
        )
        control_number = await next_sequence_value(self.session_factory, tenant_id, INTERCHANGE_CONTROL_SEQUENCE)
        generator = X12Generator(
            version=app.x12_interchange_version,
            group_version=app.x12_group_version,
            usage_indicator=app.x12_usage_indicator,
        )
        content = generator.build_interchange(document_type, segments, parties, control_number=control_number)
        return content, f"{control_number:09d}"

    async def _update(self, transaction_id, **values: Any) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(EdiTransaction).where(EdiTransaction.transaction_id == transaction_id).values(**values)
            )
            await session.commit()

