import asyncio
import json

import httpx
import pytest

from core.errors import ConfigurationError, FormatError, InvalidStateError, NotFoundError
from db.models import EdiTransaction
from edi.flat_formats import parse_document
from edi.x12_parser import X12Parser
from integrations.as2_adapter import AS2Adapter, As2Config, receive_message
from integrations.base import DispatchResult, ErrorKind, get_adapter
from integrations.certificates import load_certificate, load_private_key, sign_detached, split_mime
from integrations.mdn import generate_mdn, parse_mdn
from integrations.sftp_adapter import SftpConfig
from services.transactions import EdiTransactionService
from conftest import (
    COMPANY_AS2_ID,
    OTHER_TENANT_ID,
    PARTNER_AS2_ID,
    TENANT_ID,
    FakeErpGateway,
    sample_850,
)

CSV_ORDER = "po_number,item_number,quantity\nPO-1,SKU-1,3\nPO-1,SKU-2,5\n"


class RecordingAdapter:
    """Stands in for a channel adapter; returns a fixed DispatchResult."""

    def __init__(self, result: DispatchResult):
        self.result = result
        self.sent: list[tuple[str, str, str]] = []
        self.configs: list = []

    def factory(self, channel, tenant_id, config):
        self.configs.append(config)
        return self

    async def send(self, filename, content, content_type="application/edi-x12"):
        self.sent.append((filename, content, content_type))
        return self.result

    async def test_connection(self):
        return self.result


def _no_adapter(*args, **kwargs):
    raise AssertionError("no delivery expected")


def _as2_partner_endpoint(partner_identity, company_identity):
    """MockTransport handler that unwraps like the partner would and answers with a signed-MIC MDN."""
    partner_cert, partner_key = partner_identity
    company_cert, _ = company_identity
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        inbound = receive_message(
            request.content,
            dict(request.headers),
            company_certificate=partner_cert,
            company_private_key=partner_key,
            partner_certificate=company_cert,
        )
        received.append((request, inbound))
        mdn = generate_mdn(
            original_message_id=request.headers["message-id"],
            recipient_as2_id=request.headers["as2-to"],
            mic=inbound.mic,
        )
        return httpx.Response(200, content=mdn.body.encode(), headers={"Content-Type": mdn.content_type})

    return handler, received


@pytest.fixture
def service(session_factory, configuration, erp):
    return EdiTransactionService(session_factory, erp=erp, configuration=configuration, adapter_factory=_no_adapter)


# ─── Scenarios ──────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_outbound_810_over_as2_records_mdn_message_id(
    session_factory, configuration, erp, as2_setup, partner_identity, company_identity
):
    handler, received = _as2_partner_endpoint(partner_identity, company_identity)

    def as2_factory(channel, tenant_id, config):
        return get_adapter(channel, tenant_id, config, http_transport=httpx.MockTransport(handler))

    service = EdiTransactionService(session_factory, erp=erp, configuration=configuration, adapter_factory=as2_factory)
    txn = await service.create_outbound(TENANT_ID, "user-1", as2_setup.partner_id, "810", "PO-1", send_via="as2")

    assert txn.status == "completed"
    assert txn.error_message is None
    assert txn.direction == "outbound"
    assert txn.format == "x12"
    assert txn.sales_order_id == "PO-1"
    assert txn.purchase_order_id is None
    assert txn.record_number == "INV-1001"

    interchange = X12Parser.parse(txn.raw_content)
    assert interchange.sender_id == COMPANY_AS2_ID
    assert interchange.receiver_id == PARTNER_AS2_ID
    assert interchange.control_number == txn.control_number == "000000001"
    assert interchange.transaction_sets[0].transaction_type == "810"

    [(request, inbound)] = received
    assert txn.as2_message_id == request.headers["message-id"]
    assert request.headers["as2-from"] == COMPANY_AS2_ID
    assert request.headers["as2-to"] == PARTNER_AS2_ID
    assert inbound.encrypted and inbound.signed
    assert inbound.filename == txn.filename
    assert X12Parser.parse(inbound.content).control_number == "000000001"


@pytest.mark.asyncio
async def test_inbound_x12_850_without_map_completes(service, erp, make_partner):
    partner = await make_partner(default_format="x12")

    txn = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", sample_850())

    assert txn.status == "completed"
    assert txn.error_message is None
    assert txn.transaction_number == "EDI-00001"
    assert txn.control_number == "000000042"
    rows = json.loads(txn.parsed_content)
    assert len(rows) == 3
    assert [row["item_number"] for row in rows] == ["WIDGET-1", "WIDGET-2", "WIDGET-3"]
    assert txn.sales_order_id is None
    assert txn.purchase_order_id == "REC-850-1"
    assert txn.record_number == "SO-1001"
    assert txn.processed_at is not None

    [(document_type, erp_rows, tenant_id, user_id)] = erp.processed
    assert document_type == "850"
    assert erp_rows == rows
    assert tenant_id == str(TENANT_ID)
    assert user_id == "user-1"


@pytest.mark.asyncio
async def test_acknowledge_links_both_transactions(service, make_partner):
    partner = await make_partner(default_format="x12")
    original = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", sample_850())

    ack = await service.acknowledge(TENANT_ID, "user-1", original.transaction_id)

    assert ack.document_type == "997"
    assert ack.direction == "outbound"
    assert ack.status == "completed"
    assert ack.acknowledgment_id == original.transaction_id
    assert ack.transaction_number == "EDI-00002"

    original = await service.get_transaction(TENANT_ID, original.transaction_id)
    assert original.status == "acknowledged"
    assert original.acknowledgment_id == ack.transaction_id

    transaction_set = X12Parser.parse(ack.raw_content).transaction_sets[0]
    assert transaction_set.transaction_type == "997"
    assert transaction_set.find("AK1").elements == ["PO", "42"]
    assert transaction_set.find("AK2").elements == ["850", "0001"]
    assert transaction_set.find("AK5").get(1) == "A"
    assert transaction_set.find("AK9").get(1) == "A"


# ─── Inbound pipeline ───────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_erp_exception_leaves_transaction_failed(session_factory, configuration, make_partner):
    erp = FakeErpGateway(fail_with=RuntimeError("ERP database unavailable"))
    service = EdiTransactionService(session_factory, erp=erp, configuration=configuration)
    partner = await make_partner()

    txn = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", CSV_ORDER)

    assert txn.status == "failed"
    assert txn.error_message == "ERP database unavailable"
    assert txn.purchase_order_id is None
    assert len(json.loads(txn.parsed_content)) == 2


@pytest.mark.asyncio
async def test_erp_rejection_is_recorded(session_factory, configuration, make_partner):
    erp = FakeErpGateway(reject_with=["Unknown item SKU-2", "PO-1 already received"])
    service = EdiTransactionService(session_factory, erp=erp, configuration=configuration)
    partner = await make_partner()

    txn = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", CSV_ORDER)

    assert txn.status == "failed"
    assert txn.error_message == "Unknown item SKU-2; PO-1 already received"


@pytest.mark.asyncio
async def test_malformed_x12_fails_without_parsed_content(service, erp, make_partner):
    partner = await make_partner(default_format="x12")

    txn = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", "NOT AN INTERCHANGE")

    assert txn.status == "failed"
    assert "ISA" in txn.error_message
    assert txn.parsed_content is None
    assert txn.raw_content == "NOT AN INTERCHANGE"
    assert erp.processed == []


@pytest.mark.asyncio
async def test_declared_type_must_match_interchange(service, make_partner):
    partner = await make_partner(default_format="x12")

    txn = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "810", sample_850())

    assert txn.status == "failed"
    assert "no 810 transaction set" in txn.error_message


@pytest.mark.asyncio
async def test_custom_document_skips_erp(service, erp, make_partner):
    partner = await make_partner(default_format="json")

    txn = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "custom", '{"note": "hello"}')

    assert txn.status == "completed"
    assert json.loads(txn.parsed_content) == [{"note": "hello"}]
    assert erp.processed == []


@pytest.mark.asyncio
async def test_rejections_before_row_creation(service, make_partner):
    inactive = await make_partner(status="inactive")

    with pytest.raises(ConfigurationError, match="cannot exchange"):
        await service.create_inbound(TENANT_ID, "user-1", inactive.partner_id, "850", CSV_ORDER)
    with pytest.raises(NotFoundError):
        await service.create_inbound(OTHER_TENANT_ID, "user-1", inactive.partner_id, "850", CSV_ORDER)
    with pytest.raises(ConfigurationError, match="Unsupported document type"):
        await service.create_inbound(TENANT_ID, "user-1", inactive.partner_id, "940", CSV_ORDER)

    assert await service.list_transactions(TENANT_ID) == []


@pytest.mark.asyncio
async def test_inbound_map_is_applied_before_erp(service, configuration, erp, make_partner):
    partner = await make_partner()
    await configuration.create_map(
        TENANT_ID,
        {
            "partner_id": partner.partner_id,
            "map_name": "Acme inbound POs",
            "document_type": "850",
            "direction": "inbound",
            "mapping_rules": [
                {"source_field": "PO #", "target_field": "po_number", "transform": "trim"},
                {"source_field": "Qty", "target_field": "quantity", "transform": "number"},
            ],
        },
    )

    txn = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", "PO #,SKU,Qty\n PO-9 ,SKU-1,3\n")

    assert txn.status == "completed"
    expected = [{"po_number": "PO-9", "SKU": "SKU-1", "quantity": 3}]
    assert json.loads(txn.parsed_content) == expected
    assert erp.processed[0][1] == expected


@pytest.mark.asyncio
async def test_transaction_numbers_are_unique_under_concurrency(service, make_partner):
    partner = await make_partner()

    results = await asyncio.gather(
        *[service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", CSV_ORDER) for _ in range(5)]
    )

    numbers = sorted(txn.transaction_number for txn in results)
    assert numbers == ["EDI-00001", "EDI-00002", "EDI-00003", "EDI-00004", "EDI-00005"]
    assert all(txn.status == "completed" for txn in results)


@pytest.mark.asyncio
async def test_numbering_is_per_tenant(service, make_partner):
    first = await make_partner()
    second = await make_partner(tenant_id=OTHER_TENANT_ID)

    a = await service.create_inbound(TENANT_ID, "user-1", first.partner_id, "850", CSV_ORDER)
    b = await service.create_inbound(OTHER_TENANT_ID, "user-2", second.partner_id, "850", CSV_ORDER)

    assert a.transaction_number == b.transaction_number == "EDI-00001"
    with pytest.raises(NotFoundError):
        await service.get_transaction(OTHER_TENANT_ID, a.transaction_id)


@pytest.mark.asyncio
async def test_reprocess_recovers_failed_transaction(session_factory, configuration, make_partner):
    erp = FakeErpGateway(fail_with=RuntimeError("ERP offline"))
    service = EdiTransactionService(session_factory, erp=erp, configuration=configuration)
    partner = await make_partner()
    failed = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", CSV_ORDER)
    assert failed.status == "failed"

    erp.fail_with = None
    txn = await service.reprocess(TENANT_ID, "user-2", failed.transaction_id)

    assert txn.transaction_id == failed.transaction_id
    assert txn.transaction_number == failed.transaction_number
    assert txn.status == "completed"
    assert txn.error_message is None
    assert txn.purchase_order_id == "REC-850-1"
    assert txn.processed_by == "user-2"


@pytest.mark.asyncio
async def test_reprocess_runs_outbound_raw_content(service, erp, make_partner):
    partner = await make_partner()
    outbound = await service.create_outbound(TENANT_ID, "user-1", partner.partner_id, "810", "SO-1")
    assert outbound.raw_content

    txn = await service.reprocess(TENANT_ID, "user-2", outbound.transaction_id)

    assert txn.transaction_id == outbound.transaction_id
    assert txn.direction == "outbound"
    assert txn.status == "completed"
    assert txn.error_message is None
    assert txn.processed_by == "user-2"
    assert txn.sales_order_id == "SO-1"
    assert txn.purchase_order_id is None
    assert len(json.loads(txn.parsed_content)) == 2
    [(document_type, _, _, _)] = erp.processed
    assert document_type == "810"


@pytest.mark.asyncio
async def test_reprocess_requires_raw_content(service, session_factory, make_partner):
    partner = await make_partner()
    async with session_factory() as session:
        txn = EdiTransaction(
            tenant_id=TENANT_ID,
            transaction_number="EDI-00077",
            partner_id=partner.partner_id,
            document_type="810",
            direction="outbound",
            format="csv",
            status="failed",
            error_message="ERP offline",
        )
        session.add(txn)
        await session.commit()

    with pytest.raises(InvalidStateError):
        await service.reprocess(TENANT_ID, "user-1", txn.transaction_id)


# ─── Acknowledgment ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_acknowledge_generic_format(service, make_partner):
    partner = await make_partner()
    original = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", CSV_ORDER)

    ack = await service.acknowledge(TENANT_ID, "user-1", original.transaction_id, accepted=False)

    assert ack.format == "csv"
    assert ack.control_number is None
    [row] = parse_document(ack.raw_content, "csv")
    assert row["acknowledgment_code"] == "R"
    assert row["original_transaction_number"] == original.transaction_number
    assert row["original_document_type"] == "850"


@pytest.mark.asyncio
async def test_acknowledge_requires_completed_inbound(session_factory, configuration, make_partner):
    erp = FakeErpGateway()
    service = EdiTransactionService(session_factory, erp=erp, configuration=configuration)
    partner = await make_partner()
    completed = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", CSV_ORDER)
    await service.acknowledge(TENANT_ID, "user-1", completed.transaction_id)

    with pytest.raises(InvalidStateError):
        await service.acknowledge(TENANT_ID, "user-1", completed.transaction_id)

    erp.fail_with = RuntimeError("ERP offline")
    failed = await service.create_inbound(TENANT_ID, "user-1", partner.partner_id, "850", CSV_ORDER)
    with pytest.raises(InvalidStateError):
        await service.acknowledge(TENANT_ID, "user-1", failed.transaction_id)

    transactions = await service.list_transactions(TENANT_ID, document_type="997")
    assert len(transactions) == 1


# ─── Outbound / delivery ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_outbound_csv_uses_reversed_map(service, configuration, make_partner):
    partner = await make_partner()
    await configuration.create_map(
        TENANT_ID,
        {
            "map_name": "Invoice columns",
            "document_type": "810",
            "direction": "outbound",
            "is_default": True,
            "mapping_rules": [{"source_field": "SKU", "target_field": "item_number"}],
        },
    )

    txn = await service.create_outbound(TENANT_ID, "user-1", partner.partner_id, "810", "SO-77")

    assert txn.status == "completed"
    assert txn.filename == f"{txn.transaction_number}_810.csv"
    assert txn.sales_order_id == "SO-77"
    rows = parse_document(txn.raw_content, "csv")
    assert [row["SKU"] for row in rows] == ["WIDGET-1", "WIDGET-2"]
    assert "item_number" not in rows[0]


@pytest.mark.asyncio
async def test_outbound_generation_failure_is_persisted(session_factory, configuration, make_partner):
    erp = FakeErpGateway(fail_with=LookupError("Invoice SO-404 not found"))
    service = EdiTransactionService(session_factory, erp=erp, configuration=configuration, adapter_factory=_no_adapter)
    partner = await make_partner(communication_method="sftp", sftp_host="sftp.acme.test")

    txn = await service.create_outbound(TENANT_ID, "user-1", partner.partner_id, "810", "SO-404", send_via="sftp")

    assert txn.status == "failed"
    assert txn.error_message == "Invoice SO-404 not found"
    assert txn.raw_content is None
    assert txn.sales_order_id == "SO-404"


@pytest.mark.asyncio
async def test_outbound_rejects_non_erp_types(service, make_partner):
    partner = await make_partner()
    with pytest.raises(ConfigurationError):
        await service.create_outbound(TENANT_ID, "user-1", partner.partner_id, "997", "X")


@pytest.mark.asyncio
async def test_delivery_failure_keeps_document_completed(session_factory, configuration, erp, make_partner):
    adapter = RecordingAdapter(DispatchResult.failed("SFTP upload failed: Connection refused", ErrorKind.TRANSPORT))
    service = EdiTransactionService(
        session_factory, erp=erp, configuration=configuration, adapter_factory=adapter.factory
    )
    partner = await make_partner(
        communication_method="sftp",
        sftp_host="sftp.acme.test",
        sftp_username="edi",
        sftp_password="s3cret",
    )

    txn = await service.create_outbound(TENANT_ID, "user-1", partner.partner_id, "810", "SO-9", send_via="sftp")

    assert txn.status == "completed"
    assert txn.error_message == "SFTP upload failed: Connection refused"
    [config] = adapter.configs
    assert isinstance(config, SftpConfig)
    assert config.password == "s3cret"
    assert config.outgoing_dir == "/outgoing"
    [(filename, content, content_type)] = adapter.sent
    assert filename == txn.filename
    assert content == txn.raw_content
    assert content_type == "text/csv"

    adapter.result = DispatchResult(success=True).complete()
    resent = await service.send(TENANT_ID, "user-1", txn.transaction_id)

    assert resent.status == "completed"
    assert resent.error_message is None
    assert len(adapter.sent) == 2


@pytest.mark.asyncio
async def test_send_via_other_channel_is_skipped(service, make_partner):
    partner = await make_partner(communication_method="manual")

    txn = await service.create_outbound(TENANT_ID, "user-1", partner.partner_id, "810", "SO-1", send_via="as2")

    assert txn.status == "completed"
    assert txn.error_message is None
    assert txn.as2_message_id is None


@pytest.mark.asyncio
async def test_send_requires_a_channel(service, make_partner):
    partner = await make_partner(communication_method="manual")
    txn = await service.create_outbound(TENANT_ID, "user-1", partner.partner_id, "810", "SO-1")

    with pytest.raises(ConfigurationError):
        await service.send(TENANT_ID, "user-1", txn.transaction_id)


# ─── AS2 inbound ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_receive_as2_ingests_document_and_returns_mdn(
    service, erp, as2_setup, partner_identity, company_identity
):
    partner_cert, partner_key = partner_identity
    company_cert, _ = company_identity
    sender = AS2Adapter(
        "acme",
        As2Config(
            url="https://edi-exchange.test/api/v1/as2/receive",
            as2_from=PARTNER_AS2_ID,
            as2_to=COMPANY_AS2_ID,
            company_certificate=partner_cert,
            company_private_key=partner_key,
            partner_certificate=company_cert,
        ),
    )
    message = sender.build_message("acme_po.edi", sample_850().encode(), "application/edi-x12")

    txn, mdn = await service.receive_as2(message.body, message.headers)

    assert txn.status == "completed"
    assert txn.partner_id == as2_setup.partner_id
    assert txn.document_type == "850"
    assert txn.format == "x12"
    assert txn.filename == "acme_po.edi"
    assert txn.as2_message_id == message.message_id
    assert txn.processed_by == "as2"

    receipt = parse_mdn(mdn.body)
    assert receipt.processed
    assert receipt.original_message_id == message.message_id
    assert receipt.mic == message.mic
    assert mdn.content_type.startswith("multipart/report")


@pytest.mark.asyncio
async def test_receive_as2_from_unknown_partner_returns_failed_mdn(service):
    txn, mdn = await service.receive_as2(
        b"ISA*...",
        {"AS2-From": "NOBODY", "AS2-To": COMPANY_AS2_ID, "Message-ID": "<1@nobody>", "Content-Type": "application/edi-x12"},
    )

    assert txn is None
    receipt = parse_mdn(mdn.body)
    assert not receipt.processed
    assert "NOBODY" in receipt.error
    assert receipt.original_message_id == "<1@nobody>"


@pytest.mark.asyncio
async def test_receive_as2_rejects_unsigned_body(service, erp, as2_setup):
    txn, mdn = await service.receive_as2(
        sample_850().encode(),
        {
            "AS2-From": PARTNER_AS2_ID,
            "AS2-To": COMPANY_AS2_ID,
            "Message-ID": "<2@acme>",
            "Content-Type": "application/edi-x12",
        },
    )

    assert txn is None
    assert erp.processed == []
    receipt = parse_mdn(mdn.body)
    assert not receipt.processed
    assert "Unsigned AS2 content" in receipt.error


@pytest.mark.asyncio
async def test_receive_as2_unexpected_error_still_returns_mdn(service, as2_setup, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr("services.transactions.receive_message", explode)

    txn, mdn = await service.receive_as2(
        b"ISA*...",
        {"AS2-From": PARTNER_AS2_ID, "AS2-To": COMPANY_AS2_ID, "Message-ID": "<3@acme>"},
    )

    assert txn is None
    receipt = parse_mdn(mdn.body)
    assert not receipt.processed
    assert receipt.error == "unexpected-processing-error"
    assert receipt.original_message_id == "<3@acme>"


def _signed_mdn(identity, original_message_id, **kwargs):
    """Partner-signed MDN as it would be posted back: (body, Content-Type)."""
    cert, key = identity
    mdn = generate_mdn(original_message_id=original_message_id, recipient_as2_id=COMPANY_AS2_ID, mic=None, **kwargs)
    entity = f"Content-Type: {mdn.content_type}\r\n\r\n".encode() + mdn.body.encode()
    signed = sign_detached(entity, load_certificate(cert), load_private_key(key))
    signed_headers, body = split_mime(signed)
    return body, " ".join(signed_headers["Content-Type"].split())


@pytest.fixture
async def sent_over_as2(session_factory, as2_setup):
    async with session_factory() as session:
        txn = EdiTransaction(
            tenant_id=TENANT_ID,
            transaction_number="EDI-00090",
            partner_id=as2_setup.partner_id,
            document_type="810",
            direction="outbound",
            format="x12",
            status="completed",
            raw_content="ISA...",
            as2_message_id="<abc@edi-exchange>",
        )
        session.add(txn)
        await session.commit()
    return txn


@pytest.mark.asyncio
async def test_async_mdn_updates_error_only(service, sent_over_as2, partner_identity):
    body, content_type = _signed_mdn(
        partner_identity, "<abc@edi-exchange>", success=False, error="decryption-failed"
    )

    updated, receipt = await service.record_async_mdn(
        body, {"Content-Type": content_type, "AS2-From": f'"{PARTNER_AS2_ID}"'}
    )

    assert not receipt.processed
    assert updated.transaction_id == sent_over_as2.transaction_id
    assert updated.status == "completed"
    assert updated.error_message == "Partner MDN reported failure: decryption-failed"


@pytest.mark.asyncio
async def test_async_mdn_must_be_signed_by_the_partner(service, sent_over_as2, partner_identity, company_identity):
    body, content_type = _signed_mdn(partner_identity, "<abc@edi-exchange>", success=False, error="x")

    with pytest.raises(FormatError, match="AS2-From"):
        await service.record_async_mdn(body, {"Content-Type": content_type, "AS2-From": "SOMEONE-ELSE"})

    forged, forged_type = _signed_mdn(company_identity, "<abc@edi-exchange>", success=False, error="x")
    with pytest.raises(FormatError, match="not produced by the partner certificate"):
        await service.record_async_mdn(forged, {"Content-Type": forged_type, "AS2-From": PARTNER_AS2_ID})

    plain = generate_mdn(original_message_id="<abc@edi-exchange>", recipient_as2_id=COMPANY_AS2_ID, mic=None, success=False)
    with pytest.raises(FormatError, match="Unsigned AS2 content"):
        await service.record_async_mdn(
            plain.body.encode(), {"Content-Type": plain.content_type, "AS2-From": PARTNER_AS2_ID}
        )

    txn = await service.get_transaction(TENANT_ID, sent_over_as2.transaction_id)
    assert txn.error_message is None


@pytest.mark.asyncio
async def test_async_mdn_lookup_errors(service, sent_over_as2, partner_identity):
    body, content_type = _signed_mdn(partner_identity, "<x@y>")
    with pytest.raises(NotFoundError):
        await service.record_async_mdn(body, {"Content-Type": content_type, "AS2-From": PARTNER_AS2_ID})

    with pytest.raises(FormatError, match="not a disposition notification"):
        await service.record_async_mdn(b"hello", {"Content-Type": "text/plain", "AS2-From": PARTNER_AS2_ID})

    no_original = b"Disposition: automatic-action/MDN-sent-automatically; processed\r\n"
    with pytest.raises(FormatError, match="Original-Message-ID"):
        await service.record_async_mdn(
            no_original, {"Content-Type": "message/disposition-notification", "AS2-From": PARTNER_AS2_ID}
        )


# ─── Connection test ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_connection_test_for_manual_partner(service, make_partner):
    partner = await make_partner(communication_method="manual")

    result = await service.test_partner_connection(TENANT_ID, partner.partner_id)

    assert result.success
    assert result.metadata["message"] == "No connection test needed"


@pytest.mark.asyncio
async def test_connection_test_delegates_to_adapter(session_factory, configuration, erp, make_partner):
    adapter = RecordingAdapter(DispatchResult.failed("SFTP connection failed: timed out", ErrorKind.TRANSPORT))
    service = EdiTransactionService(session_factory, erp=erp, configuration=configuration, adapter_factory=adapter.factory)
    partner = await make_partner(communication_method="sftp", sftp_host="sftp.acme.test")

    result = await service.test_partner_connection(TENANT_ID, partner.partner_id)

    assert not result.success
    assert result.error_kind == ErrorKind.TRANSPORT
