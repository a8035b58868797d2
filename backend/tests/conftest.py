"""
Test Configuration — Fixtures for the async DB, ERP double, AS2 identities
and the API test client.

Each test gets its own SQLite file under tmp_path so pipelines that open
several short sessions see each other's commits.
"""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base
from integrations.certificates import generate_self_signed
from services.configuration import ConfigurationService
from services.erp import DocumentMetadata, ErpGateway, ErpProcessResult, GeneratedDocument

TENANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
OTHER_TENANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")

COMPANY_AS2_ID = "EDIEXCH"
PARTNER_AS2_ID = "ACMEAS2"


# ─── X12 fixtures ──────────────────────────────────────────────────────────


def isa_segment(sender: str, receiver: str, control: int = 42, element: str = "*", component: str = ">") -> str:
    return element.join(
        [
            "ISA",
            "00",
            " " * 10,
            "00",
            " " * 10,
            "ZZ",
            sender.ljust(15),
            "ZZ",
            receiver.ljust(15),
            "260301",
            "0930",
            "U",
            "00401",
            f"{control:09d}",
            "0",
            "P",
            component,
        ]
    )


def sample_850(element: str = "*", terminator: str = "~", component: str = ">", suffix: str = "\n") -> str:
    """Three-line purchase order from ACMEAS2 to EDIEXCH."""
    segments = [
        isa_segment(PARTNER_AS2_ID, COMPANY_AS2_ID, element=element, component=component),
        ["GS", "PO", PARTNER_AS2_ID, COMPANY_AS2_ID, "20260301", "0930", "42", "X", "004010"],
        ["ST", "850", "0001"],
        ["BEG", "00", "NE", "PO-7781", "", "20260301"],
        ["N1", "BY", "Acme Stores", "92", "ACME01"],
        ["PO1", "1", "10", "EA", "2.5", "PE", "VP", "WIDGET-1"],
        ["PID", "F", "", "", "", "Blue widget"],
        ["PO1", "2", "4", "CA", "12", "PE", "VP", "WIDGET-2"],
        ["PO1", "3", "1", "EA", "99.99", "PE", "VP", "WIDGET-3"],
        ["CTT", "3", "15"],
        ["SE", "9", "0001"],
        ["GE", "1", "42"],
        ["IEA", "1", "000000042"],
    ]
    lines = [s if isinstance(s, str) else element.join(s) for s in segments]
    return (terminator + suffix).join(lines) + terminator


INVOICE_ROWS = [
    {
        "invoice_number": "INV-1001",
        "invoice_date": "2026-03-02",
        "po_number": "PO-1",
        "item_number": "WIDGET-1",
        "description": "Blue widget",
        "quantity": 10,
        "unit_of_measure": "EA",
        "unit_price": "2.50",
    },
    {
        "invoice_number": "INV-1001",
        "invoice_date": "2026-03-02",
        "po_number": "PO-1",
        "item_number": "WIDGET-2",
        "description": "",
        "quantity": 4,
        "unit_of_measure": "CA",
        "unit_price": "12.00",
    },
]


# ─── ERP double ────────────────────────────────────────────────────────────


class FakeErpGateway(ErpGateway):
    """Records processed rows; returns canned records for generation."""

    def __init__(self, fail_with: Exception | None = None, reject_with: list[str] | None = None):
        self.fail_with = fail_with
        self.reject_with = reject_with
        self.processed: list[tuple[str, list[dict], str, str]] = []
        self.documents: dict[str, GeneratedDocument] = {}

    async def _process(self, document_type, rows, tenant_id, user_id):
        if self.fail_with is not None:
            raise self.fail_with
        if self.reject_with:
            return ErpProcessResult(success=False, errors=list(self.reject_with))
        self.processed.append((document_type, rows, tenant_id, user_id))
        n = len(self.processed)
        return ErpProcessResult(success=True, record_id=f"REC-{document_type}-{n}", record_number=f"SO-{1000 + n}")

    async def process_850(self, rows, tenant_id, user_id):
        return await self._process("850", rows, tenant_id, user_id)

    async def process_810(self, rows, tenant_id, user_id):
        return await self._process("810", rows, tenant_id, user_id)

    async def process_856(self, rows, tenant_id, user_id):
        return await self._process("856", rows, tenant_id, user_id)

    async def _generate(self, document_type, source_record_id):
        if self.fail_with is not None:
            raise self.fail_with
        if source_record_id in self.documents:
            return self.documents[source_record_id]
        return GeneratedDocument(
            rows=[dict(row) for row in INVOICE_ROWS],
            metadata=DocumentMetadata(document_type=document_type, record_number="INV-1001", record_id=source_record_id),
        )

    async def generate_850(self, source_record_id):
        return await self._generate("850", source_record_id)

    async def generate_810(self, source_record_id):
        return await self._generate("810", source_record_id)

    async def generate_856(self, source_record_id):
        return await self._generate("856", source_record_id)


# ─── Database ──────────────────────────────────────────────────────────────


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'edi.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def configuration(session_factory):
    return ConfigurationService(session_factory)


@pytest.fixture
def erp():
    return FakeErpGateway()


@pytest.fixture
def make_partner(configuration):
    """Create a trading partner; active CSV/manual by default."""

    async def _make(tenant_id=TENANT_ID, **overrides):
        data = {
            "partner_code": f"P{uuid.uuid4().hex[:6].upper()}",
            "partner_name": "Acme Stores",
            "partner_type": "customer",
            "communication_method": "manual",
            "default_format": "csv",
            "status": "active",
        }
        data.update(overrides)
        return await configuration.create_partner(tenant_id, data)

    return _make


# ─── AS2 identities ────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def company_identity():
    return generate_self_signed("edi-exchange.test")


@pytest.fixture(scope="session")
def partner_identity():
    return generate_self_signed("acme-stores.test")


@pytest.fixture
async def as2_setup(configuration, make_partner, company_identity, partner_identity):
    """Company settings plus an AS2 partner, certificates on both sides."""
    company_cert, company_key = company_identity
    partner_cert, _ = partner_identity
    await configuration.upsert_settings(
        TENANT_ID,
        {
            "company_as2_id": COMPANY_AS2_ID,
            "company_certificate": company_cert,
            "company_private_key": company_key,
        },
    )
    return await make_partner(
        communication_method="as2",
        default_format="x12",
        as2_id=PARTNER_AS2_ID,
        as2_url="https://as2.acme.test/receive",
        partner_certificate=partner_cert,
    )


# ─── API client ────────────────────────────────────────────────────────────


@pytest.fixture
def mock_user():
    return {
        "sub": "auth0|test-user-id",
        "email": "ops@edi-exchange.test",
        "tenant_id": str(TENANT_ID),
    }


@pytest.fixture
async def client(session_factory, erp, mock_user):
    """Async test client wired to the per-test database and ERP double."""
    from api.deps import get_current_user, get_session_factory, get_transaction_service
    from api.main import app
    from services.transactions import EdiTransactionService

    def override_get_transaction_service():
        return EdiTransactionService(session_factory, erp=erp, configuration=ConfigurationService(session_factory))

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = lambda: mock_user
    app.dependency_overrides[get_transaction_service] = override_get_transaction_service

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
