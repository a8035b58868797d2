"""
ERP Gateway — the seam between the exchange engine and the ERP domain.

The engine never creates or reads orders/invoices itself. Inbound
documents are handed to ``process_<doc>`` and outbound documents are
requested from ``generate_<doc>``; whatever ERP is deployed plugs in by
pointing ``settings.erp_gateway`` at a factory ("package.module:attr")
that returns an ``ErpGateway``.
"""

from __future__ import annotations

import importlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from core.errors import ConfigurationError

ERP_DOCUMENT_TYPES = ("850", "810", "856")


@dataclass
class ErpProcessResult:
    success: bool
    record_id: str | None = None
    record_number: str | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class DocumentMetadata:
    document_type: str
    record_number: str | None = None
    record_id: str | None = None


@dataclass
class GeneratedDocument:
    rows: list[dict[str, Any]]
    metadata: DocumentMetadata


class ErpGateway(ABC):
    """ERP-side ingestion and export for the three business documents."""

    @abstractmethod
    async def process_850(self, rows: list[dict[str, Any]], tenant_id: str, user_id: str) -> ErpProcessResult: ...

    @abstractmethod
    async def process_810(self, rows: list[dict[str, Any]], tenant_id: str, user_id: str) -> ErpProcessResult: ...

    @abstractmethod
    async def process_856(self, rows: list[dict[str, Any]], tenant_id: str, user_id: str) -> ErpProcessResult: ...

    @abstractmethod
    async def generate_850(self, source_record_id: str) -> GeneratedDocument: ...

    @abstractmethod
    async def generate_810(self, source_record_id: str) -> GeneratedDocument: ...

    @abstractmethod
    async def generate_856(self, source_record_id: str) -> GeneratedDocument: ...


async def process_document(
    gateway: ErpGateway,
    document_type: str,
    rows: list[dict[str, Any]],
    tenant_id: str,
    user_id: str,
) -> ErpProcessResult:
    if document_type not in ERP_DOCUMENT_TYPES:
        raise ConfigurationError(f"ERP does not process document type {document_type}")
    return await getattr(gateway, f"process_{document_type}")(rows, tenant_id, user_id)


async def generate_document(gateway: ErpGateway, document_type: str, source_record_id: str) -> GeneratedDocument:
    if document_type not in ERP_DOCUMENT_TYPES:
        raise ConfigurationError(f"ERP does not generate document type {document_type}")
    return await getattr(gateway, f"generate_{document_type}")(source_record_id)


def load_gateway(path: str) -> ErpGateway:
    """Resolve "package.module:attr"; a class or zero-arg factory is called."""
    if not path or ":" not in path:
        raise ConfigurationError("ERP gateway is not configured (expected 'package.module:attribute')")
    module_name, attr = path.split(":", 1)
    try:
        target = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"Cannot load ERP gateway '{path}': {exc}") from exc

    gateway = target() if callable(target) and not isinstance(target, ErpGateway) else target
    if not isinstance(gateway, ErpGateway):
        raise ConfigurationError(f"'{path}' did not produce an ErpGateway")
    return gateway
