"""
SFTP inbox polling — one tick for one partner.

List the partner's remote directory, push every file through the inbound
pipeline (format from the extension or the partner default, document type
from ST01 or the filename), then move the file into processed/ whatever
the pipeline outcome was; a failed transaction keeps the content, so the
remote copy is not needed for a retry.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from core.errors import ConfigurationError, EdiError
from edi.flat_formats import infer_document_type, infer_format
from integrations.base import TransportChannel, get_adapter
from services.configuration import sftp_config
from services.transactions import EdiTransactionService

logger = structlog.get_logger()

POLLER_USER = "sftp-poller"


@dataclass
class PollSummary:
    partner_id: str
    files_found: int = 0
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "partner_id": self.partner_id,
            "files_found": self.files_found,
            "completed": len(self.completed),
            "failed": len(self.failed),
            "errors": self.errors,
        }


class SftpInboxPoller:
    def __init__(
        self,
        transactions: EdiTransactionService,
        adapter_factory: Callable[..., Any] = get_adapter,
    ):
        self.transactions = transactions
        self.adapter_factory = adapter_factory

    async def poll_partner(self, tenant_id, partner_id) -> PollSummary:
        summary = PollSummary(partner_id=str(partner_id))
        configuration = self.transactions.configuration
        partner = await configuration.load_partner_snapshot(tenant_id, partner_id)
        if partner.communication_method != TransportChannel.SFTP.value:
            raise ConfigurationError(f"Partner '{partner.partner_code}' is not an SFTP partner")
        if not partner.can_exchange:
            raise ConfigurationError(f"Partner '{partner.partner_code}' is {partner.status}; polling skipped")

        adapter = self.adapter_factory(
            TransportChannel.SFTP,
            tenant_id,
            sftp_config(partner, self.transactions.app_settings),
        )
        files = await adapter.poll()
        summary.files_found = len(files)

        for polled in files:
            fmt = infer_format(polled.filename, partner.default_format, polled.content)
            document_type = infer_document_type(polled.content, fmt, polled.filename)
            try:
                txn = await self.transactions.create_inbound(
                    tenant_id,
                    POLLER_USER,
                    partner.partner_id,
                    document_type,
                    polled.content,
                    format=fmt,
                    filename=polled.filename,
                )
            except ConfigurationError:
                # Partner deactivated mid-tick; leave remaining files for later
                raise
            except EdiError as exc:
                summary.errors.append(f"{polled.filename}: {exc.message}")
                continue

            if txn.status == "completed":
                summary.completed.append(txn.transaction_number)
            else:
                summary.failed.append(txn.transaction_number)
            await adapter.mark_processed(polled.filename)

        logger.info(
            "sftp.poll.complete",
            tenant_id=str(tenant_id),
            partner_id=str(partner_id),
            **summary.as_dict(),
        )
        return summary
