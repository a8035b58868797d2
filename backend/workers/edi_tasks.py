"""
EDI Workers — background exchange jobs.

Workers:
  1. poll_partner_inbox:     one SFTP inbox poll for one partner
  2. reprocess_transaction:  re-run the inbound pipeline for one transaction
  3. send_transaction:       (re)deliver an already generated outbound document

Each task builds its own engine, runs to completion with asyncio.run and
disposes the engine; pipeline outcomes are persisted on the transaction
row, so the returned dict is only a summary.
"""

import asyncio

import structlog

from core.errors import ConfigurationError, EdiError, NotFoundError, TransportError
from db.session import build_session_factory
from integrations.base import get_adapter
from services.erp import load_gateway
from services.inbox_polling import SftpInboxPoller
from services.transactions import EdiTransactionService
from workers.celery_app import celery_app

logger = structlog.get_logger()

WORKER_USER = "worker"


def _service(session_factory, settings) -> EdiTransactionService:
    return EdiTransactionService(
        session_factory,
        erp=load_gateway(settings.erp_gateway),
        adapter_factory=get_adapter,
        app_settings=settings,
    )


@celery_app.task(
    name="workers.edi_tasks.poll_partner_inbox",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def poll_partner_inbox(self, tenant_id: str, partner_id: str):
    """Download, ingest and archive every file waiting in one partner's SFTP inbox."""
    run_id = self.request.id or "manual"
    logger.info("edi_tasks.poll.started", tenant_id=tenant_id, partner_id=partner_id, run_id=run_id)

    async def _poll():
        from core.config import get_settings

        settings = get_settings()
        engine, session_factory = build_session_factory(settings.database_url)
        try:
            service = _service(session_factory, settings)
            summary = await SftpInboxPoller(service, adapter_factory=get_adapter).poll_partner(tenant_id, partner_id)
            return {"status": "success", "run_id": run_id, **summary.as_dict()}
        finally:
            await engine.dispose()

    try:
        result = asyncio.run(_poll())
    except (ConfigurationError, NotFoundError) as exc:
        logger.warning("edi_tasks.poll.skipped", partner_id=partner_id, error=exc.message)
        return {"status": "skipped", "partner_id": partner_id, "reason": exc.message, "run_id": run_id}
    except TransportError as exc:
        logger.error("edi_tasks.poll.transport_failed", partner_id=partner_id, error=exc.message)
        raise self.retry(exc=exc)

    logger.info("edi_tasks.poll.complete", **result)
    return result


@celery_app.task(
    name="workers.edi_tasks.reprocess_transaction",
    bind=True,
    max_retries=0,
    acks_late=True,
)
def reprocess_transaction(self, tenant_id: str, transaction_id: str, user_id: str = WORKER_USER):
    run_id = self.request.id or "manual"

    async def _reprocess():
        from core.config import get_settings

        settings = get_settings()
        engine, session_factory = build_session_factory(settings.database_url)
        try:
            txn = await _service(session_factory, settings).reprocess(tenant_id, user_id, transaction_id)
            return {
                "status": "success",
                "transaction_id": str(txn.transaction_id),
                "transaction_number": txn.transaction_number,
                "transaction_status": txn.status,
                "error_message": txn.error_message,
                "run_id": run_id,
            }
        finally:
            await engine.dispose()

    try:
        result = asyncio.run(_reprocess())
    except EdiError as exc:
        logger.warning("edi_tasks.reprocess.rejected", transaction_id=transaction_id, error=exc.message)
        return {"status": "failed", "transaction_id": transaction_id, "reason": exc.message, "run_id": run_id}

    logger.info("edi_tasks.reprocess.complete", **result)
    return result


@celery_app.task(
    name="workers.edi_tasks.send_transaction",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
    acks_late=True,
)
def send_transaction(self, tenant_id: str, transaction_id: str, user_id: str = WORKER_USER):
    """Delivery retry path; a failed delivery is recorded on the row, never raised."""
    run_id = self.request.id or "manual"

    async def _send():
        from core.config import get_settings

        settings = get_settings()
        engine, session_factory = build_session_factory(settings.database_url)
        try:
            txn = await _service(session_factory, settings).send(tenant_id, user_id, transaction_id)
            return {
                "status": "success" if txn.error_message is None else "delivery_failed",
                "transaction_id": str(txn.transaction_id),
                "transaction_number": txn.transaction_number,
                "as2_message_id": txn.as2_message_id,
                "error_message": txn.error_message,
                "run_id": run_id,
            }
        finally:
            await engine.dispose()

    try:
        result = asyncio.run(_send())
    except EdiError as exc:
        logger.warning("edi_tasks.send.rejected", transaction_id=transaction_id, error=exc.message)
        return {"status": "failed", "transaction_id": transaction_id, "reason": exc.message, "run_id": run_id}

    logger.info("edi_tasks.send.complete", **result)
    return result
