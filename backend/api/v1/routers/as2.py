"""
AS2 Router — partner-facing HTTP endpoints.

  POST /api/v1/as2/receive   inbound AS2 message; the response body is the MDN
  POST /api/v1/as2/mdn       asynchronous MDN for a message we sent earlier

Partners authenticate by certificate: the payload (or the MDN) must carry a
signature that verifies under the partner certificate on file, so these
routes do not take a bearer token. The sending partner is resolved from
the AS2-From / AS2-To headers.
"""

import structlog
from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel

from api.deps import get_transaction_service
from services.transactions import EdiTransactionService

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/as2", tags=["as2"])


class MdnRecordedResponse(BaseModel):
    transaction_id: str
    transaction_number: str
    processed: bool
    error_message: str | None


@router.post("/receive")
async def receive_as2_message(
    request: Request,
    service: EdiTransactionService = Depends(get_transaction_service),
):
    body = await request.body()
    txn, mdn = await service.receive_as2(body, dict(request.headers))

    headers = {
        "Message-ID": mdn.message_id,
        "AS2-Version": "1.2",
        "AS2-From": request.headers.get("as2-to", ""),
        "AS2-To": request.headers.get("as2-from", ""),
    }
    if txn is not None:
        headers["X-EDI-Transaction"] = txn.transaction_number
    logger.info(
        "as2.receive.complete",
        message_id=request.headers.get("message-id"),
        transaction_number=txn.transaction_number if txn else None,
    )
    return Response(content=mdn.body, media_type=mdn.content_type, headers=headers)


@router.post("/mdn", response_model=MdnRecordedResponse)
async def receive_async_mdn(
    request: Request,
    service: EdiTransactionService = Depends(get_transaction_service),
):
    txn, receipt = await service.record_async_mdn(await request.body(), dict(request.headers))
    return MdnRecordedResponse(
        transaction_id=str(txn.transaction_id),
        transaction_number=txn.transaction_number,
        processed=receipt.processed,
        error_message=txn.error_message,
    )
