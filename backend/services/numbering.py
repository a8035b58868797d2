"""
Per-tenant sequence allocation.

Transaction numbers (EDI-00001, EDI-00002, ...) and X12 interchange
control numbers come from the edi_sequences table. Allocation is a single
read-increment-write under a row lock in its own short transaction, and
in-process callers are additionally serialized per (tenant, sequence) so
concurrent pipelines on SQLite (no row locks) still get distinct values.
"""

from __future__ import annotations

import asyncio
import weakref

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError as SAIntegrityError

from db.models import EdiSequence

logger = structlog.get_logger()

TRANSACTION_SEQUENCE = "transaction"
INTERCHANGE_CONTROL_SEQUENCE = "interchange_control"

# asyncio locks are bound to the loop that first waits on them
_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[tuple[str, str], asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _lock_for(tenant_id, name: str) -> asyncio.Lock:
    per_loop = _locks.setdefault(asyncio.get_running_loop(), {})
    return per_loop.setdefault((str(tenant_id), name), asyncio.Lock())


async def next_sequence_value(session_factory, tenant_id, name: str) -> int:
    """Return the next value of ``name`` for ``tenant_id`` (first value is 1)."""
    async with _lock_for(tenant_id, name):
        try:
            return await _increment(session_factory, tenant_id, name)
        except SAIntegrityError:
            # Another process inserted the counter row first
            logger.info("sequence.insert_race", tenant_id=str(tenant_id), sequence=name)
            return await _increment(session_factory, tenant_id, name)


async def _increment(session_factory, tenant_id, name: str) -> int:
    async with session_factory() as session:
        async with session.begin():
            result = await session.execute(
                select(EdiSequence)
                .where(EdiSequence.tenant_id == tenant_id, EdiSequence.name == name)
                .with_for_update()
            )
            sequence = result.scalar_one_or_none()
            if sequence is None:
                sequence = EdiSequence(tenant_id=tenant_id, name=name, value=0)
                session.add(sequence)
            sequence.value = (sequence.value or 0) + 1
            value = sequence.value
    return value


def format_transaction_number(value: int, prefix: str = "EDI-", width: int = 5) -> str:
    return f"{prefix}{value:0{width}d}"
