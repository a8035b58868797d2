"""
SFTP Polling Scheduler — one timer per SFTP-enabled trading partner.

refresh_schedules() is total and idempotent: it cancels every timer and
re-derives the set from the database (tenant sftp_polling_enabled,
partner communication_method=sftp, a poll schedule, status active or
testing). Call it after any partner or settings write.

A tick that comes due while the previous tick for the same partner is
still running is skipped, not queued.

Schedules are either a five-field cron expression ("*/15 * * * *"),
evaluated with celery's crontab, or a bare number of minutes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from celery.schedules import ParseException, crontab
from sqlalchemy import select

from db.models import EdiSettings, TradingPartner
from services.configuration import EXCHANGE_PARTNER_STATUSES

logger = structlog.get_logger()

MIN_DELAY_SECONDS = 1.0

PollCallback = Callable[[Any, Any], Awaitable[Any]]


# ── Timer abstraction ─────────────────────────────────────────────────────


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class AsyncioTimerFactory:
    """Runs callbacks on the running event loop via loop.call_later."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> TimerHandle:
        loop = asyncio.get_running_loop()

        def _fire() -> None:
            task = loop.create_task(callback())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return loop.call_later(delay, _fire)


# ── Schedule parsing ──────────────────────────────────────────────────────


def parse_poll_schedule(value: str | None, fallback_minutes: int, nowfun=None) -> crontab | int:
    """Return a crontab for cron expressions, else an interval in minutes."""
    text = (value or "").strip()
    if text.isdigit() and int(text) > 0:
        return int(text)

    fields = text.split()
    if len(fields) == 5:
        minute, hour, day_of_month, month_of_year, day_of_week = fields
        try:
            return crontab(
                minute=minute,
                hour=hour,
                day_of_month=day_of_month,
                month_of_year=month_of_year,
                day_of_week=day_of_week,
                nowfun=nowfun,
            )
        except (ParseException, ValueError) as exc:
            logger.warning("scheduler.invalid_schedule", schedule=text, error=str(exc))
            return fallback_minutes

    logger.warning("scheduler.invalid_schedule", schedule=text, fallback_minutes=fallback_minutes)
    return fallback_minutes


def next_delay_seconds(schedule: crontab | int, now: datetime) -> float:
    if isinstance(schedule, int):
        return float(schedule * 60)
    remaining = schedule.remaining_estimate(now)
    return max(remaining.total_seconds(), MIN_DELAY_SECONDS)


# ── Registry ──────────────────────────────────────────────────────────────


@dataclass
class PollingJob:
    tenant_id: Any
    partner_id: Any
    partner_code: str
    schedule: crontab | int
    handle: TimerHandle | None = None


class PollingScheduler:
    def __init__(
        self,
        session_factory,
        poll_callback: PollCallback,
        timer_factory=None,
        clock: Callable[[], datetime] | None = None,
        default_interval_minutes: int = 15,
    ):
        self.session_factory = session_factory
        self.poll_callback = poll_callback
        self.timers = timer_factory or AsyncioTimerFactory()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.default_interval_minutes = default_interval_minutes
        self._jobs: dict[str, PollingJob] = {}
        self._running: set[str] = set()
        self._refresh_lock = asyncio.Lock()

    @property
    def active_partner_ids(self) -> list[str]:
        return sorted(self._jobs)

    def job(self, partner_id) -> PollingJob | None:
        return self._jobs.get(str(partner_id))

    async def refresh_schedules(self) -> int:
        async with self._refresh_lock:
            self.stop_all()
            for partner, interval_minutes in await self._eligible_partners():
                schedule = parse_poll_schedule(
                    partner.sftp_poll_schedule,
                    interval_minutes or self.default_interval_minutes,
                    nowfun=self.clock,
                )
                job = PollingJob(
                    tenant_id=partner.tenant_id,
                    partner_id=partner.partner_id,
                    partner_code=partner.partner_code,
                    schedule=schedule,
                )
                self._jobs[str(partner.partner_id)] = job
                self._arm(job)

            logger.info("scheduler.refresh_complete", active_partners=len(self._jobs))
            return len(self._jobs)

    def stop_all(self) -> None:
        for job in self._jobs.values():
            if job.handle is not None:
                job.handle.cancel()
        self._jobs.clear()

    async def _eligible_partners(self) -> list[tuple[TradingPartner, int]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TradingPartner, EdiSettings.sftp_polling_interval_minutes)
                .join(EdiSettings, EdiSettings.tenant_id == TradingPartner.tenant_id)
                .where(
                    EdiSettings.sftp_polling_enabled.is_(True),
                    TradingPartner.communication_method == "sftp",
                    TradingPartner.sftp_poll_schedule.is_not(None),
                    TradingPartner.status.in_(EXCHANGE_PARTNER_STATUSES),
                    TradingPartner.is_active.is_(True),
                )
                .order_by(TradingPartner.partner_code)
            )
            return [(row[0], row[1]) for row in result.all()]

    def _arm(self, job: PollingJob) -> None:
        key = str(job.partner_id)
        delay = next_delay_seconds(job.schedule, self.clock())
        job.handle = self.timers.call_later(delay, lambda: self._tick(key))

    async def _tick(self, key: str) -> None:
        job = self._jobs.get(key)
        if job is None:
            return
        # Re-armed before polling; a tick that fires mid-poll is skipped below
        self._arm(job)
        if key in self._running:
            logger.info("sftp.poll.skipped_overlap", partner_id=key, partner_code=job.partner_code)
            return

        self._running.add(key)
        try:
            await self.poll_callback(job.tenant_id, job.partner_id)
        except Exception:
            logger.exception("sftp.poll.failed", partner_id=key, partner_code=job.partner_code)
        finally:
            self._running.discard(key)
