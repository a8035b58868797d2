import asyncio
from datetime import datetime, timezone

import pytest
from celery.schedules import crontab

from workers.sftp_scheduler import AsyncioTimerFactory, PollingScheduler, next_delay_seconds, parse_poll_schedule
from conftest import OTHER_TENANT_ID, TENANT_ID

NOW = datetime(2026, 3, 2, 10, 7, tzinfo=timezone.utc)


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeTimerFactory:
    """Records armed timers; tests fire them by awaiting ``timer.callback()``."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def call_later(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer


async def _enable_polling(configuration, interval=20):
    await configuration.upsert_settings(
        TENANT_ID, {"sftp_polling_enabled": True, "sftp_polling_interval_minutes": interval}
    )


def _sftp(**overrides):
    values = {"communication_method": "sftp", "sftp_host": "sftp.acme.test", "sftp_poll_schedule": "30"}
    values.update(overrides)
    return values


@pytest.mark.asyncio
async def test_refresh_registers_only_eligible_partners(session_factory, configuration, make_partner):
    await _enable_polling(configuration)
    eligible = await make_partner(**_sftp())
    await make_partner(**_sftp(sftp_poll_schedule=None))
    await make_partner(**_sftp(status="suspended"))
    await make_partner(**_sftp(communication_method="as2"))
    await make_partner(tenant_id=OTHER_TENANT_ID, **_sftp())

    timers = FakeTimerFactory()

    async def poll(tenant_id, partner_id):
        return None

    scheduler = PollingScheduler(session_factory, poll, timer_factory=timers, clock=lambda: NOW)

    assert await scheduler.refresh_schedules() == 1
    assert scheduler.active_partner_ids == [str(eligible.partner_id)]
    assert timers.timers[0].delay == 1800

    # idempotent: same registry, previous timer cancelled
    assert await scheduler.refresh_schedules() == 1
    assert [t.cancelled for t in timers.timers] == [True, False]


@pytest.mark.asyncio
async def test_polling_disabled_for_tenant(session_factory, configuration, make_partner):
    await make_partner(**_sftp())
    await configuration.upsert_settings(TENANT_ID, {"sftp_polling_enabled": False})

    scheduler = PollingScheduler(session_factory, None, timer_factory=FakeTimerFactory(), clock=lambda: NOW)

    assert await scheduler.refresh_schedules() == 0


@pytest.mark.asyncio
async def test_invalid_schedule_falls_back_to_tenant_interval(session_factory, configuration, make_partner):
    await _enable_polling(configuration, interval=20)
    partner = await make_partner(**_sftp(sftp_poll_schedule="every so often"))
    timers = FakeTimerFactory()
    scheduler = PollingScheduler(session_factory, None, timer_factory=timers, clock=lambda: NOW)

    await scheduler.refresh_schedules()

    assert scheduler.job(partner.partner_id).schedule == 20
    assert timers.timers[0].delay == 1200


@pytest.mark.asyncio
async def test_deactivated_partner_is_dropped_and_stale_timer_is_inert(session_factory, configuration, make_partner):
    await _enable_polling(configuration)
    partner = await make_partner(**_sftp())
    calls = []

    async def poll(tenant_id, partner_id):
        calls.append(partner_id)

    timers = FakeTimerFactory()
    scheduler = PollingScheduler(session_factory, poll, timer_factory=timers, clock=lambda: NOW)
    await scheduler.refresh_schedules()
    stale = timers.timers[0]

    await configuration.update_partner(TENANT_ID, partner.partner_id, {"status": "inactive"})
    assert await scheduler.refresh_schedules() == 0
    assert stale.cancelled

    await stale.callback()
    assert calls == []


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(session_factory, configuration, make_partner):
    await _enable_polling(configuration)
    partner = await make_partner(**_sftp())
    started = asyncio.Event()
    release = asyncio.Event()
    calls = []

    async def poll(tenant_id, partner_id):
        calls.append((tenant_id, partner_id))
        started.set()
        await release.wait()

    timers = FakeTimerFactory()
    scheduler = PollingScheduler(session_factory, poll, timer_factory=timers, clock=lambda: NOW)
    await scheduler.refresh_schedules()

    first = asyncio.create_task(timers.timers[0].callback())
    await started.wait()
    # the running tick already re-armed the next one
    assert len(timers.timers) == 2

    await timers.timers[1].callback()
    assert len(calls) == 1

    release.set()
    await first
    await timers.timers[-1].callback()
    assert calls == [(TENANT_ID, partner.partner_id)] * 2


@pytest.mark.asyncio
async def test_poll_errors_do_not_stop_the_schedule(session_factory, configuration, make_partner):
    await _enable_polling(configuration)
    await make_partner(**_sftp())

    async def poll(tenant_id, partner_id):
        raise RuntimeError("SFTP server down")

    timers = FakeTimerFactory()
    scheduler = PollingScheduler(session_factory, poll, timer_factory=timers, clock=lambda: NOW)
    await scheduler.refresh_schedules()

    await timers.timers[0].callback()

    assert len(timers.timers) == 2
    assert not timers.timers[1].cancelled


@pytest.mark.asyncio
async def test_asyncio_timer_factory_runs_callback():
    fired = asyncio.Event()

    async def callback():
        fired.set()

    AsyncioTimerFactory().call_later(0.01, callback)

    await asyncio.wait_for(fired.wait(), timeout=1)


@pytest.mark.parametrize(
    "value,expected",
    [("30", 30), ("garbage", 15), ("99 * * * *", 15), ("0 * * *", 15), ("", 15), (None, 15), ("0", 15)],
)
def test_parse_interval_and_fallbacks(value, expected):
    assert parse_poll_schedule(value, fallback_minutes=15) == expected


def test_parse_cron_expression():
    schedule = parse_poll_schedule("*/15 6-18 * * mon-fri", fallback_minutes=15)
    assert isinstance(schedule, crontab)
    assert 45 in schedule.minute
    assert 19 not in schedule.hour


def test_next_delay_for_cron_and_interval():
    schedule = crontab(minute="*/15", nowfun=lambda: NOW)
    assert next_delay_seconds(schedule, NOW) == pytest.approx(480, abs=1)
    assert next_delay_seconds(30, NOW) == 1800.0
