import asyncio

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from chatsync.services.ticker import PeriodicTask


async def _noop():
    return None


@pytest.mark.asyncio
async def test_start_schedules_single_interval_job():
    task = PeriodicTask(_noop, 30, name="tick")
    task.start()
    try:
        job = task.scheduler.get_job("tick")
        assert job is not None
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.max_instances == 1
        assert job.coalesce is True
        assert task.running

        task.start()  # idempotent
        assert len(task.scheduler.get_jobs()) == 1
    finally:
        task.stop()


@pytest.mark.asyncio
async def test_pause_and_resume():
    task = PeriodicTask(_noop, 30, name="tick")
    task.start()
    try:
        task.pause()
        assert not task.running
        task.pause()

        task.start()
        assert task.running
    finally:
        task.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent():
    task = PeriodicTask(_noop, 30)
    task.stop()
    task.start()
    task.stop()
    task.stop()
    assert not task.running
    assert task.scheduler is None


@pytest.mark.asyncio
async def test_ticks_fire_on_the_event_loop():
    calls = []

    async def tick():
        calls.append(1)

    task = PeriodicTask(tick, 0.05, name="fast")
    task.start()
    try:
        await asyncio.sleep(0.4)
    finally:
        task.stop()

    assert len(calls) >= 1


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        PeriodicTask(_noop, 0)
