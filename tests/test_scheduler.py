"""
Test suite for the batch scheduler.
Tests batch selection, tie handling, schedule advancement, exhaustion and shutdown.
A fake clock stands in for wall time; waiting just advances it.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.orchestrator import BatchScheduler
from core.runner import FetchResult, TaskRunner
from core.schedule import ScheduleEntry
from core.sessions import SessionDirectory, SessionLease
from core.writer import ContentWriter
from solvers.flaresolverr import SolverResponse

T0 = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class RecordingRunner:
    """Records (time, url) for every execution; *durations* fake run time."""

    def __init__(self, clock, durations=None):
        self.clock = clock
        self.calls = []
        self.durations = durations or {}

    async def execute(self, entry):
        self.calls.append((self.clock(), entry.url))
        self.clock.advance(self.durations.get(entry.url, 0))
        return FetchResult(url=entry.url, success=True, status="saved")


def make_scheduler(runner, clock):
    scheduler = BatchScheduler(runner, clock=clock)

    async def fake_wait(delay):
        clock.advance(delay)
        return False

    scheduler._wait = fake_wait
    return scheduler


def stop_after(scheduler, n_batches):
    """Wrap run_batch so the scheduler stops once *n_batches* have run."""
    original = scheduler.run_batch

    async def counting(batch):
        results = await original(batch)
        if scheduler.batches_run + 1 >= n_batches:
            scheduler.stop()
        return results

    scheduler.run_batch = counting


def entry(url, cron):
    return ScheduleEntry(url=url, file_name=url, cron_expression=cron)


def batches(calls):
    grouped = {}
    for when, url in calls:
        grouped.setdefault(when, set()).add(url)
    return [(when, grouped[when]) for when in sorted(grouped)]


@pytest.mark.asyncio
async def test_every_minute_and_every_two_minutes():
    clock = FakeClock()
    runner = RecordingRunner(clock)
    scheduler = make_scheduler(runner, clock)
    stop_after(scheduler, 4)

    count = await scheduler.run([entry("A", "* * * * *"), entry("B", "*/2 * * * *")])

    assert count == 4
    assert batches(runner.calls) == [
        (T0 + timedelta(seconds=60), {"A"}),
        (T0 + timedelta(seconds=120), {"A", "B"}),
        (T0 + timedelta(seconds=180), {"A"}),
        (T0 + timedelta(seconds=240), {"A", "B"}),
    ]


@pytest.mark.asyncio
async def test_ties_run_in_a_single_batch():
    clock = FakeClock()
    runner = RecordingRunner(clock)
    scheduler = make_scheduler(runner, clock)
    stop_after(scheduler, 2)

    await scheduler.run([entry("A", "0 * * * *"), entry("B", "0 * * * *"), entry("C", "30 * * * *")])

    assert batches(runner.calls) == [
        (T0 + timedelta(minutes=30), {"C"}),
        (T0 + timedelta(minutes=60), {"A", "B"}),
    ]
    assert scheduler.batches_run == 2


@pytest.mark.asyncio
async def test_batches_follow_global_minimum():
    clock = FakeClock()
    runner = RecordingRunner(clock)
    scheduler = make_scheduler(runner, clock)
    stop_after(scheduler, 5)

    await scheduler.run([entry("slow", "*/7 * * * *"), entry("fast", "*/3 * * * *")])

    times = [when for when, _ in batches(runner.calls)]
    assert times == sorted(times)
    assert [t.minute for t in times] == [3, 6, 7, 9, 12]


def test_next_batch_ignores_exhausted_entries():
    a = entry("A", "* * * * *")
    b = entry("B", "* * * * *")
    a.next_occurrence = None
    b.next_occurrence = T0

    t_min, batch = BatchScheduler.next_batch([a, b])

    assert t_min == T0
    assert batch == [b]
    assert BatchScheduler.next_batch([a]) == (None, [])


@pytest.mark.asyncio
async def test_schedule_advances_from_post_run_time():
    clock = FakeClock()
    runner = RecordingRunner(clock, durations={"A": 90})
    scheduler = make_scheduler(runner, clock)
    stop_after(scheduler, 2)

    await scheduler.run([entry("A", "* * * * *")])

    # Ran at 00:01, finished at 00:02:30, so the next slot is 00:03
    assert [when for when, _ in runner.calls] == [
        T0 + timedelta(minutes=1),
        T0 + timedelta(minutes=3),
    ]


class OneShotEntry(ScheduleEntry):
    def update_next_occurrence(self, now):
        self.next_occurrence = None


@pytest.mark.asyncio
async def test_exhausted_entries_end_the_loop(caplog):
    clock = FakeClock()
    runner = RecordingRunner(clock)
    scheduler = make_scheduler(runner, clock)
    one_shot = OneShotEntry(url="once", file_name="once", cron_expression="* * * * *")

    with caplog.at_level(logging.INFO):
        count = await scheduler.run([one_shot])

    assert count == 1
    assert runner.calls == [(T0 + timedelta(minutes=1), "once")]
    assert one_shot.next_occurrence is None
    assert "No more scheduled tasks" in caplog.text


@pytest.mark.asyncio
async def test_entry_that_never_fires_is_never_dispatched(caplog):
    clock = FakeClock()
    runner = RecordingRunner(clock)
    scheduler = make_scheduler(runner, clock)
    never = entry("never", "0 0 30 2 *")
    one_shot = OneShotEntry(url="once", file_name="once", cron_expression="* * * * *")

    with caplog.at_level(logging.INFO):
        count = await scheduler.run([never, one_shot])

    assert count == 1
    assert runner.calls == [(T0 + timedelta(minutes=1), "once")]
    assert never.next_occurrence is None
    assert "No more scheduled tasks" in caplog.text


@pytest.mark.asyncio
async def test_zero_tasks_terminates_immediately(caplog):
    clock = FakeClock()
    runner = RecordingRunner(clock)
    scheduler = make_scheduler(runner, clock)

    with caplog.at_level(logging.INFO):
        count = await scheduler.run([])

    assert count == 0
    assert runner.calls == []
    assert "No more scheduled tasks. Exiting..." in caplog.text


@pytest.mark.asyncio
async def test_invalid_cron_propagates():
    clock = FakeClock()
    scheduler = make_scheduler(RecordingRunner(clock), clock)

    with pytest.raises(ValueError):
        await scheduler.run([entry("A", "every minute please")])


@pytest.mark.asyncio
async def test_stop_interrupts_wait_without_dispatch():
    runner = MagicMock()
    runner.execute = AsyncMock()
    far_future = datetime(2099, 1, 1, tzinfo=timezone.utc)
    scheduler = BatchScheduler(runner, clock=lambda: far_future - timedelta(hours=1))

    asyncio.get_running_loop().call_later(0.05, scheduler.stop)
    count = await asyncio.wait_for(scheduler.run([entry("A", "0 * * * *")]), timeout=5)

    assert count == 0
    assert scheduler.stopped
    runner.execute.assert_not_called()


@pytest.mark.asyncio
async def test_batch_members_run_concurrently():
    clock = FakeClock()
    running = 0
    peak = 0

    class SlowRunner:
        async def execute(self, e):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return FetchResult(url=e.url, success=True, status="saved")

    scheduler = make_scheduler(RecordingRunner(clock), clock)
    scheduler.runner = SlowRunner()
    stop_after(scheduler, 1)

    await scheduler.run([entry(u, "* * * * *") for u in ("A", "B", "C")])

    assert peak == 3


@pytest.mark.asyncio
async def test_one_failing_member_does_not_cancel_siblings():
    clock = FakeClock()
    finished = []

    class MixedRunner:
        async def execute(self, e):
            if e.url == "bad":
                raise RuntimeError("runner bug")
            await asyncio.sleep(0.01)
            finished.append(e.url)
            return FetchResult(url=e.url, success=True, status="saved")

    scheduler = make_scheduler(RecordingRunner(clock), clock)
    scheduler.runner = MixedRunner()
    stop_after(scheduler, 1)
    entries = [entry("bad", "* * * * *"), entry("good", "* * * * *")]

    await scheduler.run(entries)

    assert finished == ["good"]
    # Both schedules advanced, including the one that blew up
    assert all(e.next_occurrence == T0 + timedelta(minutes=2) for e in entries)


@pytest.mark.asyncio
async def test_solve_error_writes_nothing_and_still_advances(tmp_path, caplog):
    clock = FakeClock()
    client = MagicMock()
    client.solve = AsyncMock(return_value=SolverResponse(status="error", message="blocked"))
    directory = MagicMock(spec=SessionDirectory)
    directory.acquire = AsyncMock(return_value=SessionLease("sess-1"))
    runner = TaskRunner(directory, client, ContentWriter(tmp_path / "out"))
    scheduler = make_scheduler(RecordingRunner(clock), clock)
    scheduler.runner = runner
    stop_after(scheduler, 1)
    target = entry("https://blocked.example", "*/5 * * * *")

    with caplog.at_level(logging.ERROR):
        await scheduler.run([target])

    assert not (tmp_path / "out").exists()
    assert "Failed to get content for https://blocked.example" in caplog.text
    assert target.next_occurrence == T0 + timedelta(minutes=10)
    assert target.next_occurrence > clock()


@pytest.mark.asyncio
async def test_run_batch_collects_results():
    clock = FakeClock()
    scheduler = make_scheduler(RecordingRunner(clock), clock)

    results = await scheduler.run_batch([entry("A", "* * * * *"), entry("B", "* * * * *")])

    assert [r.url for r in results] == ["A", "B"]
    assert all(r.success and r.error_type is None for r in results)
