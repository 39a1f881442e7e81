# tests/test_scheduler.py
import random
from datetime import datetime, timedelta
from unittest import mock
from apscheduler.jobstores.base import JobLookupError
import pytest
from immobot.scheduler import (
    JOB_ID, CheckScheduler, JitteredNightTrigger, SchedulerState,
    is_night_hour, next_interval_seconds, night_end_after, seconds_until_night_end,
)


def test_night_window_wrapping_midnight():
    night = {h for h in range(24) if is_night_hour(h, 23, 7)}
    assert night == {23, 0, 1, 2, 3, 4, 5, 6}


def test_night_window_same_day():
    night = {h for h in range(24) if is_night_hour(h, 1, 6)}
    assert night == {1, 2, 3, 4, 5}


def test_empty_night_window():
    assert not any(is_night_hour(h, 5, 5) for h in range(24))


def test_jitter_stays_within_bounds():
    rng = random.Random(24)
    samples = [next_interval_seconds(10, 30, uniform=rng.uniform) for _ in range(10000)]
    assert min(samples) >= 420
    assert max(samples) <= 780
    # roughly centred on the base interval
    assert 580 < sum(samples) / len(samples) < 620


def test_interval_has_one_minute_floor():
    assert next_interval_seconds(1, 50, uniform=lambda a, b: a) == 60
    assert next_interval_seconds(10, 0) == 600


def test_night_end_after():
    assert night_end_after(datetime(2024, 3, 1, 23, 30), 7) == datetime(2024, 3, 2, 7)
    assert night_end_after(datetime(2024, 3, 2, 3, 0), 7) == datetime(2024, 3, 2, 7)
    assert seconds_until_night_end(datetime(2024, 3, 2, 6, 0), 7) == 3600


def make_trigger(settings, now):
    return JitteredNightTrigger(settings, clock=lambda: now)


def test_trigger_fires_immediately_first_time(settings):
    now = datetime(2024, 3, 1, 12, 0)
    assert make_trigger(settings, now).get_next_fire_time(None, now) == now


def test_trigger_adds_jittered_interval(settings):
    now = datetime(2024, 3, 1, 12, 0)
    fire = make_trigger(settings, now).get_next_fire_time(now, now)
    assert timedelta(minutes=7) <= fire - now <= timedelta(minutes=13)


def test_trigger_is_pushed_to_night_end(settings):
    now = datetime(2024, 3, 1, 22, 55)
    fire = make_trigger(settings, now).get_next_fire_time(now, now)
    assert fire == datetime(2024, 3, 2, 7, 0)


def test_trigger_ignores_night_when_disabled(settings):
    now = datetime(2024, 3, 1, 22, 55)
    fire = make_trigger(settings.with_overrides(night_mode_enabled=False), now).get_next_fire_time(now, now)
    assert fire < datetime(2024, 3, 1, 23, 10)


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def make_scheduler(settings, cycle, now=datetime(2024, 3, 1, 12, 0)):
    backend = mock.MagicMock()
    backend.running = True
    return CheckScheduler(settings, cycle, scheduler=backend, clock=Clock(now)), backend


def test_tick_runs_cycle_during_day(settings):
    cycle = mock.Mock()
    scheduler, _ = make_scheduler(settings, cycle)
    scheduler.tick()
    cycle.run_cycle.assert_called_once()
    assert scheduler.state is SchedulerState.SLEEPING_INTERVAL
    assert scheduler.last_cycle_at == datetime(2024, 3, 1, 12, 0)


def test_tick_at_night_skips_cycle(settings):
    cycle = mock.Mock()
    scheduler, _ = make_scheduler(settings, cycle, now=datetime(2024, 3, 2, 2, 0))
    scheduler.tick()
    cycle.run_cycle.assert_not_called()
    assert scheduler.state is SchedulerState.SLEEPING_NIGHT


def test_failed_cycle_keeps_schedule(settings):
    cycle = mock.Mock()
    cycle.run_cycle.side_effect = RuntimeError("search page timeout")
    scheduler, backend = make_scheduler(settings, cycle)
    scheduler.tick()
    assert scheduler.last_error == "search page timeout"
    assert scheduler.state is SchedulerState.SLEEPING_INTERVAL
    backend.shutdown.assert_not_called()


def test_resource_exhaustion_stops_scheduler_once_job_is_rescheduled(settings):
    cycle = mock.Mock()
    cycle.run_cycle.side_effect = MemoryError()
    scheduler, backend = make_scheduler(settings, cycle)

    scheduler.tick()
    assert isinstance(scheduler.fatal_error, MemoryError)
    backend.shutdown.assert_not_called()

    scheduler._on_job_submitted(mock.Mock())
    backend.shutdown.assert_called_once_with(wait=False)
    assert scheduler.state is SchedulerState.STOPPED


def test_stop_while_sleeping_shuts_down_at_once(settings):
    scheduler, backend = make_scheduler(settings, mock.Mock())
    scheduler.stop()
    scheduler.stop()
    backend.shutdown.assert_called_once_with(wait=False)
    assert scheduler.state is SchedulerState.STOPPED


def test_stop_during_cycle_waits_for_cycle_to_return(settings):
    cycle = mock.Mock()
    scheduler, backend = make_scheduler(settings, cycle)
    cycle.run_cycle.side_effect = lambda: scheduler.stop()

    scheduler.tick()
    backend.shutdown.assert_not_called()
    assert scheduler.state is SchedulerState.RUNNING_CYCLE

    scheduler._on_job_submitted(mock.Mock())
    backend.shutdown.assert_called_once_with(wait=False)
    assert scheduler.state is SchedulerState.STOPPED


def test_start_reraises_fatal_error(settings):
    cycle = mock.Mock()
    scheduler, backend = make_scheduler(settings, cycle)
    backend.start.side_effect = lambda: setattr(scheduler, "fatal_error", MemoryError())
    with pytest.raises(MemoryError):
        scheduler.start()
    assert scheduler.state is SchedulerState.STOPPED


def test_job_store_gone_after_stop_ends_start_cleanly(settings):
    scheduler, backend = make_scheduler(settings, mock.Mock())

    def interrupted():
        scheduler.stop()
        raise JobLookupError(JOB_ID)

    backend.start.side_effect = interrupted
    scheduler.start()
    assert scheduler.state is SchedulerState.STOPPED


def test_job_store_error_without_stop_propagates(settings):
    scheduler, backend = make_scheduler(settings, mock.Mock())
    backend.start.side_effect = JobLookupError(JOB_ID)
    with pytest.raises(JobLookupError):
        scheduler.start()


def test_force_check_pulls_job_forward(settings):
    scheduler, backend = make_scheduler(settings, mock.Mock())
    job = backend.get_job.return_value
    assert scheduler.force_check() == datetime(2024, 3, 1, 12, 0)
    job.modify.assert_called_once_with(next_run_time=datetime(2024, 3, 1, 12, 0))


def test_force_check_refused_while_cycle_runs(settings):
    cycle = mock.Mock()
    scheduler, backend = make_scheduler(settings, cycle)
    answers = []
    cycle.run_cycle.side_effect = lambda: answers.append(scheduler.force_check())

    scheduler.tick()

    assert answers == [None]
    backend.get_job.assert_not_called()


def test_force_check_refused_after_stop(settings):
    scheduler, backend = make_scheduler(settings, mock.Mock())
    scheduler.stop()
    assert scheduler.force_check() is None
    backend.get_job.return_value.modify.assert_not_called()


def test_tick_arriving_during_force_check_is_skipped(settings):
    cycle = mock.Mock()
    scheduler, backend = make_scheduler(settings, cycle)

    def get_job(job_id):
        scheduler.tick()
        return mock.DEFAULT

    backend.get_job.side_effect = get_job
    assert scheduler.force_check() is not None
    cycle.run_cycle.assert_not_called()

    backend.get_job.side_effect = None
    scheduler.tick()
    cycle.run_cycle.assert_called_once()


def test_stop_from_inside_cycle_ends_blocking_scheduler(settings):
    calls = []

    class Cycle:
        def run_cycle(self):
            calls.append(1)
            scheduler.stop()

    scheduler = CheckScheduler(settings.with_overrides(night_mode_enabled=False), Cycle())
    scheduler.start()
    assert calls == [1]
    assert scheduler.state is SchedulerState.STOPPED


def test_memory_error_in_cycle_ends_blocking_scheduler(settings):
    cycle = mock.Mock()
    cycle.run_cycle.side_effect = MemoryError()
    scheduler = CheckScheduler(settings.with_overrides(night_mode_enabled=False), cycle)

    with pytest.raises(MemoryError):
        scheduler.start()

    cycle.run_cycle.assert_called_once()
    assert scheduler.state is SchedulerState.STOPPED
