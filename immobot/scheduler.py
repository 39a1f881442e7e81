# immobot/scheduler.py
"""Paces check cycles: a jittered interval, no checks during the night window.

Jobs run on the scheduler's own (main) thread through ``DebugExecutor`` so the
synchronous Playwright page is only ever touched from one thread and a second
cycle can never start while one is running. The next fire time is computed by
``JitteredNightTrigger`` once the previous cycle has returned.
"""
import random
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional
from apscheduler.events import EVENT_JOB_SUBMITTED
from apscheduler.executors.debug import DebugExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.base import BaseTrigger
from .utils import logger, format_duration, is_resource_exhaustion

MIN_INTERVAL_SECONDS = 60
JOB_ID = "listing-check"


def next_interval_seconds(base_minutes: float, offset_percent: float,
                          uniform: Callable[[float, float], float] = random.uniform) -> float:
    """``base * (1 + U(-offset, +offset))`` in seconds, never below one minute."""
    offset = offset_percent / 100.0
    seconds = base_minutes * 60 * (1 + uniform(-offset, offset))
    return max(MIN_INTERVAL_SECONDS, seconds)


def is_night_hour(hour: int, start: int, end: int) -> bool:
    """True if ``hour`` lies in ``[start, end)``; the window may wrap past midnight."""
    if start == end:
        return False
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


def night_end_after(moment: datetime, end_hour: int) -> datetime:
    end = moment.replace(hour=end_hour, minute=0, second=0, microsecond=0)
    if end <= moment:
        end += timedelta(days=1)
    return end


def seconds_until_night_end(moment: datetime, end_hour: int) -> float:
    return (night_end_after(moment, end_hour) - moment).total_seconds()


class JitteredNightTrigger(BaseTrigger):
    """Fires a jittered interval after it is asked; pushed to the end of the night window if it would land inside."""

    def __init__(self, settings, timezone=None, clock: Callable[[], datetime] = None):
        self.settings = settings
        self.timezone = timezone
        self._clock = clock or (lambda: datetime.now(self.timezone))

    def in_night(self, moment: datetime) -> bool:
        s = self.settings
        return s.night_mode_enabled and is_night_hour(moment.hour, s.night_start_hour, s.night_end_hour)

    def get_next_fire_time(self, previous_fire_time, now):
        # cycles run inline, so the scheduler's ``now`` predates the cycle that just finished
        now = self._clock()
        if previous_fire_time is None:
            return now
        s = self.settings
        fire = now + timedelta(seconds=next_interval_seconds(s.base_interval_minutes, s.random_offset_percent))
        if self.in_night(fire):
            fire = night_end_after(fire, s.night_end_hour)
        return fire

    def __str__(self):
        return "jittered[%dmin ±%d%%]" % (self.settings.base_interval_minutes, self.settings.random_offset_percent)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING_CYCLE = "running_cycle"
    SLEEPING_NIGHT = "sleeping_night"
    SLEEPING_INTERVAL = "sleeping_interval"
    STOPPED = "stopped"


class CheckScheduler:
    def __init__(self, settings, cycle, scheduler=None, clock: Callable[[], datetime] = None):
        self.settings = settings
        self.cycle = cycle
        self._scheduler = scheduler or BlockingScheduler(
            executors={"default": DebugExecutor()},
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": None},
        )
        self._clock = clock or (lambda: datetime.now(self._scheduler.timezone))
        self.trigger = JitteredNightTrigger(settings, timezone=self._scheduler.timezone, clock=self._clock)
        self.state = SchedulerState.IDLE
        self.fatal_error: Optional[BaseException] = None
        self.last_cycle_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        # held by a running tick and by force_check; neither waits for the other
        self._busy = threading.Lock()
        self._in_tick = False
        self._stop_requested = False

    def start(self):
        """Block running checks until ``stop`` is called. Re-raises resource exhaustion."""
        self._scheduler.add_job(self.tick, trigger=self.trigger, id=JOB_ID, name="listing check",
                                next_run_time=self._clock(), replace_existing=True)
        self._scheduler.add_listener(self._on_job_submitted, EVENT_JOB_SUBMITTED)
        logger.info("Scheduler started: every %d min ±%d%%, night mode %s",
                    self.settings.base_interval_minutes, self.settings.random_offset_percent,
                    f"{self.settings.night_start_hour}:00-{self.settings.night_end_hour}:00"
                    if self.settings.night_mode_enabled else "off")
        try:
            self._scheduler.start()
        except JobLookupError:
            # a signal shut the job store down while the scheduler was rescheduling the job
            if not self._stop_requested:
                raise
        finally:
            self.state = SchedulerState.STOPPED
        if self.fatal_error is not None:
            raise self.fatal_error

    def stop(self):
        """Cancel the pending tick. A cycle already running is left to finish."""
        if self._stop_requested or self.state is SchedulerState.STOPPED or not self._scheduler.running:
            return
        self._stop_requested = True
        if self._in_tick:
            # the job store is still needed to reschedule the running job; shut down once it has
            logger.info("Stopping scheduler after the running check")
            return
        logger.info("Stopping scheduler")
        self._shutdown()

    def _shutdown(self):
        self._scheduler.shutdown(wait=False)
        self.state = SchedulerState.STOPPED

    def tick(self):
        if not self._busy.acquire(blocking=False):
            logger.info("Forced check pending, skipping this tick")
            return
        self._in_tick = True
        try:
            self._tick()
        finally:
            self._in_tick = False
            self._busy.release()

    def _tick(self):
        now = self._clock()
        if self.trigger.in_night(now):
            wait = seconds_until_night_end(now, self.settings.night_end_hour)
            logger.info("Night mode active, next check in %s", format_duration(wait))
            self.state = SchedulerState.SLEEPING_NIGHT
            return

        self.state = SchedulerState.RUNNING_CYCLE
        try:
            self.cycle.run_cycle()
            self.last_error = None
        except Exception as e:
            if is_resource_exhaustion(e):
                logger.critical("Resource exhaustion, shutting down: %s", e)
                self.fatal_error = e
                self.stop()
                return
            logger.exception("Check cycle failed")
            self.last_error = str(e)
        finally:
            self.last_cycle_at = self._clock()

        if not self._stop_requested:
            self.state = SchedulerState.SLEEPING_INTERVAL

    def _on_job_submitted(self, event):
        # submission events are dispatched after the job store holds the new fire time
        if self._stop_requested:
            if self._scheduler.running:
                self._shutdown()
            return
        next_run = self.next_run_time()
        if next_run is not None:
            logger.info("Next check at %s", next_run.strftime("%d.%m. %H:%M:%S"))

    def next_run_time(self) -> Optional[datetime]:
        job = self._scheduler.get_job(JOB_ID)
        return job.next_run_time if job is not None else None

    def force_check(self) -> Optional[datetime]:
        """Pull the pending tick forward to now and return that time. None if a check is running or we are stopped."""
        if self._stop_requested or self.state is SchedulerState.STOPPED:
            return None
        if not self._busy.acquire(blocking=False):
            return None
        try:
            job = self._scheduler.get_job(JOB_ID)
            if job is None:
                return None
            when = self._clock()
            logger.info("Forced check requested")
            job.modify(next_run_time=when)
            return when
        except JobLookupError:
            return None
        finally:
            self._busy.release()
