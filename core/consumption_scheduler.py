"""Consumption scheduler.

Timer-driven depletion for one resource group:

  * engine group (fuel, oil): runs only while the engine is on, 5 s ticks,
    stops itself when either tank runs dry
  * provisions group (food, water): runs regardless of the engine, 15 min ticks

States: idle -> running (start) -> idle (stop or depletion). Every tick uses
the wall-clock time elapsed since that resource's previous tick, so a stalled
loop or a resumed process catches up in one consumption instead of dropping
time. Stopping cancels the pending wait, joins the loop thread and performs
exactly one final flush.

Durable writes go through a WriteGuard: over the per-minute cap a tick still
updates the live level but skips the store write until the next window.
"""

import logging
import threading
import time
from datetime import datetime
from typing import Dict, Iterable, Optional, Union

from core.level_engine import Clock
from core.resource_service import ResourceService
from schemas.events import EngineEvent
from schemas.resource import (
    ENGINE_RESOURCES, PROVISION_RESOURCES, SYSTEM_ACTOR, EngineState, ResourceAction, ResourceType,
)
from utils.write_guard import WriteGuard

logger = logging.getLogger(__name__)

IDLE = "idle"
RUNNING = "running"

ResumePoint = Union[datetime, Dict[ResourceType, datetime], None]


class ConsumptionScheduler:
    def __init__(self, service: ResourceService, resource_types: Iterable[ResourceType],
                 interval_s: float, name: str = "consumption",
                 engine: bool = False,
                 clock: Optional[Clock] = None,
                 write_guard: Optional[WriteGuard] = None,
                 min_start_level: Optional[float] = None,
                 join_timeout_s: float = 5.0):
        self.service = service
        self.resource_types = tuple(ResourceType(t) for t in resource_types)
        self.interval_s = interval_s
        self.name = name
        self.engine = engine
        self.clock = clock or service.clock
        self.write_guard = write_guard or WriteGuard(max_writes=service.settings.max_writes_per_minute)
        self.min_start_level = min_start_level
        self.join_timeout_s = join_timeout_s

        self.state = IDLE
        self.engine_hours = 0.0
        self._hours_mark: Optional[datetime] = None
        self._last_tick: Dict[ResourceType, datetime] = {}

        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self.state == RUNNING

    # ---------- lifecycle ----------
    def start(self, resume_from: ResumePoint = None) -> bool:
        """idle -> running. ``resume_from`` (one time, or one per resource) triggers an immediate catch-up tick."""
        with self._state_lock:
            if self.state == RUNNING:
                logger.info(f"[Scheduler:{self.name}] Already running")
                return True

            if self.min_start_level is not None:
                for rtype in self.resource_types:
                    level = self.service.get_level(rtype)
                    if level <= self.min_start_level:
                        logger.warning(f"[Scheduler:{self.name}] Refusing start: {rtype.value} at {level:.1f}% "
                                       f"(min {self.min_start_level:.1f}%)")
                        return False

            now = self.clock()
            self._last_tick = {}
            for rtype in self.resource_types:
                point = resume_from.get(rtype) if isinstance(resume_from, dict) else resume_from
                self._last_tick[rtype] = point if point is not None and point < now else now
            self._hours_mark = min(self._last_tick.values()) if self._last_tick else now

            self.state = RUNNING
            self._stop = threading.Event()
            self._thread = threading.Thread(target=self._run, args=(self._stop,), daemon=True,
                                            name=f"consumption-{self.name}")
            self._thread.start()

        logger.info(f"[Scheduler:{self.name}] Started interval={self.interval_s:.1f}s")
        if self.engine:
            self.service.publish(EngineEvent(status="started", engine_hours=self.engine_hours, timestamp=now))
            self._save_engine_state(now)
        if resume_from is not None:
            self.tick()
        return True

    def stop(self, suspend: bool = False) -> bool:
        """running -> idle with exactly one final flush for the partial interval.

        ``suspend`` is for process shutdown: the loop ends but the engine is
        recorded as still running so the next start can catch up.
        """
        with self._state_lock:
            if self.state != RUNNING:
                return False
            self._stop.set()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout_s)
            if thread.is_alive():
                logger.warning(f"[Scheduler:{self.name}] Loop thread did not exit within {self.join_timeout_s}s")

        with self._tick_lock:
            if self.state != RUNNING:
                # a depletion tick got there first
                return True
            now = self.clock()
            self._consume(now)
            if suspend:
                self.state = IDLE
                self.service.flush(self.resource_types)
                if self.engine:
                    self.service.save_engine_state(EngineState(
                        running=True, engine_hours=self.engine_hours, last_run_time=now))
                logger.info(f"[Scheduler:{self.name}] Suspended")
            else:
                self._transition_idle(now, reason=None)
        return True

    def toggle(self) -> bool:
        """Returns the new running status."""
        if self.is_running:
            self.stop()
        else:
            self.start()
        return self.is_running

    # ---------- ticking ----------
    def tick(self) -> bool:
        if not self._tick_lock.acquire(blocking=False):
            logger.warning(f"[Scheduler:{self.name}] Previous tick still in flight; skipping")
            return False
        try:
            if self.state != RUNNING:
                return False
            now = self.clock()
            persisted = self._consume(now)
            if self.engine:
                depleted = [t for t in self.resource_types if self.service.get_level(t) <= 0]
                if depleted:
                    logger.warning(f"[Scheduler:{self.name}] {', '.join(t.value for t in depleted)} depleted; "
                                   f"stopping engine")
                    self._transition_idle(now, reason="depleted")
                elif persisted:
                    self._save_engine_state(now)
            return True
        finally:
            self._tick_lock.release()

    def _consume(self, now: datetime) -> bool:
        # caller holds self._tick_lock
        any_persisted = False
        for rtype in self.resource_types:
            last = self._last_tick.get(rtype, now)
            elapsed = (now - last).total_seconds()
            self._last_tick[rtype] = now
            if elapsed <= 0:
                continue
            try:
                rate = self.service.get_consumption_rate(rtype)
                amount = rate.per_hour() / 3600.0 * elapsed
                if amount <= 0:
                    continue
                persist = self.write_guard.allow(rtype.value)
                result = self.service.apply_resource_action(
                    rtype, amount, ResourceAction.consumption, SYSTEM_ACTOR, persist=persist)
                any_persisted = any_persisted or result.persisted
                logger.debug(f"[Scheduler:{self.name}] {rtype.value} -{amount:.4f} over {elapsed:.1f}s "
                             f"-> {result.new_level:.3f}% persisted={result.persisted}")
            except Exception:
                logger.exception(f"[Scheduler:{self.name}] Consumption failed for {rtype.value}")

        if self.engine and self._hours_mark is not None:
            self.engine_hours += max((now - self._hours_mark).total_seconds(), 0.0) / 3600.0
            self._hours_mark = now
        return any_persisted

    def _transition_idle(self, now: datetime, reason: Optional[str]) -> None:
        # caller holds self._tick_lock
        self.state = IDLE
        self._stop.set()
        self.service.flush(self.resource_types)
        logger.info(f"[Scheduler:{self.name}] Stopped{f' ({reason})' if reason else ''}")
        if self.engine:
            self.service.publish(EngineEvent(status="stopped", reason=reason,
                                             engine_hours=self.engine_hours, timestamp=now))
            self._save_engine_state(now)

    def _save_engine_state(self, now: datetime) -> None:
        self.service.save_engine_state(EngineState(
            running=self.is_running,
            engine_hours=self.engine_hours,
            last_run_time=now if self.is_running else None,
        ))

    def resume_points_from_history(self) -> Dict[ResourceType, datetime]:
        """Last recorded consumption (or last update) per resource, for catch-up after downtime."""
        points = {}
        for rtype in self.resource_types:
            state = self.service.get_state(rtype)
            points[rtype] = state.last_consumption_at() or state.last_updated
        return points

    # ---------- loop ----------
    def _run(self, stop_event: threading.Event):
        logger.info(f"[Scheduler:{self.name}] Starting thread loop")
        wait_for = self.interval_s
        while not stop_event.wait(wait_for):
            start_time = time.monotonic()
            try:
                self.tick()
            except Exception:
                logger.exception(f"[Scheduler:{self.name}] Tick error")

            elapsed = time.monotonic() - start_time
            if elapsed < self.interval_s:
                wait_for = self.interval_s - elapsed
            else:
                wait_for = 0
                logger.warning(f"[Scheduler:{self.name}] Loop overran by {elapsed - self.interval_s:.3f}s")
        logger.info(f"[Scheduler:{self.name}] Thread loop stopped")


def engine_scheduler(service: ResourceService, **kwargs) -> ConsumptionScheduler:
    settings = service.settings
    kwargs.setdefault("interval_s", settings.engine_tick_seconds)
    kwargs.setdefault("min_start_level", settings.min_start_level)
    return ConsumptionScheduler(service, ENGINE_RESOURCES, name="engine", engine=True, **kwargs)


def provisions_scheduler(service: ResourceService, **kwargs) -> ConsumptionScheduler:
    kwargs.setdefault("interval_s", service.settings.provisions_tick_seconds)
    return ConsumptionScheduler(service, PROVISION_RESOURCES, name="provisions", **kwargs)
