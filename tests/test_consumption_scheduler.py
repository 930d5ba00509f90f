"""Tests for core.consumption_scheduler: ticking, stop/flush, depletion and catch-up."""

from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from core.consumption_scheduler import IDLE, RUNNING, engine_scheduler, provisions_scheduler
from core.resource_store import InMemoryResourceStore
from schemas.resource import ResourceAction, ResourceType
from utils.write_guard import WriteGuard
from tests.conftest import make_resource, make_service

# Long interval so the loop thread never ticks on its own during a test.
INTERVAL = 3600


def engine_states(fuel_level=80.0, fuel_rate=100.0):
    return [
        make_resource(resource_type=ResourceType.fuel, level=fuel_level, capacity=10000.0, rate=fuel_rate),
        make_resource(resource_type=ResourceType.oil, level=80.0, capacity=1000.0, rate=10.0),
    ]


def provision_states():
    return [
        make_resource(resource_type=ResourceType.food, level=80.0, capacity=5000.0, unit="kg",
                      rate=50.0, rate_unit="kg/day"),
        make_resource(resource_type=ResourceType.water, level=80.0, capacity=8000.0,
                      rate=240.0, rate_unit="L/day"),
    ]


class SlowSaveStore(InMemoryResourceStore):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    def save(self, state):
        time.sleep(self.delay)
        super().save(state)


@pytest.fixture
def store():
    return InMemoryResourceStore()


# ═══════════════════════════════════════════════════════════════════════════
#  Engine group
# ═══════════════════════════════════════════════════════════════════════════

class TestEngineScheduler:
    def test_start_and_tick_consumes_elapsed_time(self, clock, publisher):
        service = make_service(clock=clock, states=engine_states(), publisher=publisher)
        sched = engine_scheduler(service, interval_s=INTERVAL)
        assert sched.start() is True
        try:
            clock.advance(hours=1)
            assert sched.tick() is True
            assert service.get_level("fuel") == pytest.approx(79.0)
            assert service.get_level("oil") == pytest.approx(79.0)
            assert sched.engine_hours == pytest.approx(1.0)
        finally:
            sched.stop()
        assert publisher.of_type("engine")[0]["status"] == "started"

    def test_depletion_stops_engine_once(self, clock, publisher):
        service = make_service(clock=clock, states=engine_states(fuel_level=100.0, fuel_rate=100000.0),
                               publisher=publisher)
        sched = engine_scheduler(service, interval_s=INTERVAL)
        sched.start()
        clock.advance(seconds=361)
        sched.tick()

        assert service.get_level("fuel") == 0.0
        assert sched.state == IDLE
        stopped = [e for e in publisher.of_type("engine") if e["status"] == "stopped"]
        assert len(stopped) == 1
        assert stopped[0]["reason"] == "depleted"

        assert sched.stop() is False
        assert sched.tick() is False
        assert len([e for e in publisher.of_type("engine") if e["status"] == "stopped"]) == 1
        assert service.load_engine_state().running is False

    def test_depletion_raises_critical_alert(self, clock, publisher):
        service = make_service(clock=clock, states=engine_states(fuel_level=100.0, fuel_rate=100000.0),
                               publisher=publisher)
        sched = engine_scheduler(service, interval_s=INTERVAL)
        sched.start()
        clock.advance(seconds=361)
        sched.tick()
        alerts = publisher.of_type("alert")
        assert [a["severity"] for a in alerts if a["resource"] == "fuel"] == ["critical"]

    def test_start_refused_at_low_level(self, clock):
        service = make_service(clock=clock, states=engine_states(fuel_level=4.0))
        sched = engine_scheduler(service, interval_s=INTERVAL)
        assert sched.start() is False
        assert sched.state == IDLE

    def test_stop_flushes_partial_interval(self, clock, store, publisher):
        service = make_service(clock=clock, states=engine_states(), store=store, publisher=publisher)
        sched = engine_scheduler(service, interval_s=INTERVAL)
        sched.start()
        clock.advance(seconds=1800)
        assert sched.stop() is True

        assert sched.state == IDLE
        assert store.find_resource("fuel").level == pytest.approx(79.5)
        history = store.find_resource("fuel").history
        assert [e.action for e in history] == [ResourceAction.consumption]
        [stopped] = [e for e in publisher.of_type("engine") if e["status"] == "stopped"]
        assert stopped["reason"] is None

    def test_suspend_keeps_engine_marked_running(self, clock, publisher):
        service = make_service(clock=clock, states=engine_states(), publisher=publisher)
        sched = engine_scheduler(service, interval_s=INTERVAL)
        sched.start()
        clock.advance(seconds=60)
        sched.stop(suspend=True)

        engine_state = service.load_engine_state()
        assert engine_state.running is True
        assert engine_state.last_run_time == clock()
        assert [e["status"] for e in publisher.of_type("engine")] == ["started"]

    def test_resume_catches_up(self, clock):
        service = make_service(clock=clock, states=engine_states())
        sched = engine_scheduler(service, interval_s=INTERVAL)
        sched.start(resume_from=clock() - timedelta(hours=2))
        try:
            assert service.get_level("fuel") == pytest.approx(78.0)
            assert sched.engine_hours == pytest.approx(2.0)
        finally:
            sched.stop()

    def test_toggle(self, clock):
        service = make_service(clock=clock, states=engine_states())
        sched = engine_scheduler(service, interval_s=INTERVAL)
        assert sched.toggle() is True
        assert sched.state == RUNNING
        assert sched.toggle() is False
        assert sched.state == IDLE

    def test_tick_skipped_while_in_flight(self, clock):
        service = make_service(clock=clock, states=engine_states())
        sched = engine_scheduler(service, interval_s=INTERVAL)
        sched.start()
        try:
            with sched._tick_lock:
                assert sched.tick() is False
        finally:
            sched.stop()

    def test_ticks_and_deliveries_interleave_without_lost_updates(self, clock):
        store = SlowSaveStore(delay=0.002)
        service = make_service(clock=clock, store=store, states=engine_states(fuel_level=50.0, fuel_rate=100.0))
        sched = engine_scheduler(service, interval_s=INTERVAL)
        sched.start()
        barrier = threading.Barrier(2)
        errors = []

        def ticker():
            try:
                barrier.wait(timeout=2.0)
                for _ in range(20):
                    clock.advance(seconds=180)
                    sched.tick()
            except Exception as e:
                errors.append(e)

        def crew():
            try:
                barrier.wait(timeout=2.0)
                for _ in range(20):
                    service.record_delivery("fuel", 10, actor_id="crew")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=ticker), threading.Thread(target=crew)]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10.0)
            assert errors == []
            # 20 ticks x 5 L consumed, 20 x 10 L delivered, on 5000 L of 10000 L
            assert service.get_level("fuel") == pytest.approx(51.0)
            assert len(service.get_state("fuel").history) == 40
        finally:
            sched.stop()


# ═══════════════════════════════════════════════════════════════════════════
#  Provisions group
# ═══════════════════════════════════════════════════════════════════════════

class TestProvisionsScheduler:
    def test_daily_rates_converted(self, clock):
        service = make_service(clock=clock, states=provision_states())
        sched = provisions_scheduler(service, interval_s=INTERVAL)
        sched.start()
        try:
            clock.advance(hours=24)
            sched.tick()
            # 50 kg of 5000 kg and 240 L of 8000 L per day
            assert service.get_level("food") == pytest.approx(79.0)
            assert service.get_level("water") == pytest.approx(77.0)
        finally:
            sched.stop()

    def test_write_guard_defers_store_write(self, clock, store):
        service = make_service(clock=clock, states=provision_states(), store=store)
        guard = WriteGuard(max_writes=1, clock=lambda: 0.0)
        sched = provisions_scheduler(service, interval_s=INTERVAL, write_guard=guard)
        sched.start()
        clock.advance(hours=24)
        sched.tick()

        assert store.find_resource("food").level == pytest.approx(79.0)
        assert store.find_resource("water").level == 80.0
        assert service.get_level("water") == pytest.approx(77.0)
        assert service.is_dirty("water")

        sched.stop()
        assert store.find_resource("water").level == pytest.approx(77.0)
        assert not service.is_dirty("water")

    def test_resume_points_from_history(self, clock):
        service = make_service(clock=clock, states=provision_states())
        service.apply_resource_action("water", 1, "consumption")
        consumed_at = clock()
        clock.advance(hours=3)
        sched = provisions_scheduler(service, interval_s=INTERVAL)
        points = sched.resume_points_from_history()
        assert points[ResourceType.water] == consumed_at
        assert points[ResourceType.food] == make_resource().last_updated
