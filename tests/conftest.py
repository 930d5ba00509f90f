"""Shared fixtures for vessel resource tracking tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from alerting.alert_service import AlertService
from alerting.alert_store import InMemoryAlertStore
from core.resource_service import ResourceService
from core.resource_store import InMemoryResourceStore
from schemas.resource import ConsumptionRate, ResourceState, ResourceType
from schemas.settings import VesselSettings

T0 = datetime(2026, 3, 1, 8, 0, 0, tzinfo=timezone.utc)


# ── Deterministic clock ─────────────────────────────────────────────────


class FakeClock:
    """Callable clock; moves only when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, hours: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, hours=hours)
        return self.now


class RecordingPublisher:
    def __init__(self, fail: bool = False):
        self.events: list[dict] = []
        self.fail = fail

    def publish(self, event: dict) -> None:
        if self.fail:
            raise ConnectionError("broker unreachable")
        self.events.append(event)

    def of_type(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["type"] == event_type]


# ── Helper: build states and services with sensible defaults ────────────


def make_resource(
    *,
    resource_type: ResourceType = ResourceType.fuel,
    level: float = 50.0,
    capacity: float = 1000.0,
    unit: str = "L",
    rate: float = 10.0,
    rate_unit: str = "L/h",
    last_updated: datetime = T0,
) -> ResourceState:
    return ResourceState(
        resource_type=resource_type,
        level=level,
        capacity=capacity,
        unit=unit,
        consumption_rate=ConsumptionRate(value=rate, unit=rate_unit),
        last_updated=last_updated,
    )


def make_service(
    *,
    clock: FakeClock | None = None,
    states: list[ResourceState] | None = None,
    store=None,
    settings: VesselSettings | None = None,
    publisher=None,
    dispatcher=None,
    write_timeout_s: float | None = None,
    alert_store=None,
) -> ResourceService:
    clock = clock or FakeClock()
    store = store or InMemoryResourceStore()
    for state in states or []:
        store.save(state)
    alerts = AlertService(alert_store or InMemoryAlertStore(), clock=clock)
    return ResourceService(
        store,
        alerts,
        settings=settings or VesselSettings(),
        publisher=publisher,
        dispatcher=dispatcher,
        clock=clock,
        write_timeout_s=write_timeout_s,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()
