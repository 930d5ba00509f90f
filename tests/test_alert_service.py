"""Tests for alerting.alert_service: lifecycle transitions and alert queries."""

from __future__ import annotations

import pytest

from alerting.alert_service import AlertService
from alerting.alert_store import InMemoryAlertStore
from core.errors import AlertNotFoundError
from schemas.resource import ResourceType
from schemas.settings import Thresholds
from tests.conftest import T0

THRESHOLDS = Thresholds(warning=35, critical=20)


def _raise(store, resource="fuel", severity="critical", level=18.0, timestamp=T0):
    return store.create_alert({
        "resource": resource,
        "severity": severity,
        "level": level,
        "message": f"{resource} level low",
        "timestamp": timestamp,
    })


@pytest.fixture
def store():
    return InMemoryAlertStore()


@pytest.fixture
def service(store, clock):
    return AlertService(store, clock=clock)


class TestLifecycle:
    def test_acknowledge(self, service, store, clock):
        alert = _raise(store)
        service.acknowledge(alert.alert_id, "officer")
        saved = store.get(alert.alert_id)
        assert saved.acknowledged.status is True
        assert saved.acknowledged.by == "officer"
        assert saved.acknowledged.at == clock()
        assert saved.resolved_at is None

    def test_resolve_is_terminal(self, service, store, clock):
        alert = _raise(store)
        service.resolve(alert.alert_id)
        first = store.get(alert.alert_id).resolved_at
        clock.advance(seconds=60)
        service.resolve(alert.alert_id)
        assert store.get(alert.alert_id).resolved_at == first

    def test_unknown_alert_raises(self, service):
        with pytest.raises(AlertNotFoundError):
            service.acknowledge("missing", "officer")
        with pytest.raises(AlertNotFoundError):
            service.resolve("missing")

    def test_notifications_are_sticky(self, service, store):
        alert = _raise(store)
        service.record_notification(alert.alert_id, "email", ["bridge@vessel"])
        service.record_notification(alert.alert_id, "sms", ["+100"])
        service.record_notification(alert.alert_id, "sound")
        saved = store.get(alert.alert_id)
        assert saved.notifications.email.sent is True
        assert saved.notifications.email.recipients == ["bridge@vessel"]
        assert saved.notifications.sms.sent is True
        assert saved.notifications.sound.played is True

    def test_unknown_channel_rejected(self, service, store):
        alert = _raise(store)
        with pytest.raises(ValueError):
            service.record_notification(alert.alert_id, "pager")

    def test_resolve_recovered_above_critical(self, service, store):
        critical = _raise(store, severity="critical")
        warning = _raise(store, severity="warning", level=30.0)
        resolved = service.resolve_recovered(ResourceType.fuel, 25.0, THRESHOLDS)
        assert [a.alert_id for a in resolved] == [critical.alert_id]
        assert store.get(warning.alert_id).resolved_at is None

    def test_resolve_recovered_above_warning(self, service, store):
        _raise(store, severity="critical")
        _raise(store, severity="warning", level=30.0)
        resolved = service.resolve_recovered(ResourceType.fuel, 60.0, THRESHOLDS)
        assert len(resolved) == 2
        assert all(a.resolved_at is not None for a in store.list_alerts())


class TestQueries:
    def test_active_excludes_acknowledged_and_resolved(self, service, store, clock):
        a = _raise(store, resource="fuel")
        b = _raise(store, resource="oil")
        c = _raise(store, resource="water", timestamp=clock.advance(seconds=10))
        service.acknowledge(a.alert_id, "officer")
        service.resolve(b.alert_id)
        active = service.get_active_alerts()
        assert [x.alert_id for x in active] == [c.alert_id]

    def test_active_newest_first(self, service, store, clock):
        older = _raise(store, resource="fuel")
        newer = _raise(store, resource="oil", timestamp=clock.advance(seconds=30))
        assert [a.alert_id for a in service.get_active_alerts()] == [newer.alert_id, older.alert_id]

    def test_history_filters(self, service, store, clock):
        _raise(store, resource="fuel", severity="critical")
        _raise(store, resource="fuel", severity="warning", level=30.0, timestamp=clock.advance(hours=1))
        _raise(store, resource="water", severity="warning", level=32.0, timestamp=clock.advance(hours=1))
        assert len(service.get_alerts_history(resource="fuel")) == 2
        assert len(service.get_alerts_history(severity="warning")) == 2
        assert len(service.get_alerts_history(start_date=T0.replace(hour=9))) == 2
        assert len(service.get_alerts_history(limit=1)) == 1
        assert service.get_alerts_history()[0].resource == ResourceType.water

    def test_stats_grouped_by_resource_and_severity(self, service, store):
        _raise(store, resource="fuel", severity="critical", level=18.0)
        _raise(store, resource="fuel", severity="critical", level=10.0)
        _raise(store, resource="fuel", severity="warning", level=30.0)
        stats = {s.resource: s for s in service.get_alert_stats()}
        fuel = stats[ResourceType.fuel]
        assert fuel.total_count == 3
        critical = next(s for s in fuel.severities if s.severity == "critical")
        assert critical.count == 2
        assert critical.average_level == pytest.approx(14.0)
        assert critical.min_level == 10.0
        assert critical.max_level == 18.0
