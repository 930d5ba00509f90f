import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import List, Optional

from alerting.alert_store import AlertStore
from core.errors import AlertNotFoundError
from core.level_engine import Clock
from schemas.alerts import AlertRecord, AlertStats, ResourceAlertStats, CRITICAL, WARNING
from schemas.resource import ResourceType, utcnow
from schemas.settings import Thresholds

logger = logging.getLogger(__name__)


class AlertService:
    """Alert lifecycle: created -> acknowledged (optional) -> resolved (terminal)."""

    def __init__(self, store: AlertStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or utcnow
        self._lock = threading.Lock()

    def _fetch(self, alert_id: str) -> AlertRecord:
        alert = self.store.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert not found: {alert_id}")
        return alert

    def get_alert(self, alert_id: str) -> AlertRecord:
        return self._fetch(alert_id)

    def acknowledge(self, alert_id: str, actor_id: str) -> AlertRecord:
        with self._lock:
            alert = self._fetch(alert_id)
            alert.acknowledge(actor_id, self.clock())
            self.store.save(alert)
        logger.info(f"[Alerts] {alert_id} acknowledged by {actor_id}")
        return alert

    def resolve(self, alert_id: str) -> AlertRecord:
        with self._lock:
            alert = self._fetch(alert_id)
            alert.resolve(self.clock())
            self.store.save(alert)
        logger.info(f"[Alerts] {alert_id} resolved")
        return alert

    def record_notification(self, alert_id: str, channel: str, recipients: Optional[List[str]] = None) -> AlertRecord:
        # Always mutate the latest persisted version so concurrent channels don't overwrite each other.
        with self._lock:
            fresh = self._fetch(alert_id)
            fresh.mark_notified(channel, recipients, self.clock())
            self.store.save(fresh)
        logger.debug(f"[Alerts] {alert_id} notification recorded: {channel}")
        return fresh

    def resolve_recovered(self, resource: ResourceType, level: float, thresholds: Thresholds) -> List[AlertRecord]:
        """Resolve alerts the new level has climbed out of."""
        severities = []
        if level > thresholds.critical:
            severities.append(CRITICAL)
        if level > thresholds.warning:
            severities.append(WARNING)

        resolved = []
        for severity in severities:
            with self._lock:
                alert = self.store.find_unresolved_alert(resource, severity)
                if alert is None:
                    continue
                alert.resolve(self.clock())
                self.store.save(alert)
            logger.info(f"[Alerts] Auto-resolved {severity} {ResourceType(resource).value} at {level:.1f}%")
            resolved.append(alert)
        return resolved

    # ---------- queries ----------
    def get_active_alerts(self) -> List[AlertRecord]:
        active = [a for a in self.store.list_alerts() if a.resolved_at is None and not a.acknowledged.status]
        return sorted(active, key=lambda a: a.timestamp, reverse=True)

    def get_alerts_history(self, resource: Optional[str] = None, severity: Optional[str] = None,
                           start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                           limit: Optional[int] = None) -> List[AlertRecord]:
        alerts = self._filter(self.store.list_alerts(), resource, severity, start_date, end_date)
        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        return alerts[: (limit or 100)]

    @staticmethod
    def _filter(alerts, resource=None, severity=None, start_date=None, end_date=None):
        if resource:
            alerts = [a for a in alerts if a.resource == ResourceType(resource)]
        if severity:
            alerts = [a for a in alerts if a.severity == severity]
        if start_date:
            alerts = [a for a in alerts if a.timestamp >= start_date]
        if end_date:
            alerts = [a for a in alerts if a.timestamp <= end_date]
        return alerts

    def get_alert_stats(self, start_date: Optional[datetime] = None,
                        end_date: Optional[datetime] = None) -> List[ResourceAlertStats]:
        """Per resource, per severity: count and average/min/max trigger level."""
        grouped = defaultdict(lambda: defaultdict(list))
        for a in self._filter(self.store.list_alerts(), start_date=start_date, end_date=end_date):
            grouped[a.resource][a.severity].append(a.level)

        stats = []
        for resource, by_severity in grouped.items():
            items = [
                AlertStats(
                    severity=sev,
                    count=len(levels),
                    average_level=sum(levels) / len(levels),
                    min_level=min(levels),
                    max_level=max(levels),
                )
                for sev, levels in by_severity.items()
            ]
            stats.append(ResourceAlertStats(
                resource=resource,
                total_count=sum(s.count for s in items),
                severities=items,
            ))
        return stats
