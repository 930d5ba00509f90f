import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import requests

from schemas.alerts import AlertRecord
from schemas.resource import ResourceType

logger = logging.getLogger(__name__)


class AlertStore(ABC):

    @abstractmethod
    def create_alert(self, data: dict) -> AlertRecord:
        ...

    @abstractmethod
    def find_unresolved_alert(self, resource: ResourceType, severity: str) -> Optional[AlertRecord]:
        ...

    @abstractmethod
    def get(self, alert_id: str) -> Optional[AlertRecord]:
        ...

    @abstractmethod
    def save(self, alert: AlertRecord) -> None:
        ...

    @abstractmethod
    def list_alerts(self) -> List[AlertRecord]:
        ...


class InMemoryAlertStore(AlertStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._alerts: Dict[str, AlertRecord] = {}

    def create_alert(self, data):
        alert = AlertRecord.model_validate(data)
        with self._lock:
            self._alerts[alert.alert_id] = alert.model_copy(deep=True)
        return alert

    def find_unresolved_alert(self, resource, severity):
        rtype = ResourceType(resource)
        with self._lock:
            for alert in self._alerts.values():
                if alert.resource == rtype and alert.severity == severity and alert.resolved_at is None:
                    return alert.model_copy(deep=True)
        return None

    def get(self, alert_id):
        with self._lock:
            alert = self._alerts.get(alert_id)
            return alert.model_copy(deep=True) if alert else None

    def save(self, alert):
        with self._lock:
            self._alerts[alert.alert_id] = alert.model_copy(deep=True)

    def list_alerts(self):
        with self._lock:
            return [a.model_copy(deep=True) for a in self._alerts.values()]


class BackendAlertStore(AlertStore):
    """Alerts kept by the shore backend under {base}/alerts."""

    def __init__(self, api_base_url: str, api_key: Optional[str] = None, timeout: float = 10.0):
        if not api_base_url:
            raise ValueError("api_base_url is required for BackendAlertStore")
        self.base = api_base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.timeout = timeout

    def _check(self, resp, what: str):
        if resp.status_code // 100 != 2:
            logger.error(f"[BackendAlerts] {what} failed: {resp.status_code} {resp.text}")
            raise RuntimeError(f"Backend returned error: {resp.status_code} - {resp.text}")

    def create_alert(self, data):
        alert = AlertRecord.model_validate(data)
        resp = requests.post(f"{self.base}/alerts", json=alert.model_dump(mode="json"),
                             headers=self.headers, timeout=self.timeout)
        self._check(resp, "create")
        return alert

    def find_unresolved_alert(self, resource, severity):
        params = {"resource": ResourceType(resource).value, "severity": severity, "unresolved": "true"}
        resp = requests.get(f"{self.base}/alerts", params=params, headers=self.headers, timeout=self.timeout)
        self._check(resp, "query")
        items = resp.json() or []
        return AlertRecord.model_validate(items[0]) if items else None

    def get(self, alert_id):
        resp = requests.get(f"{self.base}/alerts/{alert_id}", headers=self.headers, timeout=self.timeout)
        if resp.status_code == 404:
            return None
        self._check(resp, "get")
        return AlertRecord.model_validate(resp.json())

    def save(self, alert):
        resp = requests.put(f"{self.base}/alerts/{alert.alert_id}", json=alert.model_dump(mode="json"),
                            headers=self.headers, timeout=self.timeout)
        self._check(resp, "save")

    def list_alerts(self):
        resp = requests.get(f"{self.base}/alerts", headers=self.headers, timeout=self.timeout)
        self._check(resp, "list")
        return [AlertRecord.model_validate(a) for a in resp.json() or []]
