"""Threshold evaluation.

Turns a freshly applied level into at most one alert:
  * level <= critical  -> critical
  * level <= warning   -> warning
  * otherwise          -> nothing
An alert is only created once per crossing: while an unresolved alert of the
same (resource, severity) exists, further evaluations return None.
"""

import logging
from datetime import timedelta
from typing import Optional

from alerting.alert_store import AlertStore
from core.level_engine import Clock
from schemas.alerts import AlertRecord, CRITICAL, WARNING
from schemas.resource import ResourceType, ConsumptionRate, utcnow
from schemas.settings import Thresholds

logger = logging.getLogger(__name__)


def classify(level: float, thresholds: Thresholds) -> Optional[str]:
    if level <= thresholds.critical:
        return CRITICAL
    if level <= thresholds.warning:
        return WARNING
    return None


def format_message(resource: str, severity: str, level: float) -> str:
    if severity == CRITICAL:
        return f"{resource} level critically low at {level:.1f}%"
    return f"{resource} level low at {level:.1f}%"


class ThresholdEvaluator:
    def __init__(self, alert_store: AlertStore, clock: Optional[Clock] = None):
        self.alert_store = alert_store
        self.clock = clock or utcnow

    def estimated_depletion(self, level: float, rate: Optional[ConsumptionRate]):
        if rate is None or rate.value <= 0:
            return None
        return self.clock() + timedelta(milliseconds=(level / rate.value) * 3600000)

    def evaluate(self, resource_type, new_level: float, thresholds: Thresholds,
                 consumption_rate: Optional[ConsumptionRate] = None) -> Optional[AlertRecord]:
        rtype = ResourceType(resource_type)
        severity = classify(new_level, thresholds)
        if severity is None:
            return None

        existing = self.alert_store.find_unresolved_alert(rtype, severity)
        if existing is not None:
            logger.debug("[Threshold] %s %s already active (%s); suppressed", rtype.value, severity, existing.alert_id)
            return None

        alert = self.alert_store.create_alert({
            "resource": rtype,
            "severity": severity,
            "level": new_level,
            "message": format_message(rtype.value, severity, new_level),
            "timestamp": self.clock(),
            "metadata": {
                "consumption_rate": consumption_rate,
                "estimated_depletion": self.estimated_depletion(new_level, consumption_rate),
            },
        })
        logger.info("[Threshold] Raised %s alert for %s at %.1f%%", severity, rtype.value, new_level)
        return alert
