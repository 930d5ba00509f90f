"""Level update engine.

Single implementation of the resource level rules, shared by the durable
service and any local simulation:

  * The absolute quantity is never stored; it is always derived from the
    percentage level and the capacity (``absolute_from_level``).
  * consumption subtracts, refill adds, manual_update sets the absolute
    quantity; results are clamped to [0, capacity] and the level to [0, 100].
  * Every applied action appends exactly one history entry recording the
    magnitude actually applied after clamping.
  * Unknown actions leave the state untouched and come back as a warning.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from schemas.resource import (
    ResourceState, ResourceAction, HistoryEntry, DeliveryRecord, RemainingDuration, utcnow,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def absolute_from_level(level: float, capacity: float) -> float:
    return (level / 100.0) * capacity


def level_from_absolute(absolute: float, capacity: float) -> float:
    if not capacity or capacity <= 0:
        return 0.0
    return clamp((absolute / capacity) * 100.0, 0.0, 100.0)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def coerce_amount(amount) -> float:
    """Non-numeric, non-finite and negative amounts count as 0."""
    if isinstance(amount, bool):
        return 0.0
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


@dataclass
class LevelUpdate:
    level: float
    applied: float = 0.0
    warning: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.warning is None


class LevelUpdateEngine:
    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utcnow

    def apply(self, state: ResourceState, amount, action, actor_id: Optional[str] = None) -> LevelUpdate:
        try:
            action = ResourceAction(action)
        except ValueError:
            msg = f"Unknown resource update action received: {action!r}"
            logger.warning("[LevelEngine] %s (%s left at %.2f%%)", msg, state.resource_type.value, state.level)
            return LevelUpdate(level=state.level, warning=msg)

        magnitude = coerce_amount(amount)
        capacity = state.capacity
        current = absolute_from_level(state.level, capacity)

        if action == ResourceAction.consumption:
            new_abs = max(current - magnitude, 0.0)
            applied = current - new_abs
        elif action == ResourceAction.refill:
            new_abs = min(current + magnitude, capacity)
            applied = new_abs - current
        else:
            new_abs = clamp(magnitude, 0.0, capacity)
            applied = new_abs

        new_level = level_from_absolute(new_abs, capacity)
        now = self.clock()

        state.level = new_level
        state.history.append(HistoryEntry(
            level=new_level,
            action=action,
            amount=max(applied, 0.0),
            timestamp=now,
            actor=actor_id,
        ))
        state.last_updated = now

        logger.debug("[LevelEngine] %s %s %.3f -> %.3f%%",
                     state.resource_type.value, action.value, applied, new_level)
        return LevelUpdate(level=new_level, applied=max(applied, 0.0))

    def record_delivery(self, state: ResourceState, amount, document: Optional[str],
                        actor_id: Optional[str] = None) -> LevelUpdate:
        state.deliveries.append(DeliveryRecord(
            amount=coerce_amount(amount),
            document=document,
            timestamp=self.clock(),
            actor=actor_id,
        ))
        return self.apply(state, amount, ResourceAction.refill, actor_id)


def calculate_remaining_duration(state: ResourceState) -> RemainingDuration:
    """Hours/days until empty at the current rate; infinite when the rate is 0."""
    rate_per_hour = state.consumption_rate.per_hour()
    if rate_per_hour <= 0:
        return RemainingDuration(hours=math.inf, days=math.inf)
    hours = absolute_from_level(state.level, state.capacity) / rate_per_hour
    return RemainingDuration(hours=hours, days=hours / 24.0)


__all__ = [
    "LevelUpdateEngine", "LevelUpdate", "absolute_from_level", "level_from_absolute",
    "coerce_amount", "calculate_remaining_duration", "clamp",
]
