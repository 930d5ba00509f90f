"""Resource service.

Owns the one live ResourceState per resource type. Scheduler ticks, crew
deliveries, manual corrections and API-triggered consumption all go through
``apply_resource_action`` so every read-modify-write happens on the same
entity under that resource's lock.

Durable writes are bounded by ``write_timeout_s``; a failed or timed-out
write leaves the in-memory level in place and marks the resource dirty until
the next successful write.
"""

import logging
import math
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout, wait
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from alerting.alert_service import AlertService
from alerting.threshold_evaluator import ThresholdEvaluator
from core.errors import InvalidAmountError, ResourceNotFoundError
from core.level_engine import Clock, LevelUpdateEngine, calculate_remaining_duration
from core.resource_store import ResourceStore
from schemas.alerts import AlertRecord, CRITICAL
from schemas.events import AlertRaisedEvent, ResourceUpdateEvent
from schemas.resource import (
    ConsumptionRate, DeliveryRecord, EngineState, HistoryPage, RemainingDuration,
    ResourceAction, ResourceState, ResourceStatus, ResourceType, utcnow,
)
from schemas.settings import Thresholds, VesselSettings

logger = logging.getLogger(__name__)

MAX_HISTORY_PAGE = 500
MAX_DELIVERIES = 100


@dataclass
class ActionResult:
    new_level: float
    warning: Optional[str] = None
    alert: Optional[AlertRecord] = None
    persisted: bool = False


def _resource_type(value) -> ResourceType:
    try:
        return ResourceType(value)
    except ValueError:
        raise ResourceNotFoundError(f"Resource not found: {value!r}") from None


def _known_action(action) -> bool:
    try:
        ResourceAction(action)
    except ValueError:
        return False
    return True


def _validate_amount(amount) -> float:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidAmountError(f"Amount must be a number, got {amount!r}")
    if not math.isfinite(amount) or amount < 0:
        raise InvalidAmountError(f"Amount must be a finite non-negative number, got {amount!r}")
    return float(amount)


class ResourceService:
    def __init__(self, store: ResourceStore, alert_service: AlertService,
                 settings: Optional[VesselSettings] = None,
                 evaluator: Optional[ThresholdEvaluator] = None,
                 engine: Optional[LevelUpdateEngine] = None,
                 publisher=None, dispatcher=None,
                 clock: Optional[Clock] = None,
                 write_timeout_s: Optional[float] = None):
        self.store = store
        self.alerts = alert_service
        self.settings = settings or VesselSettings()
        self.clock = clock or utcnow
        self.engine = engine or LevelUpdateEngine(clock=self.clock)
        self.evaluator = evaluator or ThresholdEvaluator(alert_service.store, clock=self.clock)
        self.publisher = publisher
        self.dispatcher = dispatcher
        self.write_timeout_s = write_timeout_s or self.settings.write_timeout_s

        self._states: Dict[ResourceType, ResourceState] = {}
        self._locks: Dict[ResourceType, threading.Lock] = {t: threading.Lock() for t in ResourceType}
        self._dirty: set = set()
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="resource-writer")
        self._pending_writes: Dict[ResourceType, Future] = {}

        # resolve + evaluate must be atomic per resource or two callers can both create the same alert
        self._alert_locks: Dict[ResourceType, threading.Lock] = {t: threading.Lock() for t in ResourceType}
        self._notifier = ThreadPoolExecutor(max_workers=1, thread_name_prefix="alert-notify")
        self._notifications: set = set()

    # ---------- loading ----------
    def seed_resources(self) -> List[ResourceType]:
        """Create any missing resource documents from the configured defaults."""
        created = []
        for rtype in ResourceType:
            with self._locks[rtype]:
                if self._states.get(rtype) or self.store.find_resource(rtype):
                    continue
                defaults = self.settings.defaults_for(rtype)
                state = ResourceState(
                    resource_type=rtype,
                    level=defaults.initial_level,
                    capacity=defaults.capacity,
                    unit=defaults.unit,
                    consumption_rate=defaults.consumption_rate.model_copy(),
                    last_updated=self.clock(),
                )
                self.store.save(state)
                self._states[rtype] = state
                created.append(rtype)
                logger.info("[ResourceService] Initialized %s resource", rtype.value)
        return created

    def _load(self, rtype: ResourceType) -> ResourceState:
        # caller holds self._locks[rtype]
        state = self._states.get(rtype)
        if state is None:
            state = self.store.find_resource(rtype)
            if state is None:
                raise ResourceNotFoundError(f"Resource not found: {rtype.value}")
            self._states[rtype] = state
        return state

    def get_state(self, resource_type) -> ResourceState:
        rtype = _resource_type(resource_type)
        with self._locks[rtype]:
            return self._load(rtype).model_copy(deep=True)

    def get_level(self, resource_type) -> float:
        rtype = _resource_type(resource_type)
        with self._locks[rtype]:
            return self._load(rtype).level

    def get_consumption_rate(self, resource_type) -> ConsumptionRate:
        rtype = _resource_type(resource_type)
        with self._locks[rtype]:
            return self._load(rtype).consumption_rate.model_copy()

    # ---------- persistence ----------
    def _persist(self, state: ResourceState, wait_pending: bool = False) -> bool:
        # caller holds the resource lock; the store sees a snapshot, never the live entity
        rtype = state.resource_type
        pending = self._pending_writes.get(rtype)
        if pending is not None and not pending.done():
            if wait_pending:
                wait([pending], timeout=self.write_timeout_s)
            if not pending.done():
                logger.warning("[ResourceService] Previous save of %s still pending; deferring", rtype.value)
                self._dirty.add(rtype)
                return False

        snapshot = state.model_copy(deep=True)
        future = self._writer.submit(self.store.save, snapshot)
        self._pending_writes[rtype] = future
        try:
            future.result(timeout=self.write_timeout_s)
        except FuturesTimeout:
            logger.error("[ResourceService] Save of %s timed out after %.1fs; keeping in-memory state",
                         rtype.value, self.write_timeout_s)
            self._dirty.add(rtype)
            return False
        except Exception:
            logger.exception("[ResourceService] Save of %s failed; keeping in-memory state", rtype.value)
            self._dirty.add(rtype)
            return False
        self._dirty.discard(rtype)
        return True

    def is_dirty(self, resource_type) -> bool:
        return _resource_type(resource_type) in self._dirty

    def flush(self, resource_types: Optional[Iterable] = None) -> List[ResourceType]:
        """Write every dirty resource (optionally limited to ``resource_types``)."""
        wanted = {_resource_type(t) for t in resource_types} if resource_types is not None else set(ResourceType)
        written = []
        for rtype in sorted(wanted & set(self._dirty), key=lambda t: t.value):
            with self._locks[rtype]:
                state = self._states.get(rtype)
                if state is not None and self._persist(state, wait_pending=True):
                    written.append(rtype)
        if written:
            logger.info("[ResourceService] Flushed %s", [t.value for t in written])
        return written

    def load_engine_state(self) -> EngineState:
        try:
            return self.store.load_engine_state()
        except Exception:
            logger.exception("[ResourceService] Could not load engine state; assuming stopped")
            return EngineState()

    def save_engine_state(self, engine_state: EngineState) -> None:
        try:
            self.store.save_engine_state(engine_state)
        except Exception:
            logger.exception("[ResourceService] Could not save engine state")

    # ---------- mutations ----------
    def apply_resource_action(self, resource_type, amount, action, actor_id: Optional[str] = None,
                              persist: bool = True, thresholds: Optional[Thresholds] = None) -> ActionResult:
        rtype = _resource_type(resource_type)
        if _known_action(action):
            amount = _validate_amount(amount)

        with self._locks[rtype]:
            state = self._load(rtype)
            update = self.engine.apply(state, amount, action, actor_id)
            if update.warning:
                return ActionResult(new_level=state.level, warning=update.warning)
            if persist:
                persisted = self._persist(state)
            else:
                self._dirty.add(rtype)
                persisted = False
            rate = state.consumption_rate.model_copy()
            entry = state.history[-1]

        self.publish(ResourceUpdateEvent(
            resource=rtype, level=entry.level, action=entry.action,
            amount=entry.amount, actor=actor_id, timestamp=entry.timestamp,
        ))
        alert = self._check_thresholds(rtype, update.level, rate, thresholds)
        return ActionResult(new_level=update.level, alert=alert, persisted=persisted)

    def record_delivery(self, resource_type, amount, document: Optional[str] = None,
                        actor_id: Optional[str] = None, thresholds: Optional[Thresholds] = None) -> ActionResult:
        rtype = _resource_type(resource_type)
        amount = _validate_amount(amount)
        if amount <= 0:
            raise InvalidAmountError("Amount must be greater than 0")

        with self._locks[rtype]:
            state = self._load(rtype)
            update = self.engine.record_delivery(state, amount, document, actor_id)
            persisted = self._persist(state)
            rate = state.consumption_rate.model_copy()
            entry = state.history[-1]
            unit = state.unit

        logger.info("[ResourceService] Delivery of %.1f %s recorded for %s (doc=%s)",
                    amount, unit, rtype.value, document)
        self.publish(ResourceUpdateEvent(
            resource=rtype, level=entry.level, action=entry.action,
            amount=entry.amount, actor=actor_id, timestamp=entry.timestamp,
        ))
        alert = self._check_thresholds(rtype, update.level, rate, thresholds)
        return ActionResult(new_level=update.level, alert=alert, persisted=persisted)

    def update_consumption_rate(self, resource_type, value, unit: Optional[str] = None) -> ConsumptionRate:
        rtype = _resource_type(resource_type)
        value = _validate_amount(value)
        with self._locks[rtype]:
            state = self._load(rtype)
            state.consumption_rate = ConsumptionRate(value=value, unit=unit or state.consumption_rate.unit)
            self._persist(state)
            rate = state.consumption_rate.model_copy()
        logger.info("[ResourceService] %s consumption rate set to %s %s", rtype.value, rate.value, rate.unit)
        return rate

    # ---------- alerts ----------
    def _check_thresholds(self, rtype: ResourceType, level: float, rate: ConsumptionRate,
                          thresholds: Optional[Thresholds]) -> Optional[AlertRecord]:
        thresholds = thresholds or self.settings.thresholds_for(rtype)
        try:
            with self._alert_locks[rtype]:
                if self.settings.auto_resolve_alerts:
                    self.alerts.resolve_recovered(rtype, level, thresholds)
                alert = self.evaluator.evaluate(rtype, level, thresholds, rate)
        except Exception:
            logger.exception("[ResourceService] Threshold evaluation failed for %s", rtype.value)
            return None

        if alert is None:
            return None
        self.publish(AlertRaisedEvent(
            alert_id=alert.alert_id, resource=alert.resource, severity=alert.severity,
            level=alert.level, message=alert.message, timestamp=alert.timestamp,
        ))
        if alert.severity == CRITICAL and self.settings.notify_on_critical and self.dispatcher:
            self._dispatch(alert.alert_id)
        return alert

    def _dispatch(self, alert_id: str) -> None:
        # SMTP/SMS can block for seconds; keep it off the caller's (possibly tick) thread
        future = self._notifier.submit(self._notify, alert_id)
        self._notifications.add(future)
        future.add_done_callback(self._notifications.discard)

    def _notify(self, alert_id: str):
        try:
            return self.dispatcher.notify(alert_id, email=True, sms=True)
        except Exception:
            logger.exception("[ResourceService] Notification dispatch failed for %s", alert_id)
            return None

    def wait_for_notifications(self, timeout: Optional[float] = None) -> bool:
        """Block until queued alert notifications finish; False if some are still running."""
        _, not_done = wait(list(self._notifications), timeout=timeout)
        return not not_done

    def publish(self, event) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher.publish(event.model_dump(mode="json"))
        except Exception as e:
            logger.warning("[ResourceService] Broadcast failed (%s); update kept", e)

    # ---------- queries ----------
    def get_resource_status(self) -> Dict[str, ResourceStatus]:
        status = {}
        for rtype in ResourceType:
            with self._locks[rtype]:
                try:
                    state = self._load(rtype)
                except ResourceNotFoundError:
                    continue
                status[rtype.value] = ResourceStatus(
                    level=state.level,
                    capacity=state.capacity,
                    unit=state.unit,
                    consumption_rate=state.consumption_rate.model_copy(),
                    last_updated=state.last_updated,
                )
        return status

    def get_history(self, resource_type, start_date: Optional[datetime] = None,
                    end_date: Optional[datetime] = None, page: int = 1, limit: int = 100) -> HistoryPage:
        """Newest first; ``limit`` is capped at 500 entries per page."""
        rtype = _resource_type(resource_type)
        limit = max(1, min(int(limit or 100), MAX_HISTORY_PAGE))
        page = max(1, int(page or 1))

        with self._locks[rtype]:
            entries = list(self._load(rtype).history)

        if start_date:
            entries = [e for e in entries if e.timestamp >= start_date]
        if end_date:
            entries = [e for e in entries if e.timestamp <= end_date]
        entries.reverse()

        offset = (page - 1) * limit
        return HistoryPage(
            resource_type=rtype,
            page=page,
            limit=limit,
            total=len(entries),
            entries=[e.model_copy() for e in entries[offset:offset + limit]],
        )

    def get_deliveries(self, resource_type, limit: int = 10) -> List[DeliveryRecord]:
        rtype = _resource_type(resource_type)
        limit = max(1, min(int(limit or 10), MAX_DELIVERIES))
        with self._locks[rtype]:
            deliveries = self._load(rtype).deliveries[-limit:]
            return [d.model_copy() for d in deliveries]

    def get_remaining_duration(self, resource_type) -> RemainingDuration:
        rtype = _resource_type(resource_type)
        with self._locks[rtype]:
            return calculate_remaining_duration(self._load(rtype))

    def shutdown(self) -> None:
        self.flush()
        self._notifier.shutdown(wait=False)
        self._writer.shutdown(wait=False)
