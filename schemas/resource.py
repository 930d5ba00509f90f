from pydantic import BaseModel, Field
from typing import Optional, List
from enum import Enum
from datetime import datetime, timezone


class ResourceType(str, Enum):
    fuel = "fuel"
    oil = "oil"
    food = "food"
    water = "water"


class ResourceAction(str, Enum):
    consumption = "consumption"
    refill = "refill"
    manual_update = "manual_update"


ENGINE_RESOURCES = (ResourceType.fuel, ResourceType.oil)
PROVISION_RESOURCES = (ResourceType.food, ResourceType.water)

SYSTEM_ACTOR = "system"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConsumptionRate(BaseModel):
    """Per hour for engine resources (L/h), per day for provisions (kg/day, L/day)."""
    value: float = Field(default=0.0, ge=0)
    unit: str = "L/h"

    @property
    def per_day(self) -> bool:
        return self.unit.strip().lower().endswith(("/day", "/d"))

    def per_hour(self) -> float:
        return self.value / 24.0 if self.per_day else self.value


class HistoryEntry(BaseModel):
    level: float
    action: ResourceAction
    amount: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)
    actor: Optional[str] = None


class DeliveryRecord(BaseModel):
    amount: float
    document: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    actor: Optional[str] = None


class ResourceState(BaseModel):
    resource_type: ResourceType
    level: float = Field(default=80.0, ge=0, le=100)
    capacity: float = Field(..., gt=0)
    unit: str = "L"
    consumption_rate: ConsumptionRate = Field(default_factory=ConsumptionRate)
    last_updated: datetime = Field(default_factory=utcnow)
    history: List[HistoryEntry] = Field(default_factory=list)
    deliveries: List[DeliveryRecord] = Field(default_factory=list)

    def last_consumption_at(self) -> Optional[datetime]:
        for entry in reversed(self.history):
            if entry.action == ResourceAction.consumption:
                return entry.timestamp
        return None


class ResourceStatus(BaseModel):
    level: float
    capacity: float
    unit: str
    consumption_rate: ConsumptionRate
    last_updated: datetime


class RemainingDuration(BaseModel):
    hours: float
    days: float


class HistoryPage(BaseModel):
    resource_type: ResourceType
    page: int
    limit: int
    total: int
    entries: List[HistoryEntry]


class EngineState(BaseModel):
    """Persisted engine run-state so a restarted process can catch up."""
    running: bool = False
    engine_hours: float = Field(default=0.0, ge=0)
    last_run_time: Optional[datetime] = None


__all__ = [
    "ResourceType", "ResourceAction", "ConsumptionRate", "HistoryEntry",
    "DeliveryRecord", "ResourceState", "ResourceStatus", "RemainingDuration",
    "HistoryPage", "EngineState", "ENGINE_RESOURCES", "PROVISION_RESOURCES",
    "SYSTEM_ACTOR", "utcnow",
]
