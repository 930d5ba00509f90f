from pydantic import BaseModel, Field, model_validator
from typing import Dict, Optional

from schemas.resource import ResourceType, ConsumptionRate


class Thresholds(BaseModel):
    """Warning/critical percentage boundaries. warning > critical by convention, not enforced."""
    warning: float = Field(default=35.0, ge=0, le=100)
    critical: float = Field(default=20.0, ge=0, le=100)


class ResourceDefaults(BaseModel):
    """Seed values used when a resource document does not exist yet."""
    capacity: float = Field(..., gt=0)
    unit: str = "L"
    consumption_rate: ConsumptionRate
    initial_level: float = Field(default=80.0, ge=0, le=100)


DEFAULT_RESOURCES: Dict[ResourceType, ResourceDefaults] = {
    ResourceType.fuel: ResourceDefaults(
        capacity=10000, unit="L", consumption_rate=ConsumptionRate(value=100, unit="L/h")),
    ResourceType.oil: ResourceDefaults(
        capacity=1000, unit="L", consumption_rate=ConsumptionRate(value=10, unit="L/h")),
    ResourceType.food: ResourceDefaults(
        capacity=5000, unit="kg", consumption_rate=ConsumptionRate(value=50, unit="kg/day")),
    ResourceType.water: ResourceDefaults(
        capacity=8000, unit="L", consumption_rate=ConsumptionRate(value=200, unit="L/day")),
}


class VesselSettings(BaseModel):
    vessel_id: str = "vessel-1"

    # Scheduler cadence
    engine_tick_seconds: float = Field(default=5.0, gt=0)
    provisions_tick_seconds: float = Field(default=900.0, gt=0)

    # Durable write discipline for scheduler ticks
    max_writes_per_minute: int = Field(default=12, ge=1)
    write_timeout_s: float = Field(default=5.0, gt=0)

    # Engine start guard (percent)
    min_start_level: float = Field(default=5.0, ge=0, le=100)

    auto_resolve_alerts: bool = Field(default=True, description="Resolve alerts when the level recovers")
    notify_on_critical: bool = Field(default=False, description="Dispatch email/SMS for new critical alerts")

    thresholds: Dict[ResourceType, Thresholds] = Field(default_factory=dict)
    resources: Dict[ResourceType, ResourceDefaults] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fill_defaults(self):
        for rtype in ResourceType:
            self.thresholds.setdefault(rtype, Thresholds())
            self.resources.setdefault(rtype, DEFAULT_RESOURCES[rtype])
        return self

    def thresholds_for(self, resource_type: ResourceType) -> Thresholds:
        return self.thresholds.get(ResourceType(resource_type)) or Thresholds()

    def defaults_for(self, resource_type: ResourceType) -> Optional[ResourceDefaults]:
        return self.resources.get(ResourceType(resource_type))
