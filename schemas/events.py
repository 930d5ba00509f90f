from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime

from schemas.resource import ResourceType, ResourceAction, utcnow
from schemas.alerts import Severity


class ResourceUpdateEvent(BaseModel):
    type: Literal["resource_update"] = "resource_update"
    resource: ResourceType
    level: float
    action: ResourceAction
    amount: float
    actor: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class AlertRaisedEvent(BaseModel):
    type: Literal["alert"] = "alert"
    alert_id: str
    resource: ResourceType
    severity: Severity
    level: float
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class EngineEvent(BaseModel):
    type: Literal["engine"] = "engine"
    status: Literal["started", "stopped"]
    reason: Optional[str] = None  # "depleted" when forced idle
    engine_hours: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)


__all__ = ["ResourceUpdateEvent", "AlertRaisedEvent", "EngineEvent"]
