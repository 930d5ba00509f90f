from typing import Optional, List, Literal
from datetime import datetime
from pydantic import BaseModel, Field
import uuid

from schemas.resource import ResourceType, ConsumptionRate, utcnow


Severity = Literal["warning", "critical"]
Channel = Literal["email", "sms", "sound"]

WARNING = "warning"
CRITICAL = "critical"


class Acknowledgement(BaseModel):
    status: bool = False
    by: Optional[str] = None
    at: Optional[datetime] = None


class ChannelNotification(BaseModel):
    sent: bool = False
    recipients: List[str] = Field(default_factory=list)
    sent_at: Optional[datetime] = None


class SoundNotification(BaseModel):
    played: bool = False
    played_at: Optional[datetime] = None


class AlertNotifications(BaseModel):
    email: ChannelNotification = Field(default_factory=ChannelNotification)
    sms: ChannelNotification = Field(default_factory=ChannelNotification)
    sound: SoundNotification = Field(default_factory=SoundNotification)


class AlertMetadata(BaseModel):
    consumption_rate: Optional[ConsumptionRate] = None
    estimated_depletion: Optional[datetime] = None  # None = unbounded


class AlertRecord(BaseModel):
    alert_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    resource: ResourceType
    severity: Severity
    level: float = Field(..., ge=0, le=100)
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    acknowledged: Acknowledgement = Field(default_factory=Acknowledgement)
    resolved_at: Optional[datetime] = None
    notifications: AlertNotifications = Field(default_factory=AlertNotifications)
    metadata: AlertMetadata = Field(default_factory=AlertMetadata)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None

    def acknowledge(self, actor_id: str, at: datetime) -> None:
        self.acknowledged = Acknowledgement(status=True, by=actor_id, at=at)

    def resolve(self, at: datetime) -> None:
        if self.resolved_at is None:
            self.resolved_at = at

    def mark_notified(self, channel: str, recipients: Optional[List[str]], at: datetime) -> None:
        """Flags are sticky: once sent/played they stay set for the record's lifetime."""
        if channel == "email":
            self.notifications.email = ChannelNotification(sent=True, recipients=list(recipients or []), sent_at=at)
        elif channel == "sms":
            self.notifications.sms = ChannelNotification(sent=True, recipients=list(recipients or []), sent_at=at)
        elif channel == "sound":
            self.notifications.sound = SoundNotification(played=True, played_at=at)
        else:
            raise ValueError(f"Unknown notification channel: {channel!r}")


class AlertStats(BaseModel):
    severity: Severity
    count: int
    average_level: float
    min_level: float
    max_level: float


class ResourceAlertStats(BaseModel):
    resource: ResourceType
    total_count: int
    severities: List[AlertStats]


__all__ = [
    "AlertRecord", "Acknowledgement", "ChannelNotification", "SoundNotification",
    "AlertNotifications", "AlertMetadata", "AlertStats", "ResourceAlertStats",
    "Severity", "Channel", "WARNING", "CRITICAL",
]
