from typing import List, Optional
from pydantic import BaseModel, Field


class CommsSettings(BaseModel):
    vessel_id: str = "vessel-1"

    # Durable store backend; None keeps everything in process memory
    api_base_url: Optional[str] = None
    API_KEY: Optional[str] = None
    request_timeout_s: float = 10.0

    MQTT_BROKER_HOST: str = "localhost"
    MQTT_BROKER_PORT: int = 1883
    MQTT_USER: Optional[str] = None
    MQTT_PASSWORD: Optional[str] = None
    KEEP_ALIVE: int = 60
    MQTT_EVENTS_TOPIC: str = "vessel/vessel-1/events"
    MQTT_COMMANDS_TOPIC: str = "vessel/vessel-1/commands"

    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None

    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None

    ALERT_EMAIL_RECIPIENTS: List[str] = Field(default_factory=list)
    ALERT_SMS_RECIPIENTS: List[str] = Field(default_factory=list)
