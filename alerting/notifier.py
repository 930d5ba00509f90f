import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from typing import List, Optional

from twilio.rest import Client as TwilioClient

from alerting.alert_service import AlertService
from schemas.alerts import AlertRecord

logger = logging.getLogger(__name__)


class EmailSender(ABC):
    @abstractmethod
    def send(self, recipients: List[str], subject: str, body: str) -> None:
        ...


class SmsSender(ABC):
    @abstractmethod
    def send(self, recipients: List[str], body: str) -> None:
        ...


class SmtpEmailSender(EmailSender):
    def __init__(self, host: str, port: int = 587, user: Optional[str] = None, password: Optional[str] = None):
        self.host = host
        self.port = port
        self.user = user
        self.password = password

    def send(self, recipients, subject, body):
        msg = MIMEText(body, "plain", "utf-8")
        msg["From"] = self.user or "alerts@localhost"
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject

        with smtplib.SMTP(self.host, self.port, timeout=10) as s:
            s.starttls()
            if self.user:
                s.login(self.user, self.password or "")
            s.send_message(msg)


class TwilioSmsSender(SmsSender):
    def __init__(self, account_sid: str, auth_token: str, from_number: str, client=None):
        if not all([account_sid, auth_token, from_number]):
            raise ValueError("Twilio credentials not configured")
        self.from_number = from_number
        self.client = client or TwilioClient(account_sid, auth_token)

    def send(self, recipients, body):
        for to in recipients:
            message = self.client.messages.create(body=body, from_=self.from_number, to=to)
            logger.debug(f"[Notify] SMS to {to} queued sid={getattr(message, 'sid', None)}")


def email_subject(alert: AlertRecord) -> str:
    return f"Vessel Alert: {alert.resource.value} {alert.severity}"


def email_body(alert: AlertRecord) -> str:
    lines = [
        f"{alert.severity.upper()} Alert",
        f"Resource: {alert.resource.value}",
        f"Level: {alert.level:.1f}%",
        f"Message: {alert.message}",
        f"Time: {alert.timestamp.isoformat()}",
    ]
    if alert.metadata.estimated_depletion:
        lines.append(f"Estimated Depletion: {alert.metadata.estimated_depletion.isoformat()}")
    return "\n".join(lines)


def sms_body(alert: AlertRecord) -> str:
    return f"{alert.severity.upper()} Alert: {alert.resource.value} at {alert.level:.1f}%. {alert.message}"


class NotificationDispatcher:
    """Sends an alert over the requested channels and records each success.

    Channels fail independently: a failed send is logged and leaves that
    channel's ``sent`` flag false; it never affects the alert itself.
    """

    def __init__(self, alert_service: AlertService,
                 email_sender: Optional[EmailSender] = None,
                 sms_sender: Optional[SmsSender] = None,
                 email_recipients: Optional[List[str]] = None,
                 sms_recipients: Optional[List[str]] = None):
        self.alerts = alert_service
        self.email_sender = email_sender
        self.sms_sender = sms_sender
        self.email_recipients = list(email_recipients or [])
        self.sms_recipients = list(sms_recipients or [])

    def notify(self, alert_id: str, email: bool = True, sms: bool = True, sound: bool = False) -> dict:
        alert = self.alerts.get_alert(alert_id)
        results = {}

        if email and self.email_sender and self.email_recipients:
            try:
                self.email_sender.send(self.email_recipients, email_subject(alert), email_body(alert))
                self.alerts.record_notification(alert_id, "email", self.email_recipients)
                results["email"] = True
            except Exception as e:
                logger.error(f"[Notify] Email for {alert_id} failed: {e}")
                results["email"] = False

        if sms and self.sms_sender and self.sms_recipients:
            try:
                self.sms_sender.send(self.sms_recipients, sms_body(alert))
                self.alerts.record_notification(alert_id, "sms", self.sms_recipients)
                results["sms"] = True
            except Exception as e:
                logger.error(f"[Notify] SMS for {alert_id} failed: {e}")
                results["sms"] = False

        if sound:
            self.alerts.record_notification(alert_id, "sound")
            results["sound"] = True

        logger.info(f"[Notify] {alert_id} -> {results}")
        return results
