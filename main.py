import time

import logging
import logging.config

import os


# --- Container-friendly logging to STDOUT ---
if os.getenv("LOG_TO_STDOUT", "1") == "1":
    # Simple, robust console logging; no dictConfig used.
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    logger = logging.getLogger(__name__)
    logger.info("Logging configured for STDOUT (basicConfig).")
else:
    from logging_config import LOGGING_CONFIG
    os.makedirs("logs", exist_ok=True)
    logging.config.dictConfig(LOGGING_CONFIG)
    logger = logging.getLogger(__name__)
    logger.info("Logging configured via dictConfig.")


from alerting.alert_service import AlertService
from alerting.alert_store import BackendAlertStore, InMemoryAlertStore
from alerting.notifier import NotificationDispatcher, SmtpEmailSender, TwilioSmsSender
from bootstrap.vessel_bootstrap import build_settings, load_bootstrap_config
from core.consumption_scheduler import engine_scheduler, provisions_scheduler
from core.mqtt_bridge import MqttBridge
from core.resource_service import ResourceService
from core.resource_store import BackendResourceStore, InMemoryResourceStore


def build_stores(comms):
    if comms.api_base_url:
        logger.info(f"[BOOTSTRAP] Using backend store at {comms.api_base_url}")
        return (
            BackendResourceStore(comms.api_base_url, comms.API_KEY, comms.request_timeout_s),
            BackendAlertStore(comms.api_base_url, comms.API_KEY, comms.request_timeout_s),
        )
    logger.warning("[BOOTSTRAP] No api_base_url configured; keeping state in memory only")
    return InMemoryResourceStore(), InMemoryAlertStore()


def build_dispatcher(comms, alert_service):
    email_sender = None
    sms_sender = None
    if comms.SMTP_HOST:
        email_sender = SmtpEmailSender(comms.SMTP_HOST, comms.SMTP_PORT, comms.SMTP_USER, comms.SMTP_PASSWORD)
    if comms.TWILIO_ACCOUNT_SID and comms.TWILIO_AUTH_TOKEN and comms.TWILIO_PHONE_NUMBER:
        sms_sender = TwilioSmsSender(comms.TWILIO_ACCOUNT_SID, comms.TWILIO_AUTH_TOKEN, comms.TWILIO_PHONE_NUMBER)
    return NotificationDispatcher(
        alert_service,
        email_sender=email_sender,
        sms_sender=sms_sender,
        email_recipients=comms.ALERT_EMAIL_RECIPIENTS,
        sms_recipients=comms.ALERT_SMS_RECIPIENTS,
    )


def main():
    config = load_bootstrap_config(os.getenv("VESSEL_CONFIG", "bootstrap/vessel_config.yaml"))
    settings, comms = build_settings(config)
    logger.info(f"[BOOTSTRAP] Vessel {settings.vessel_id} configured")

    resource_store, alert_store = build_stores(comms)
    alert_service = AlertService(alert_store)
    dispatcher = build_dispatcher(comms, alert_service)
    service = ResourceService(resource_store, alert_service, settings=settings, dispatcher=dispatcher)

    created = service.seed_resources()
    if created:
        logger.info(f"[BOOTSTRAP] Seeded resources: {[t.value for t in created]}")

    engine = engine_scheduler(service)
    provisions = provisions_scheduler(service)

    bridge = MqttBridge(comms, service, alert_service, engine=engine, dispatcher=dispatcher)
    service.publisher = bridge
    try:
        bridge.start()
    except Exception:
        logger.exception("[BOOTSTRAP] MQTT bridge failed to start; running without broadcast")

    provisions.start(resume_from=provisions.resume_points_from_history())

    engine_state = service.load_engine_state()
    if engine_state.running:
        engine.engine_hours = engine_state.engine_hours
        logger.info(f"[BOOTSTRAP] Engine was running at {engine_state.last_run_time}; resuming with catch-up")
        engine.start(resume_from=engine_state.last_run_time)
    else:
        engine.engine_hours = engine_state.engine_hours

    try:
        while True:
            status = service.get_resource_status()
            logger.debug("[LOOP] " + ", ".join(f"{k}={v.level:.1f}%" for k, v in status.items()))
            time.sleep(60)

    except KeyboardInterrupt:
        logger.info("[LOOP] Graceful shutdown requested.")
        engine.stop(suspend=True)
        provisions.stop(suspend=True)
        bridge.stop()
        service.shutdown()


if __name__ == "__main__":
    main()
