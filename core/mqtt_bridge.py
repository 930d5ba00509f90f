import json
import logging
import ssl
import time
from typing import Optional

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from alerting.alert_service import AlertService
from core.errors import AlertNotFoundError, InvalidAmountError, ResourceNotFoundError
from core.resource_service import ResourceService
from schemas.comms_settings import CommsSettings
from schemas.resource import utcnow
from schemas.settings import Thresholds

logger = logging.getLogger(__name__)


def _default_ca_path():
    # macOS bundle, then Debian/Raspbian bundle
    for p in ("/etc/ssl/cert.pem", "/etc/ssl/certs/ca-certificates.crt"):
        try:
            with open(p, "rb"):
                return p
        except OSError:
            continue
    return None


class MqttBridge:
    """Publishes vessel events and executes crew commands received over MQTT.

    Commands arrive on the commands topic as ``{"type": ..., "data": {...}}``.
    Publishing is fire-and-forget: a broker problem is logged and never
    propagates into the update that produced the event.
    """

    def __init__(self, comms: CommsSettings, service: ResourceService, alerts: AlertService,
                 engine=None, dispatcher=None, client=None):
        self.comms = comms
        self.service = service
        self.alerts = alerts
        self.engine = engine
        self.dispatcher = dispatcher
        self.client = client

    # ---------- publisher ----------
    def publish(self, event: dict) -> None:
        if self.client is None:
            logger.debug("[MQTT] No client; dropping %s event", event.get("type"))
            return
        try:
            self.client.publish(self.comms.MQTT_EVENTS_TOPIC, json.dumps(event, default=str), qos=0, retain=False)
        except Exception as e:
            logger.warning("[MQTT] Publish failed: %s", e)

    # ---------- connection ----------
    def start(self):
        comms = self.comms
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"vessel-{comms.vessel_id}-{int(time.time())}",
            protocol=mqtt.MQTTv311,
        )
        if comms.MQTT_USER:
            client.username_pw_set(comms.MQTT_USER, comms.MQTT_PASSWORD)

        if comms.MQTT_BROKER_PORT == 8883:
            ca = _default_ca_path()
            if ca:
                client.tls_set(ca_certs=ca, cert_reqs=ssl.CERT_REQUIRED)
            else:
                client.tls_set(cert_reqs=ssl.CERT_REQUIRED)

        client.on_connect = self.on_connect
        client.on_message = self.on_message
        client.connect(comms.MQTT_BROKER_HOST, comms.MQTT_BROKER_PORT, comms.KEEP_ALIVE)
        client.loop_start()
        self.client = client

        logger.info("[MQTT] Bridge running (host=%s port=%s tls=%s)",
                    comms.MQTT_BROKER_HOST, comms.MQTT_BROKER_PORT, comms.MQTT_BROKER_PORT == 8883)
        return client

    def stop(self):
        if self.client is not None:
            self.client.loop_stop()
            self.client.disconnect()
            logger.info("[MQTT] Bridge stopped")

    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            client.subscribe(self.comms.MQTT_COMMANDS_TOPIC, qos=1)
            logger.info("[MQTT] Connected. Subscribed to %s", self.comms.MQTT_COMMANDS_TOPIC)
        else:
            logger.error("[MQTT] Connection failed rc=%s", reason_code)

    def on_message(self, client, userdata, msg):
        # an exception escaping here ends paho's network thread
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
        except Exception as e:
            logger.warning("[MQTT] Bad JSON on %s: %s", msg.topic, e)
            return
        try:
            self.handle_command(payload)
        except Exception:
            logger.exception("[MQTT] Command on %s failed", msg.topic)

    # ---------- commands ----------
    def handle_command(self, payload) -> Optional[dict]:
        if not isinstance(payload, dict):
            logger.warning("[MQTT] Ignoring non-object command: %r", payload)
            return None
        msg_type = payload.get("type")
        data = payload.get("data") or {}
        if not isinstance(data, dict):
            logger.warning("[MQTT] Ignoring %s with non-object data: %r", msg_type, data)
            return None
        actor = data.get("actor") or payload.get("actor")

        try:
            thresholds = Thresholds.model_validate(data["thresholds"]) if data.get("thresholds") else None

            if msg_type == "level_update":
                result = self.service.apply_resource_action(
                    data.get("resource"), data.get("amount"), data.get("action"), actor,
                    thresholds=thresholds)
                if result.warning:
                    logger.warning("[MQTT] level_update ignored: %s", result.warning)
                reply = {"new_level": result.new_level, "warning": result.warning}

            elif msg_type == "delivery":
                result = self.service.record_delivery(
                    data.get("resource"), data.get("amount"), data.get("document"), actor,
                    thresholds=thresholds)
                reply = {"new_level": result.new_level}

            elif msg_type == "consumption_rate":
                rate = self.service.update_consumption_rate(data.get("resource"), data.get("value"), data.get("unit"))
                reply = {"consumption_rate": rate.model_dump()}

            elif msg_type in ("engine_start", "engine_stop", "engine_toggle"):
                if self.engine is None:
                    logger.warning("[MQTT] %s received but no engine scheduler is attached", msg_type)
                    return None
                if msg_type == "engine_start":
                    self.engine.start()
                elif msg_type == "engine_stop":
                    self.engine.stop()
                else:
                    self.engine.toggle()
                reply = {"running": self.engine.is_running, "engine_hours": self.engine.engine_hours}

            elif msg_type == "acknowledge_alert":
                alert = self.alerts.acknowledge(data.get("alert_id"), actor)
                reply = {"alert_id": alert.alert_id, "acknowledged": True}

            elif msg_type == "resolve_alert":
                alert = self.alerts.resolve(data.get("alert_id"))
                reply = {"alert_id": alert.alert_id, "resolved_at": alert.resolved_at}

            elif msg_type == "notify_alert":
                if self.dispatcher is None:
                    logger.warning("[MQTT] notify_alert received but no dispatcher is configured")
                    return None
                reply = self.dispatcher.notify(data.get("alert_id"), email=bool(data.get("email")),
                                               sms=bool(data.get("sms")), sound=bool(data.get("sound")))

            elif msg_type == "ping":
                logger.info("[MQTT] Ping received -> pong")
                reply = {}
                msg_type = "pong"

            else:
                logger.warning("[MQTT] Unknown type=%s", msg_type)
                return None

        except (InvalidAmountError, ResourceNotFoundError, AlertNotFoundError, ValidationError) as e:
            logger.warning("[MQTT] %s rejected: %s", msg_type, e)
            self.publish({"type": "error", "command": msg_type, "error": str(e), "timestamp": utcnow().isoformat()})
            return None

        event = {"type": "reply", "command": msg_type, **reply}
        self.publish(event)
        return event
