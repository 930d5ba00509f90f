# bootstrap/vessel_bootstrap.py
import os
import yaml
import logging
from typing import Tuple

from schemas.comms_settings import CommsSettings
from schemas.settings import VesselSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "bootstrap/vessel_config.yaml"

REQUIRED_KEYS = ["vessel_id", "MQTT_BROKER_HOST", "MQTT_BROKER_PORT"]


def _csv(value: str) -> list:
    return [v.strip() for v in value.split(",") if v.strip()]


def _bool(value: str) -> bool:
    v = value.strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


# Map ENV VAR -> (config_key, caster)
ENV_TO_KEY = {
    "VESSEL_ID": ("vessel_id", str),
    "API_BASE_URL": ("api_base_url", str),
    "API_KEY": ("API_KEY", str),
    "MQTT_BROKER_HOST": ("MQTT_BROKER_HOST", str),
    "MQTT_BROKER_PORT": ("MQTT_BROKER_PORT", int),
    "MQTT_USER": ("MQTT_USER", str),
    "MQTT_PASSWORD": ("MQTT_PASSWORD", str),
    "KEEP_ALIVE": ("KEEP_ALIVE", int),
    "SMTP_HOST": ("SMTP_HOST", str),
    "SMTP_PORT": ("SMTP_PORT", int),
    "SMTP_USER": ("SMTP_USER", str),
    "SMTP_PASSWORD": ("SMTP_PASSWORD", str),
    "TWILIO_ACCOUNT_SID": ("TWILIO_ACCOUNT_SID", str),
    "TWILIO_AUTH_TOKEN": ("TWILIO_AUTH_TOKEN", str),
    "TWILIO_PHONE_NUMBER": ("TWILIO_PHONE_NUMBER", str),
    "ALERT_EMAIL_RECIPIENTS": ("ALERT_EMAIL_RECIPIENTS", _csv),
    "ALERT_SMS_RECIPIENTS": ("ALERT_SMS_RECIPIENTS", _csv),
    "ENGINE_TICK_SECONDS": ("engine_tick_seconds", float),
    "PROVISIONS_TICK_SECONDS": ("provisions_tick_seconds", float),
    "MAX_WRITES_PER_MINUTE": ("max_writes_per_minute", int),
    "NOTIFY_ON_CRITICAL": ("notify_on_critical", _bool),
}


def _load_from_env() -> dict:
    cfg = {}
    for env_name, (key, caster) in ENV_TO_KEY.items():
        val = os.getenv(env_name)
        if val is None or val == "":
            continue
        try:
            cfg[key] = caster(val)
        except Exception as e:
            raise ValueError(f"Env var {env_name} invalid for {key}: {e}") from e
    return cfg


def _load_from_yaml(filepath: str) -> dict:
    if not os.path.exists(filepath):
        return {}
    with open(filepath, "r") as f:
        data = yaml.safe_load(f) or {}
    # Cast ints if YAML provided strings
    for key in ("MQTT_BROKER_PORT", "KEEP_ALIVE", "SMTP_PORT"):
        if key in data:
            data[key] = int(data[key])
    return data


def load_bootstrap_config(filepath: str = DEFAULT_CONFIG_PATH) -> dict:
    """
    Loads bootstrap config preferring environment (.env.vessel passed to the container).
    Falls back to YAML, and merges with env taking precedence.
    """
    env_cfg = _load_from_env()
    yaml_cfg = _load_from_yaml(filepath)

    config = {**yaml_cfg, **env_cfg}

    missing = [k for k in REQUIRED_KEYS if k not in config or config[k] in (None, "")]
    if missing:
        locations = []
        if env_cfg:
            locations.append("ENV")
        if yaml_cfg:
            locations.append(filepath)
        where = " + ".join(locations) if locations else "ENV"
        raise ValueError(f"[BOOTSTRAP] Missing required keys from {where}: {missing}")

    if env_cfg and not yaml_cfg:
        logger.info("[BOOTSTRAP] Loaded config from ENV (.env.vessel)")
    elif env_cfg and yaml_cfg:
        logger.info(f"[BOOTSTRAP] Loaded config from ENV overriding {filepath}")
    else:
        logger.info(f"[BOOTSTRAP] Loaded config from {filepath}")

    return config


def build_settings(config: dict) -> Tuple[VesselSettings, CommsSettings]:
    """Split the flat bootstrap dict into validated vessel and comms settings."""
    vessel_id = config["vessel_id"]
    vessel_keys = set(VesselSettings.model_fields)
    comms_keys = set(CommsSettings.model_fields)

    vessel = VesselSettings(**{k: v for k, v in config.items() if k in vessel_keys})

    comms_cfg = {k: v for k, v in config.items() if k in comms_keys}
    comms_cfg.setdefault("MQTT_EVENTS_TOPIC", f"vessel/{vessel_id}/events")
    comms_cfg.setdefault("MQTT_COMMANDS_TOPIC", f"vessel/{vessel_id}/commands")
    comms = CommsSettings(**comms_cfg)

    unknown = sorted(set(config) - vessel_keys - comms_keys)
    if unknown:
        logger.warning(f"[BOOTSTRAP] Ignoring unknown config keys: {unknown}")
    return vessel, comms
