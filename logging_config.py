LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,

    "formatters": {
        "default": {
            "format": "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S"
        }
    },

    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "level": "DEBUG"
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": "logs/vessel.log",
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
            "encoding": "utf8",
            "level": "DEBUG"
        },
        "mqtt_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": "logs/mqtt.log",
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 3,
            "encoding": "utf8",
            "level": "DEBUG"
        }
    },

    "root": {
        "handlers": ["console", "file"],
        "level": "INFO"
    },

    "loggers": {
        "paho": {
            "handlers": ["mqtt_file"],
            "level": "DEBUG",
            "propagate": False
        },
        "core.mqtt_bridge": {
            "handlers": ["mqtt_file", "console"],
            "level": "DEBUG",
            "propagate": False
        },
        "core.consumption_scheduler": {
            "handlers": ["console", "file"],
            "level": "INFO",
            "propagate": False
        }
    }
}
