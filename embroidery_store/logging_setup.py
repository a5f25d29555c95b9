import logging
import logging.config

from embroidery_store import config

_configured = False


def configure_logging(level: str = None) -> None:
    global _configured
    if _configured:
        return
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default"},
        },
        "loggers": {
            "embroidery_store": {
                "handlers": ["console"],
                "level": (level or config.LOG_LEVEL).upper(),
                "propagate": False,
            },
        },
    })
    _configured = True
