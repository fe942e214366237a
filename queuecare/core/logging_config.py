import json
import logging
from datetime import datetime, timezone

from queuecare.core import config


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def configure_logging(level: str | None = None) -> logging.Logger:
    logger = logging.getLogger("queuecare")
    logger.setLevel(getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO))

    if not any(getattr(handler, "_queuecare", False) for handler in logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(JsonFormatter())
        console._queuecare = True
        logger.addHandler(console)

    return logger
