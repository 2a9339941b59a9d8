# utils/logging_config.py
import logging
import logging.config
import os
from pathlib import Path
import time
import json
from datetime import datetime, timezone
from typing import Optional


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings after parsing the log record.
    """
    def __init__(self, **kwargs):
        self.json_fields = kwargs.pop("json_fields", [])
        self.timestamp_field = kwargs.pop("timestamp_field", "timestamp")
        super().__init__(**kwargs)

    def format(self, record):
        log_record = {}

        now = datetime.now(timezone.utc)
        log_record[self.timestamp_field] = now.strftime("%Y-%m-%dT%H:%M:%S.%fZ")

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["module"] = record.module
        log_record["thread_id"] = record.thread
        log_record["process_id"] = record.process

        log_record["message"] = record.getMessage()

        if record.exc_info:
            log_record["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        # Fields passed through logger.xxx(..., extra={...})
        for field in self.json_fields:
            if hasattr(record, field):
                log_record[field] = getattr(record, field)

        return json.dumps(sanitize_log_record(log_record))


def sanitize_log_record(record):
    """
    Ensure all values in the record are JSON serializable
    """
    for key, value in list(record.items()):
        if isinstance(value, (datetime, time.struct_time)):
            record[key] = value.isoformat() if hasattr(value, 'isoformat') else str(value)
        elif isinstance(value, Exception):
            record[key] = str(value)
        elif isinstance(value, dict):
            record[key] = sanitize_log_record(value)
        elif isinstance(value, list):
            record[key] = [
                item.isoformat() if hasattr(item, 'isoformat')
                else str(item) if not isinstance(item, (str, int, float, bool, list, dict, type(None)))
                else item
                for item in value
            ]
        elif not isinstance(value, (str, int, float, bool, type(None))):
            record[key] = str(value)

    return record


def configure_logging(log_level: Optional[str] = None, log_dir: Optional[str] = None):
    """
    Configure logging with a console handler and, when log_dir is given,
    daily rotating JSON files for all records and for errors only.
    """
    log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "standard",
            "stream": "ext://sys.stdout"
        }
    }
    app_handlers = ["console"]

    if log_dir:
        logs_path = Path(log_dir)
        logs_path.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "level": log_level,
            "formatter": "json",
            "filename": os.path.join(logs_path, "kafka-gateway.log"),
            "when": "midnight",
            "interval": 1,
            "backupCount": 30,
            "encoding": "utf-8"
        }
        handlers["error_file"] = {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "level": "ERROR",
            "formatter": "json",
            "filename": os.path.join(logs_path, "error.log"),
            "when": "midnight",
            "interval": 1,
            "backupCount": 30,
            "encoding": "utf-8"
        }
        app_handlers = ["console", "file", "error_file"]

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "json": {
                "()": JSONFormatter,
                "json_fields": ["request_id", "topic", "partition", "offset", "details"]
            }
        },
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": app_handlers,
                "level": log_level,
                "propagate": True
            },
            "kafka_gateway": {
                "handlers": app_handlers,
                "level": log_level,
                "propagate": False
            },
            "kafka": {
                # kafka-python is chatty at INFO
                "handlers": app_handlers,
                "level": "WARNING",
                "propagate": False
            },
            "uvicorn": {
                "handlers": app_handlers,
                "level": log_level,
                "propagate": False
            },
            "uvicorn.access": {
                "handlers": app_handlers,
                "level": log_level,
                "propagate": False
            }
        }
    }

    logging.config.dictConfig(logging_config)

    return logging.getLogger("kafka_gateway")
