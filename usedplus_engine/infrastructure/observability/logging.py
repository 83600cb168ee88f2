"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from usedplus_engine.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_tick(timestamp: int, accounts: int, events: int, duration_ms: float) -> None:
    """Log a processed clock tick"""
    logging.getLogger("usedplus_engine.clock").info(
        "Tick processed",
        extra={
            "step": "tick",
            "tick_timestamp": timestamp,
            "accounts": accounts,
            "events": events,
            "duration_ms": duration_ms,
        },
    )


def log_deal_event(deal_id: str, account_id: str, event: str, **fields: Any) -> None:
    """Log a deal state change with its identifying fields"""
    logging.getLogger("usedplus_engine.deals").info(
        f"Deal {event}",
        extra={"deal_id": deal_id, "account_id": account_id, "step": event, **fields},
    )
