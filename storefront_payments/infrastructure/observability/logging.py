"""Structured JSON logging"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from storefront_payments.config import settings

# Request lines from the gateway client are already covered by gateway metrics
QUIET_LOGGERS = ("httpx", "httpcore")


class PaymentsJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping UTC time, level and service name on every record"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Route all logging to stdout as JSON"""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(PaymentsJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s"))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_confirmation(
    transaction_id: str,
    source: str,
    credited: bool,
    user_id: Optional[int] = None,
    product_id: Optional[int] = None,
    amount: Optional[int] = None,
) -> None:
    """One audit line per confirmation attempt, whichever path it came from"""
    logging.getLogger("storefront_payments.reconciliation").info(
        "Confirmation processed" if credited else "Confirmation ignored",
        extra={
            "transaction_id": transaction_id,
            "source": source,
            "step": "confirm",
            "outcome": "credited" if credited else "noop",
            "user_id": user_id,
            "product_id": product_id,
            "amount": amount,
        },
    )
