"""Structured JSON logging for production observability"""

import logging
import sys
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from flow_gateway.utils.date_utils import utcnow


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "flow-gateway"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_resolution(
    user_id: str,
    intent_id: str,
    strategy: str,
    outcome: str,
    chosen_rail: Optional[str],
    duration_ms: float,
    request_id: str = "internal",
) -> None:
    """Log structured resolution outcome for analysis"""
    logging.info(
        "Resolution completed",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "intent_id": intent_id,
            "step": "resolution_complete",
            "strategy": strategy,
            "outcome": outcome,
            "chosen_rail": chosen_rail,
            "duration_ms": duration_ms,
        },
    )


def log_execution(
    user_id: str,
    plan_id: str,
    status: str,
    failure_type: Optional[str],
    transaction_id: Optional[str],
    duration_ms: float,
    request_id: str = "internal",
) -> None:
    logging.info(
        "Execution completed",
        extra={
            "request_id": request_id,
            "user_id": user_id,
            "plan_id": plan_id,
            "step": "execution_complete",
            "status": status,
            "failure_type": failure_type,
            "transaction_id": transaction_id,
            "duration_ms": duration_ms,
        },
    )
