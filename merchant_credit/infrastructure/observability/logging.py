"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from pythonjsonlogger import jsonlogger

from merchant_credit.config import settings


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

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_score_calculated(
    merchant_id: str,
    credit_score: int,
    risk_band: str,
    duration_ms: float,
    request_id: Optional[str] = None,
) -> None:
    """Log structured scoring outcome for analysis"""
    logging.info(
        "Credit score calculated",
        extra={
            "request_id": request_id,
            "merchant_id": merchant_id,
            "step": "score_complete",
            "credit_score": credit_score,
            "risk_band": risk_band,
            "duration_ms": duration_ms,
        },
    )


def log_alert_raised(merchant_id: str, alert_type: str, severity: str, metric_value: float) -> None:
    logging.warning(
        "Early warning alert raised",
        extra={
            "merchant_id": merchant_id,
            "step": "alert_raised",
            "alert_type": alert_type,
            "severity": severity,
            "metric_value": metric_value,
        },
    )


def log_gateway_call(path: str, request_id: str, status_code: int, duration_ms: float) -> None:
    logging.info(
        "Gateway request completed",
        extra={
            "request_id": request_id,
            "step": "gateway_call",
            "path": path,
            "status_code": status_code,
            "duration_ms": duration_ms,
        },
    )
