from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone

from app.core.request_context import get_customer_id, get_merchant_id, get_request_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
MAX_LOGGED_TEXT = 500

_SENSITIVE_PATTERNS = [
    re.compile(r"(authorization\s*[:=]\s*bearer\s+)([^\s\"]+)", re.IGNORECASE),
    re.compile(r"(x-api-key\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(token\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(password\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
    re.compile(r"(secret\s*[:=]\s*)([^\s\",}]+)", re.IGNORECASE),
]
_PHONE_PATTERN = re.compile(r"(\+?\d{3})\d{5,}")
_EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")


def mask_personal_data(value: str | None) -> str:
    """Masks phone numbers and e-mails and truncates long user text."""
    if not value:
        return ""
    masked = _PHONE_PATTERN.sub(r"\1XXXXX", str(value))
    masked = _EMAIL_PATTERN.sub("***@***", masked)
    if len(masked) > MAX_LOGGED_TEXT:
        masked = masked[:MAX_LOGGED_TEXT] + "... [truncated]"
    return masked


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "request_id": getattr(record, "request_id", None) or get_request_id(),
            "merchant_id": getattr(record, "merchant_id", None) or get_merchant_id(),
            "customer_id": getattr(record, "customer_id", None) or get_customer_id(),
            "module": record.name,
            "message": self._mask(record.getMessage()),
            "duration_ms": getattr(record, "duration_ms", None),
        }
        endpoint = getattr(record, "endpoint", None)
        method = getattr(record, "method", None)
        status_code = getattr(record, "status_code", None)
        if endpoint is not None:
            payload["endpoint"] = endpoint
        if method is not None:
            payload["method"] = method
        if status_code is not None:
            payload["status_code"] = status_code
        if record.exc_info:
            payload["exception"] = self._mask(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False)

    def _mask(self, value: str) -> str:
        masked = value
        for pattern in _SENSITIVE_PATTERNS:
            masked = pattern.sub(r"\1***", masked)
        return _PHONE_PATTERN.sub(r"\1XXXXX", masked)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(LOG_LEVEL)

    handler = logging.StreamHandler()
    formatter = JsonFormatter("%(message)s")
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(LOG_LEVEL)
