from __future__ import annotations

import logging
import logging.config
from contextvars import ContextVar
from typing import Any, Optional

from pythonjsonlogger import jsonlogger


request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
connection_id_ctx: ContextVar[Optional[str]] = ContextVar("connection_id", default=None)
instance_url_ctx: ContextVar[Optional[str]] = ContextVar("instance_url", default=None)


class RequestContextFilter(logging.Filter):
    """Injects request scoped context variables into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        # explicit ``extra`` values win over the ambient context
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_ctx.get()
        if getattr(record, "connection_id", None) is None:
            record.connection_id = connection_id_ctx.get()
        if getattr(record, "instance_url", None) is None:
            record.instance_url = instance_url_ctx.get()
        return True


def configure_logging(level: int = logging.INFO) -> None:
    """Configure JSON structured logging."""
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "request_context": {
                    "()": RequestContextFilter,
                }
            },
            "formatters": {
                "json": {
                    "()": jsonlogger.JsonFormatter,
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "level": level,
                    "formatter": "json",
                    "filters": ["request_context"],
                }
            },
            "loggers": {
                "": {
                    "handlers": ["default"],
                    "level": level,
                }
            },
        }
    )


def set_request_context(
    request_id: Optional[str] = None,
    connection_id: Optional[str] = None,
    instance_url: Optional[str] = None,
) -> None:
    if request_id is not None:
        request_id_ctx.set(request_id)
    if connection_id is not None:
        connection_id_ctx.set(connection_id)
    if instance_url is not None:
        instance_url_ctx.set(instance_url)


def clear_request_context() -> None:
    request_id_ctx.set(None)
    connection_id_ctx.set(None)
    instance_url_ctx.set(None)


def _redact_value(value: Any) -> str:
    if value is None:
        return ""
    return "***redacted***"


def sanitize_payload(payload: Any) -> Any:
    """Remove obvious secrets from a payload while keeping business fields."""

    sensitive_keys = {
        "authorization",
        "access_token",
        "refresh_token",
        "token",
        "secret",
        "password",
    }

    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            sanitized: dict[str, Any] = {}
            for key, val in value.items():
                key_lower = str(key).lower()
                if any(token in key_lower for token in sensitive_keys):
                    sanitized[key] = _redact_value(val)
                else:
                    sanitized[key] = _sanitize(val)
            return sanitized
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    return _sanitize(payload)


def log_acumatica_call_started(
    *,
    connection_id: Optional[str],
    operation: str,
    entity: Optional[str],
    payload: Any = None,
) -> None:
    logger = logging.getLogger("acumatica_gateway.calls")
    logger.info(
        "acumatica_call_started",
        extra={
            "event": "acumatica_call_started",
            "request_id": request_id_ctx.get(),
            "connection_id": connection_id,
            "operation": operation,
            "entity": entity,
            "payload": sanitize_payload(payload),
        },
    )


def log_acumatica_call_finished(
    *,
    connection_id: Optional[str],
    operation: str,
    entity: Optional[str],
    gateway_status_code: int,
    upstream_status_code: Optional[int],
    latency_ms: Optional[float],
    result: str,
    error_code: Optional[str] = None,
    error_message: Optional[str] = None,
    item_count: Optional[int] = None,
) -> None:
    logger = logging.getLogger("acumatica_gateway.calls")
    logger.info(
        "acumatica_call_finished",
        extra={
            "event": "acumatica_call_finished",
            "request_id": request_id_ctx.get(),
            "connection_id": connection_id,
            "operation": operation,
            "entity": entity,
            "gateway_status_code": gateway_status_code,
            "upstream_status_code": upstream_status_code,
            "latency_ms": None if latency_ms is None else round(latency_ms, 2),
            "result": result,
            "error_code": error_code,
            "error_message": error_message,
            "item_count": item_count,
        },
    )
