import json
import logging
import os
import re
import sys
import traceback
from datetime import UTC, datetime
from functools import lru_cache
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any

from relay.core.settings import get_settings

_STANDARD_LOG_RECORD_KEYS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())
_STANDARD_LOG_RECORD_KEYS.update({"message", "asctime"})
_STRUCTURED_LOG_KEYS = {
    "component",
    "operation",
    "item_id",
    "context_data",
    "http_details",
    "error_type",
    "error_message",
}
_SENSITIVE_KEY_PARTS = (
    "authorization",
    "cookie",
    "api-key",
    "api_key",
    "apikey",
    "token",
    "password",
    "secret",
    "b64_data",
    "botphoto",
    "bot_photo",
)
_MAX_CONSOLE_CONTEXT_CHARS = 500


def _sanitize_filename(value: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9._-]+", "_", value.strip().lower())
    return cleaned.strip("._-") or "relay"


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SENSITIVE_KEY_PARTS)


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            str(k): "<redacted>" if _is_sensitive_key(str(k)) else _redact_value(v)
            for k, v in value.items()
        }

    if isinstance(value, list):
        return [_redact_value(v) for v in value]

    if isinstance(value, tuple):
        return tuple(_redact_value(v) for v in value)

    if isinstance(value, str):
        # Provider keys travel as "Token <key>", bearer tokens as "Bearer <jwt>"
        redacted = re.sub(
            r"(?i)\b(bearer|token)\s+[a-z0-9\-._~+/]{8,}=*",
            r"\1 <redacted>",
            value,
        )
        redacted = re.sub(
            r"(?i)(authorization['\"]?\s*[:=]\s*['\"])([^'\"]+)(['\"])",
            r"\1<redacted>\3",
            redacted,
        )
        return redacted

    return value


def _record_component(record: logging.LogRecord) -> str:
    component = getattr(record, "component", None)
    if isinstance(component, str) and component.strip():
        return component
    return record.name


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_LOG_RECORD_KEYS and key not in _STRUCTURED_LOG_KEYS
    }


def _merge_context_data(context_data: Any, extra_fields: dict[str, Any]) -> Any:
    if not extra_fields:
        return context_data
    if context_data is None:
        return extra_fields
    if isinstance(context_data, dict):
        merged = dict(extra_fields)
        merged.update(context_data)
        return merged
    return {"context_data": context_data, **extra_fields}


def _redacted_context(record: logging.LogRecord) -> Any:
    context_data = _merge_context_data(
        getattr(record, "context_data", None), _extract_extra_fields(record)
    )
    if context_data is None:
        return None
    return _redact_value(context_data)


def _build_structured_json_payload(record: logging.LogRecord) -> dict[str, Any]:
    http_details = getattr(record, "http_details", None)
    payload: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
        "component": _record_component(record),
        "operation": getattr(record, "operation", None),
        "message": _redact_value(record.getMessage()),
        "context_data": _redacted_context(record),
        "http_details": _redact_value(http_details) if http_details is not None else None,
        "item_id": getattr(record, "item_id", None),
        "source_file": record.filename,
        "source_line": record.lineno,
        "source_function": record.funcName,
        "process": record.process,
        "thread": record.thread,
    }
    return {k: v for k, v in payload.items() if v is not None}


def _build_error_json_payload(record: logging.LogRecord) -> dict[str, Any]:
    payload = _build_structured_json_payload(record)

    exc_type = exc_value = exc_tb = None
    if record.exc_info and len(record.exc_info) == 3:
        exc_type, exc_value, exc_tb = record.exc_info

    error_type = getattr(record, "error_type", None) or (
        exc_type.__name__ if exc_type else "LogError"
    )
    error_message = getattr(record, "error_message", None) or (
        str(exc_value) if exc_value else str(payload["message"])
    )
    payload["error_type"] = error_type
    payload["error_message"] = error_message
    if exc_type and exc_value and exc_tb:
        payload["stack_trace"] = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
    return payload


class _JsonLineErrorFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(_build_error_json_payload(record), ensure_ascii=False, default=str)


class _JsonLineStructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(_build_structured_json_payload(record), ensure_ascii=False, default=str)


class _StructuredLogFilter(logging.Filter):
    """Only let records that carry structured fields into the structured file."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in ("context_data", "http_details", "item_id", "operation"):
            if getattr(record, key, None) is not None:
                return True
        return bool(_extract_extra_fields(record))


class _ConsoleStructuredFormatter(logging.Formatter):
    """Console formatter that appends structured metadata to the message."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        parts: list[str] = []

        component = getattr(record, "component", None)
        if component:
            parts.append(f"component={component}")
        operation = getattr(record, "operation", None)
        if operation:
            parts.append(f"operation={operation}")
        item_id = getattr(record, "item_id", None)
        if item_id is not None:
            parts.append(f"item_id={item_id}")
        context = _redacted_context(record)
        if context:
            rendered = json.dumps(context, ensure_ascii=False, default=str)
            if len(rendered) > _MAX_CONSOLE_CONTEXT_CHARS:
                rendered = f"{rendered[:_MAX_CONSOLE_CONTEXT_CHARS]}..."
            parts.append(f"context={rendered}")

        if not parts:
            return base
        return f"{base} | {' '.join(parts)}"


def _rotate_jsonl_namer(default_name: str) -> str:
    marker = ".jsonl."
    if marker not in default_name:
        return default_name
    before, after = default_name.split(marker, 1)
    return f"{before}_{after}.jsonl"


def _create_jsonl_handler(
    *,
    directory: Path,
    logger_name: str,
    kind: str,
    level: int,
    formatter: logging.Formatter,
) -> logging.Handler:
    directory.mkdir(parents=True, exist_ok=True)
    prefix = _sanitize_filename(logger_name)
    base_file = directory / f"{prefix}_{kind}_{os.getpid()}.jsonl"

    handler = TimedRotatingFileHandler(
        filename=str(base_file),
        when="D",
        interval=1,
        backupCount=0,
        encoding="utf-8",
        delay=True,
        utc=True,
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.suffix = "%Y%m%d_%H%M%S"
    handler.namer = _rotate_jsonl_namer
    return handler


@lru_cache
def setup_logging(name: str | None = None, level: str | None = None) -> logging.Logger:
    """
    Configure the root logger for the whole service.

    Args:
        name: Logger name (defaults to app name from settings)
        level: Log level (defaults to settings.log_level)

    Returns:
        The application logger
    """
    settings = get_settings()
    logger_name = name or settings.app_name
    log_level = getattr(logging, (level or settings.log_level).upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        _ConsoleStructuredFormatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root_logger.addHandler(console_handler)

    root_logger.addHandler(
        _create_jsonl_handler(
            directory=settings.logs_dir / "errors",
            logger_name=logger_name,
            kind="errors",
            level=logging.ERROR,
            formatter=_JsonLineErrorFormatter(),
        )
    )

    structured_handler = _create_jsonl_handler(
        directory=settings.logs_dir / "structured",
        logger_name=logger_name,
        kind="structured",
        level=logging.NOTSET,
        formatter=_JsonLineStructuredFormatter(),
    )
    structured_handler.addFilter(_StructuredLogFilter())
    root_logger.addHandler(structured_handler)

    app_logger = logging.getLogger(logger_name)
    app_logger.setLevel(log_level)
    return app_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)
