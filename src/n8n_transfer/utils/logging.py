"""Logging configuration for n8n Bridge using structlog.

This module configures structured logging with a Rich console handler and an
optional JSON file handler. A masking processor runs before any renderer so
that API keys never reach the console or the log file.
"""

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

from n8n_transfer import __version__

APP_NAME = "n8n-bridge"
REDACTED = "[REDACTED]"
SENSITIVE_KEYS = (
    "apikey",
    "api_key",
    "password",
    "secret",
    "token",
    "authorization",
    "credentials",
    "private_key",
)

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Patterns whose captured value is a credential
_SECRET_PATTERNS = [
    re.compile(r"(?i)(bearer\s+)([A-Za-z0-9\-._~+/]+=*)"),
    re.compile(r"(?i)(x-n8n-api-key[\"']?\s*[:=]\s*[\"']?)([^\s\"',}]+)"),
    re.compile(r"(?i)([?&](?:password|passwd|apikey|api_key|token|secret)=)([^&\s#]+)"),
]

_registered_secrets: set[str] = set()
_secrets_lock = threading.Lock()


def mask_api_key(api_key: str | None) -> str:
    """Mask an API key for display.

    Keeps the last three characters and replaces the rest with asterisks.

    Args:
        api_key: Key to mask

    Returns:
        Masked key, ``***`` for keys of three characters or fewer
    """
    if not api_key or len(api_key) <= 3:
        return "***"
    return "*" * (len(api_key) - 3) + api_key[-3:]


def register_secret(secret: str | None) -> None:
    """Register a secret value that must never appear in log output.

    Args:
        secret: Secret value (API key, token)
    """
    if secret and len(secret) > 3:
        with _secrets_lock:
            _registered_secrets.add(secret)


def clear_secrets() -> None:
    """Forget all registered secrets."""
    with _secrets_lock:
        _registered_secrets.clear()


def mask_secrets_in_text(text: str) -> str:
    """Replace every known secret in ``text`` with its masked form.

    Args:
        text: Text that may contain secrets

    Returns:
        Text with registered secrets and credential-shaped fragments masked
    """
    with _secrets_lock:
        secrets = sorted(_registered_secrets, key=len, reverse=True)
    for secret in secrets:
        if secret in text:
            text = text.replace(secret, mask_api_key(secret))
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + mask_api_key(m.group(2)), text)
    return text


def _mask_value(value: Any, depth: int = 0) -> Any:
    if depth > 10:
        return value
    if isinstance(value, str):
        return mask_secrets_in_text(value)
    if isinstance(value, dict):
        return {k: _mask_value(v, depth + 1) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_mask_value(v, depth + 1) for v in value)
    if isinstance(value, BaseException):
        return mask_secrets_in_text(str(value))
    return value


def mask_secrets(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Structlog processor that masks secrets in every event value.

    Args:
        logger: The wrapped logger instance
        method_name: The name of the logger method called
        event_dict: The event dictionary to be logged

    Returns:
        EventDict: Event dictionary with secrets masked
    """
    for key, value in list(event_dict.items()):
        if key == "exc_info":
            continue
        event_dict[key] = _mask_value(value)
    return event_dict


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log entries.

    Args:
        logger: The wrapped logger instance
        method_name: The name of the logger method called
        event_dict: The event dictionary to be logged

    Returns:
        EventDict: Modified event dictionary with app context
    """
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


class JSONFileFormatter(logging.Formatter):
    """Formatter that writes one JSON object per line for file logging.

    The message has already been rendered (and masked) by structlog; ANSI
    escape codes are stripped before it is wrapped in JSON.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        message = mask_secrets_in_text(_ANSI_PATTERN.sub("", record.getMessage()))

        log_entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": message,
            "app": APP_NAME,
            "version": __version__,
        }

        if record.exc_info:
            log_entry["exception"] = mask_secrets_in_text(self.formatException(record.exc_info))

        return json.dumps(log_entry)


def configure_logging(
    level: str = "INFO",
    log_format: str = "json",
    log_file: str | None = None,
    file_level: str | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: File output format ('json' or 'console'). Console output is
            always human-readable.
        log_file: Optional path to log file
        file_level: File log level (defaults to DEBUG)
    """
    console_level = getattr(logging, level.upper(), logging.INFO)
    file_log_level = getattr(logging, (file_level or "DEBUG").upper(), logging.DEBUG)

    rich_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,  # structlog adds timestamps
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(console_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # handlers filter
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(rich_handler)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        mask_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(colors=False),  # RichHandler handles coloring
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(min(console_level, file_log_level)),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_log_level)
        if log_format == "json":
            file_handler.setFormatter(JSONFileFormatter())
        else:
            file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(file_handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger instance
    """
    return structlog.get_logger(name)


def log_api_request(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    url: str,
    status_code: int,
    duration_ms: float,
    **extra: Any,
) -> None:
    """Log one completed HTTP exchange.

    2xx and 3xx log at debug, 4xx at warning, 5xx at error.

    Args:
        logger: Logger instance
        method: HTTP method
        url: Full request URL (query strings are masked by the processor chain)
        status_code: HTTP status code
        duration_ms: Round-trip time in milliseconds
        **extra: Additional context such as the instance label
    """
    if status_code < 400:
        log = logger.debug
    elif status_code < 500:
        log = logger.warning
    else:
        log = logger.error
    log(
        "api_response",
        method=method,
        url=url,
        status_code=status_code,
        duration_ms=round(duration_ms, 1),
        **extra,
    )


def redact_payload(payload: Any, max_depth: int = 10, _depth: int = 0) -> Any:
    """Copy a payload with sensitive keys replaced by ``[REDACTED]``.

    Node ``credentials`` bags are replaced as a whole. Containers nested
    deeper than ``max_depth`` are elided.
    """
    if _depth >= max_depth and isinstance(payload, (dict, list)):
        return "[...]"
    if isinstance(payload, dict):
        return {
            key: REDACTED
            if any(marker in str(key).lower() for marker in SENSITIVE_KEYS)
            else redact_payload(value, max_depth, _depth + 1)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [redact_payload(item, max_depth, _depth + 1) for item in payload]
    return payload


def payload_preview(payload: Any, max_chars: int = 2000) -> str:
    """Redacted single-line JSON rendering of a payload for debug logs."""
    text = json.dumps(redact_payload(payload), separators=(",", ":"), default=str)
    if len(text) > max_chars:
        return f"{text[:max_chars]}... ({len(text)} chars)"
    return text
