# sitenotify/infra/logging_config.py
import logging
import sys
import json
from datetime import datetime, timezone

# Context attributes copied from log records into structured output
_CONTEXT_FIELDS = ("dispatch_id", "recipient_id", "notification_type", "channel")


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        return json.dumps(log_data, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Human-readable format for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        context_parts = []
        if hasattr(record, "dispatch_id"):
            context_parts.append(f"dispatch={record.dispatch_id[:8]}")
        if hasattr(record, "notification_type"):
            context_parts.append(f"type={record.notification_type}")
        if hasattr(record, "recipient_id"):
            context_parts.append(f"recipient={record.recipient_id[:8]}")
        if hasattr(record, "channel"):
            context_parts.append(f"channel={record.channel}")

        context = f" [{' '.join(context_parts)}]" if context_parts else ""

        line = (
            f"{color}[{timestamp}] {record.levelname:8}{reset} "
            f"{record.name}{context} - {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Configure application logging

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, use JSON format (for production)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(console_handler)

    # pywebpush logs full request/response bodies at DEBUG
    logging.getLogger("pywebpush").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LogContext:
    """Add dispatch context to log records"""

    def __init__(
            self,
            logger: logging.Logger,
            dispatch_id: str | None = None,
            recipient_id: str | None = None,
            notification_type: str | None = None,
            channel: str | None = None,
    ):
        self.logger = logger
        self.context = {
            k: v for k, v in {
                "dispatch_id": dispatch_id,
                "recipient_id": recipient_id,
                "notification_type": notification_type,
                "channel": channel,
            }.items() if v is not None
        }

    def bind(self, **context: str | None) -> "LogContext":
        """Return a new LogContext with extra fields merged in"""
        merged = {**self.context, **{k: v for k, v in context.items() if v is not None}}
        child = LogContext(self.logger)
        child.context = merged
        return child

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.pop("extra", {})
        extra.update(self.context)
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)


def mask_email(email: str | None) -> str:
    """Mask an email address for logging.

    Example: ``mask_email("kim.minsu@example.com")`` → ``"ki***@example.com"``
    """
    if not email or "@" not in email:
        return "***"
    local, _, domain = email.partition("@")
    return f"{local[:2]}***@{domain}"
