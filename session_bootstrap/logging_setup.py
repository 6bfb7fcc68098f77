import logging
import os

# Extra attributes promoted into the key=value line when a caller passes them
# through ``logger.info(..., extra={...})``.
CONTEXT_FIELDS = ("uid", "status", "source", "attempt", "route")

_NOISY_LOGGERS = ("urllib3", "google", "aiohttp.access")


class KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                base[field] = value
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        ts = self.formatTime(record, self.datefmt)
        kv = [f"time={ts}"] + [f"{k}={v}" for k, v in base.items()]
        return " ".join(kv)


def mask_token(token: str | None) -> str:
    """Loggable form of a session token: never more than its last 4 chars."""
    if not token:
        return "<none>"
    return f"...{token[-4:]}" if len(token) > 8 else "<short>"


def configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(message)s")
    root = logging.getLogger()
    for h in root.handlers:
        h.setFormatter(KeyValueFormatter())
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.getLevelName(level), logging.WARNING))
