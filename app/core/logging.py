import logging
import os
from typing import Optional, Union


DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | [%(session_id)s] %(message)s"
NO_SESSION = "-"


class ContextFilter(logging.Filter):
    """Gives every record a `session_id` so the default format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not getattr(record, "session_id", None):
            record.session_id = NO_SESSION
        return True


class SessionLogger(logging.LoggerAdapter):
    """Stamps every record with the session it belongs to."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("session_id", self.extra["session_id"])
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Install one stderr handler on the root logger; safe to call again on reload."""
    resolved_level = getattr(logging, (level or DEFAULT_LEVEL).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    handler.addFilter(ContextFilter())
    root.addHandler(handler)


def get_logger(
    name: str, session_id: Optional[str] = None
) -> Union[logging.Logger, SessionLogger]:
    """Module logger, or a session-bound adapter when `session_id` is given."""
    if not logging.getLogger().handlers:
        setup_logging()
    logger = logging.getLogger(name)
    if session_id is None:
        return logger
    return SessionLogger(logger, {"session_id": session_id})
