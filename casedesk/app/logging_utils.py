"""
Log hygiene for casedesk.

Usernames, feedback text and storage keys reach log lines as ``%s``
arguments. Records from the ``casedesk`` logger tree get those arguments
escaped when the record is created, so a value cannot start a forged log
line whichever handler ends up writing it.
"""

import logging
from collections.abc import Mapping
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOGGER_PREFIX = "casedesk"
MAX_VALUE_LENGTH = 512

# CR/LF become visible escapes, every other C0 control and DEL becomes "?"
_ESCAPES: dict[int, str] = {
    code: "?" for code in (*range(0x00, 0x09), *range(0x0B, 0x20), 0x7F)
}
_ESCAPES[ord("\n")] = "\\n"
_ESCAPES[ord("\r")] = "\\r"


def sanitize_log_value(value: Any, max_length: int = MAX_VALUE_LENGTH) -> str:
    if value is None:
        return "<none>"
    text = str(value).translate(_ESCAPES)
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}...(+{len(text) - max_length} chars)"


def _sanitize_args(args: Any, max_length: int) -> Any:
    if isinstance(args, Mapping):
        return {key: sanitize_log_value(val, max_length) for key, val in args.items()}
    if isinstance(args, tuple):
        return tuple(sanitize_log_value(arg, max_length) for arg in args)
    return args


def _owned(name: str, prefix: str) -> bool:
    return name == prefix or name.startswith(prefix + ".")


def install_log_sanitizer(
    prefix: str = LOGGER_PREFIX, max_length: int = MAX_VALUE_LENGTH
) -> None:
    """Wrap the log record factory so ``prefix`` loggers get escaped arguments.

    Only our own loggers are touched: third-party records keep their typed
    arguments for ``%d``-style formats. Installing twice is a no-op.
    """
    previous = logging.getLogRecordFactory()
    if getattr(previous, "casedesk_sanitizer", False):
        return

    def factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
        record = previous(*args, **kwargs)
        if record.args and _owned(record.name, prefix):
            record.args = _sanitize_args(record.args, max_length)
        return record

    factory.casedesk_sanitizer = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(factory)


def configure_logging(level: str = "INFO") -> None:
    """Set up root logging once for the process."""
    install_log_sanitizer()
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())
