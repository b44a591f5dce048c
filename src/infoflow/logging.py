from __future__ import annotations

import contextlib
import errno
import logging
import re
import sys
import traceback
from typing import Any, TextIO

import structlog

SECRET_KEYS = frozenset(
    {"app_secret", "check_token", "encoding_aes_key", "access_token"}
)
REDACTED = "[REDACTED]"

ACCESS_TOKEN_RE = re.compile(r"(access_token=)[^&\s]+")
APP_SECRET_RE = re.compile(r"(app_?secret[=:]\s*)\S+", re.IGNORECASE)


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


def redact_secret_processor(_, __, event_dict):
    """Processor to redact app credentials from log events."""
    for key in SECRET_KEYS:
        if event_dict.get(key):
            event_dict[key] = REDACTED

    message = event_dict.get("event")
    if isinstance(message, str):
        redacted = ACCESS_TOKEN_RE.sub(rf"\g<1>{REDACTED}", message)
        redacted = APP_SECRET_RE.sub(rf"\g<1>{REDACTED}", redacted)
        if redacted != message:
            event_dict["event"] = redacted

    return event_dict


def format_error(err: BaseException | object, *, include_stack: bool = False) -> str:
    if isinstance(err, BaseException):
        if include_stack and err.__traceback__ is not None:
            return "".join(
                traceback.format_exception(type(err), err, err.__traceback__)
            ).rstrip()
        return str(err) or err.__class__.__name__
    return str(err)


class SafeStreamHandler(logging.StreamHandler):
    """Stream handler that goes quiet once the reader closes the pipe."""

    def handleError(self, record: logging.LogRecord) -> None:
        exc = sys.exc_info()[1]
        if isinstance(exc, OSError) and exc.errno == errno.EPIPE:
            with contextlib.suppress(OSError):
                self.stream.close()
            return
        super().handleError(record)


def build_processors(*, json_output: bool) -> list[Any]:
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
        redact_secret_processor,
        renderer,
    ]


def setup_logging(
    *,
    debug: bool = False,
    json_output: bool | None = None,
    stream: TextIO | None = None,
) -> None:
    """Route structlog events through the root logger with secrets redacted.

    Events render as JSON lines unless ``json_output`` is false; it defaults
    to console rendering when ``debug`` is on.
    """
    if json_output is None:
        json_output = not debug
    structlog.configure(
        processors=build_processors(json_output=json_output),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = SafeStreamHandler(stream or sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.INFO)
