"""structlog setup shared by every darts client.

Environment variables:
- DARTS_LOG_FORMAT: "json" for machine-readable lines, "console" or unset for
  coloured developer output.
- DARTS_LOG_LEVEL: standard level name, INFO when unset.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

_LOG_FORMATS = {"json", "console", ""}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def _enum_values(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Log StrEnum members (segment kinds, phases and statuses) by value."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, (list, tuple)):
            event_dict[key] = [v.value if isinstance(v, Enum) else v for v in value]
    return event_dict


def _running_under_pytest() -> bool:
    return "pytest" in sys.modules


def log_format_is_json() -> bool:
    value = os.environ.get("DARTS_LOG_FORMAT", "").lower()
    if value not in _LOG_FORMATS:
        raise ValueError(f"DARTS_LOG_FORMAT must be 'json', 'console' or unset, got {value!r}")
    return value == "json"


def log_level_from_env() -> int:
    value = os.environ.get("DARTS_LOG_LEVEL", "INFO").upper()
    if value not in _LOG_LEVELS:
        raise ValueError(f"DARTS_LOG_LEVEL must be one of {', '.join(sorted(_LOG_LEVELS))}, got {value!r}")
    return getattr(logging, value)


def _formatter(*, json_mode: bool, colors: bool = False) -> logging.Formatter:
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def configure_structlog() -> None:
    """Send structlog events through stdlib logging.

    Rendering is left to the handler formatters, so pytest's caplog sees
    every event as well.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _enum_values,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | None = None,
    *,
    client_name: str = "darts",
) -> Path | None:
    """Route structlog through stdlib logging to stdout and, optionally, a file.

    With ``log_dir`` a file named after the start time and ``client_name`` is
    created there (never under pytest). Returns that path, or None.
    """
    json_mode = log_format_is_json()
    if level is None:
        level = log_level_from_env()

    configure_structlog()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(json_mode=json_mode, colors=sys.stdout.isatty()))
    root.addHandler(console)

    if log_dir is None or _running_under_pytest():
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)
    path = directory / f"{stamp}_{client_name}.log"
    file_handler = logging.FileHandler(path)
    file_handler.setFormatter(_formatter(json_mode=json_mode))
    root.addHandler(file_handler)
    return path


def bind_match_context(match_id: str, **extra: Any) -> None:
    """Attach the match id (and anything else) to every log line of this context."""
    structlog.contextvars.bind_contextvars(match_id=match_id, **extra)
