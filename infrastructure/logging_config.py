"""structlog + stdlib logging setup.

All bot modules log through `structlog.get_logger("netbot.<subsystem>")`.
Output goes to the console and, when `LOG_DIR` is set, to a rotating
`netbot.log` file in that directory.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional

import structlog

from infrastructure.config import Settings

LOGGER_PREFIX = "netbot"

# Event keys whose values must never reach a log sink.
SECRET_KEYS = frozenset({"token", "api_key", "link_token", "discord_token", "telegram_token"})

_REDACTED = "***REDACTED***"


def redact_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that masks credential fields."""
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = _REDACTED
    return event_dict


def setup_logging(settings: Optional[Settings] = None, cache_loggers: bool = True) -> None:
    """
    Configure stdlib handlers and route structlog through them.

    Safe to call more than once; handlers are replaced, not stacked.
    Pass `cache_loggers=False` when the configuration may be replaced
    later in the same process.
    """
    level_name = settings.log_level if settings is not None else "INFO"
    level = getattr(logging, level_name, logging.INFO)
    log_dir = settings.log_dir if settings is not None else None

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            # Keep running with console logging only.
            print(
                f"WARNING: Cannot create log directory {log_dir}: {exc}. "
                "Falling back to console-only logging.",
                file=sys.stderr,
            )
        else:
            file_handler = logging.handlers.RotatingFileHandler(
                log_dir / f"{LOGGER_PREFIX}.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

    # discord.py and aiohttp are chatty at DEBUG.
    for noisy in ("discord", "aiohttp", "TeleBot"):
        logging.getLogger(noisy).setLevel(max(level, logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            redact_secrets,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=cache_loggers,
    )
