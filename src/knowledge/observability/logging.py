"""Structured logging configuration using structlog.

Why this exists:
- One event vocabulary for indexing and retrieval (snake_case events with
  keyword context such as knowledge_id and document_id)
- Console output goes to stderr so command output on stdout stays clean
- Optional JSON file log, rotated at midnight and kept for max_days

structlog events are rendered through the standard logging module, so
library loggers (chromadb, httpx, sentence-transformers) share the same
handlers and level.

How to use:
    from knowledge.observability.logging import get_logger

    logger = get_logger(__name__)
    logger.info("document_indexed", knowledge_id=kid, chunk_count=3)
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

import structlog
from structlog.types import EventDict, Processor

if TYPE_CHECKING:
    from knowledge.config.schema import AppConfig

LOG_FILE_NAME = "knowledge.log"


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Tag every event with the application name."""
    event_dict.setdefault("app", "knowledge")
    return event_dict


def _numeric_level(level: Any) -> int:
    name = str(getattr(level, "value", level)).upper()
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    return numeric


def _file_handler(log_dir: Path, max_days: int) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    return logging.handlers.TimedRotatingFileHandler(
        str(log_dir / LOG_FILE_NAME),
        when="midnight",
        backupCount=max_days,
        encoding="utf-8",
    )


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_dir: Optional[Path] = None,
    max_days: int = 30,
    enable_file: bool = False,
) -> None:
    """Configure structured logging for the application.

    Can be called again to reconfigure; handlers installed by a previous
    call are replaced.

    Args:
        level: Log level name or LogLevel
        json_logs: Render console output as JSON instead of coloured text
        log_dir: Directory for the rotating log file
        max_days: Number of rotated files to keep
        enable_file: Write a JSON log file under log_dir
    """
    numeric_level = _numeric_level(level)

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_app_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    console_renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                console_renderer,
            ],
        )
    )
    handlers: list[logging.Handler] = [console]

    file_error: Optional[OSError] = None
    if enable_file and log_dir:
        try:
            file_handler = _file_handler(log_dir, max_days)
        except OSError as e:
            file_error = e
        else:
            file_handler.setFormatter(
                structlog.stdlib.ProcessorFormatter(
                    foreign_pre_chain=shared,
                    processors=[
                        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                        structlog.processors.format_exc_info,
                        structlog.processors.JSONRenderer(),
                    ],
                )
            )
            handlers.append(file_handler)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(numeric_level)

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    # Reported after configure so the warning goes through the console handler
    if file_error is not None:
        get_logger(__name__).warning("log_file_unavailable", error=str(file_error), log_dir=str(log_dir))


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance for a module (typically __name__)."""
    return structlog.get_logger(name)


def configure_from_config(config: "AppConfig") -> None:
    """Configure logging from an AppConfig.

    Level and renderer come from the top-level log_level/json_logs fields;
    file settings from config.logging.
    """
    configure_logging(
        level=config.log_level,
        json_logs=config.json_logs,
        log_dir=config.logging.log_dir,
        max_days=config.logging.max_days,
        enable_file=config.logging.enable_file,
    )
