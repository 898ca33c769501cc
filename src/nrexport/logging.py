# src/nrexport/logging.py
"""Structured logging configuration for nrexport.

Exporter modules log through structlog. Applications that already configure
structlog need nothing from here; configure_logging() is a convenience for
scripts and services that do not.

It configures BOTH structlog and stdlib logging to emit consistent output
(JSON or console), routing stdlib records through structlog's processor
chain via ProcessorFormatter. The audit logger (``nrexport.audit``) can be
sent to its own level so payload dumps stay off unless asked for.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

AUDIT_LOGGER_NAME = "nrexport.audit"

# Third-party loggers that are excessively verbose at DEBUG level.
_NOISY_LOGGERS: tuple[str, ...] = (
    # httpx/httpcore - per-request connection details
    "httpx",
    "httpcore",
    # OpenTelemetry SDK internals - processor and reader details
    "opentelemetry",
    "opentelemetry.sdk",
)


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove internal structlog fields from output.

    ProcessorFormatter always adds _record and _from_structlog when
    processing log records; they are bookkeeping, not output.
    """
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    audit_level: str | None = None,
) -> None:
    """Configure structlog and stdlib logging.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        audit_level: Level for the payload audit logger; defaults to ``level``.
    """
    log_level = getattr(logging, level.upper())

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Caching off so tests can reconfigure
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the root level
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)

    if audit_level is not None:
        logging.getLogger(AUDIT_LOGGER_NAME).setLevel(getattr(logging, audit_level.upper()))
