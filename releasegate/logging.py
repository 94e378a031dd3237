"""Structured logging configuration for releasegate."""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

from .config import get_settings


def setup_logging() -> None:
    """Configure structured logging for releasegate."""
    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=settings.log_level.upper(),
    )

    # Configure structlog
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def set_level(level: str) -> None:
    """Change the root log level (e.g. from the CLI --verbose flag)."""
    logging.getLogger().setLevel(level.upper())


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def log_pipeline_event(
    logger: structlog.stdlib.BoundLogger,
    run_id: str,
    phase: str,
    mode: Optional[str] = None,
    build_id: Optional[str] = None,
    **kwargs: Any,
) -> None:
    """Log a pipeline event with run context."""
    log_data: Dict[str, Any] = {
        "run_id": run_id,
        "phase": phase,
    }

    if mode is not None:
        log_data["mode"] = mode
    if build_id is not None:
        log_data["build_id"] = build_id

    log_data.update(kwargs)

    logger.info(f"pipeline.{phase}", **log_data)


def log_stage_event(
    logger: structlog.stdlib.BoundLogger,
    run_id: str,
    stage: str,
    state: str,
    outcome: Optional[str] = None,
    duration_ms: Optional[int] = None,
    **kwargs: Any,
) -> None:
    """Log a stage state transition."""
    log_data: Dict[str, Any] = {
        "run_id": run_id,
        "stage": stage,
        "state": state,
    }

    if outcome is not None:
        log_data["outcome"] = outcome
    if duration_ms is not None:
        log_data["duration_ms"] = duration_ms

    log_data.update(kwargs)

    logger.info(f"stage.{state}", **log_data)


def log_platform_call(
    logger: structlog.stdlib.BoundLogger,
    service: str,
    action: str,
    payload: Dict[str, Any],
    **kwargs: Any,
) -> None:
    """Log a deployment platform API call."""
    log_data: Dict[str, Any] = {
        "platform_service": service,
        "platform_action": action,
    }

    # Include payload summary but not full payload for security
    if payload:
        log_data["payload_keys"] = list(payload.keys())
        log_data["payload_size"] = len(str(payload))

    log_data.update(kwargs)

    logger.info("platform.call", **log_data)


# Initialize logging on module import
setup_logging()
