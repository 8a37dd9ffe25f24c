"""
Structured logging for the receptionist service.

JSON lines in every environment except local development, where the console
renderer is easier to read. All entries carry level, logger name, ISO
timestamp and the service tag.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "urllib3", "uvicorn.access")


def setup_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog on top of the stdlib logging module.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines; False switches to the console renderer
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_service_context,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _add_service_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", "receptionist")
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, usually with `__name__`."""
    return structlog.get_logger(name)


def log_ingestion_decision(decision: str, owner_id: str, **fields: Any) -> None:
    """
    Log the gate's verdict on one inbound message.

    Duplicates and suppressed loops are expected outcomes, so they share the
    info level with accepted messages and are told apart by `decision`.
    """
    get_logger("ingestion").info("Inbound message decision", decision=decision, owner_id=owner_id, **fields)


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str = None):
    logger = get_logger("health")
    fields = {"component": service, "healthy": healthy, "latency_ms": latency_ms}
    if error:
        fields["error"] = error

    if healthy:
        logger.info("Health check passed", **fields)
    else:
        logger.error("Health check failed", **fields)


def log_request(method: str, path: str, status_code: int, duration_ms: float, account_id: str = None):
    """One line per HTTP request; 4xx/5xx at warning."""
    logger = get_logger("http")
    fields = {"method": method, "path": path, "status_code": status_code, "duration_ms": duration_ms}
    if account_id:
        fields["account_id"] = account_id

    if status_code >= 400:
        logger.warning("HTTP request failed", **fields)
    else:
        logger.info("HTTP request completed", **fields)
