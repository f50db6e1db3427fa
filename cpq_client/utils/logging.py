"""Structured logging for backend requests."""

import logging
from typing import Any

from cpq_client.config import Settings

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Apply the configured level to the package loggers."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.getLogger("cpq_client").setLevel(level)


class StructuredRequestLogger:
    """Structured logger for API request attempts."""

    def log_attempt(
        self,
        method: str,
        endpoint: str,
        attempt: int,
        outcome: str,
        latency_ms: float,
        status: int | None = None,
        error_reason: str | None = None,
    ) -> None:
        """Log one request attempt with structured data."""
        log_data: dict[str, Any] = {
            "method": method,
            "endpoint": endpoint,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }

        if status is not None:
            log_data["status"] = status
        if error_reason:
            log_data["error_reason"] = error_reason

        log_msg = f"API request: {method} {endpoint} - {outcome}"

        if outcome == "success":
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})
