"""Request logging and error tracking middleware for the wp-migrate server."""

import time
from collections import defaultdict
from typing import Any

import structlog
from fastmcp.server.middleware import Middleware, MiddlewareContext

from .core.exceptions import WPMigrateError

logger = structlog.get_logger()

SENSITIVE_KEYWORDS = (
    "password",
    "passwd",
    "token",
    "api_key",
    "secret",
    "credential",
    "authorization",
)


def is_sensitive_field(field_name: str) -> bool:
    """Check if a field name refers to a credential that must not be logged."""
    field_lower = field_name.lower()
    return any(keyword in field_lower for keyword in SENSITIVE_KEYWORDS)


def sanitize_payload(payload: Any, max_length: int = 1000) -> Any:
    """Redact credential fields and truncate long values in a request payload.

    Args:
        payload: Message object or mapping to sanitize
        max_length: Maximum length for string values before truncation

    Returns:
        A log-safe copy of the payload
    """
    if isinstance(payload, dict):
        items = payload.items()
    elif hasattr(payload, "__dict__"):
        items = ((key, value) for key, value in vars(payload).items() if not key.startswith("_"))
    else:
        text = str(payload)
        return text if len(text) <= max_length else text[:max_length] + "... [TRUNCATED]"

    sanitized: dict[str, Any] = {}
    for key, value in items:
        if is_sensitive_field(str(key)):
            sanitized[key] = "[REDACTED]"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_payload(value, max_length)
        elif isinstance(value, str) and len(value) > max_length:
            sanitized[key] = value[:max_length] + "... [TRUNCATED]"
        elif isinstance(value, (list, tuple)) and len(str(value)) > max_length:
            sanitized[key] = str(value)[:max_length] + "... [TRUNCATED]"
        else:
            sanitized[key] = value
    return sanitized


class RequestLoggingMiddleware(Middleware):
    """Logs every MCP message with timing and tracks failures by type.

    Engine errors (``WPMigrateError``) are logged at warning level since
    they describe bad input or an unreachable database; anything else is
    logged as an error with a traceback.
    """

    def __init__(self, include_payloads: bool = True, max_payload_length: int = 1000):
        self.logger = logger.bind(component="request_logging")
        self.include_payloads = include_payloads
        self.max_payload_length = max_payload_length
        self.error_stats: dict[str, int] = defaultdict(int)

    async def on_message(self, context: MiddlewareContext, call_next):
        start_time = time.time()
        log_data: dict[str, Any] = {
            "method": context.method,
            "source": context.source,
            "message_type": context.type,
        }
        if self.include_payloads and context.message is not None:
            log_data["params"] = sanitize_payload(context.message, self.max_payload_length)
        self.logger.info("MCP request started", **log_data)

        try:
            result = await call_next(context)
        except Exception as e:
            duration_ms = round((time.time() - start_time) * 1000, 2)
            error_type = type(e).__name__
            self.error_stats[f"{error_type}:{context.method}"] += 1
            if isinstance(e, WPMigrateError):
                self.logger.warning(
                    "MCP request failed",
                    method=context.method,
                    duration_ms=duration_ms,
                    error=str(e),
                    error_type=error_type,
                )
            else:
                self.logger.error(
                    "MCP request failed",
                    method=context.method,
                    duration_ms=duration_ms,
                    error=str(e),
                    error_type=error_type,
                    exc_info=True,
                )
            raise

        self.logger.info(
            "MCP request completed",
            method=context.method,
            success=True,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return result

    def get_error_statistics(self) -> dict[str, Any]:
        """Get counts of failed requests keyed by ``<error type>:<method>``."""
        return {
            "total_errors": sum(self.error_stats.values()),
            "error_distribution": dict(self.error_stats),
        }
