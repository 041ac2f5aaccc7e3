"""Structured logging infrastructure for agentspace.

Provides structured logging using structlog with workspace-specific context
such as session_id, workspace_dir, and component names. Supports console,
JSON, and rotating file output.

Example usage:
    from agentspace.core.logging import get_logger, configure_logging

    # Configure once at startup
    configure_logging(level="DEBUG", format="console")

    # Get a component-specific logger
    logger = get_logger("worktree")

    # Log with auto-context
    logger.info("worktree_created", path="/tmp/ws/api")

    # Use a session context for automatic correlation
    from agentspace.core.logging import SessionContext, with_session

    with with_session(SessionContext(session_id="abc-123")):
        logger.info("workspace_ready")  # Includes session_id automatically
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Sensitive field patterns that should never be logged
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "credential",
    "auth",
    "bearer",
})

# user:password@ segment of a remote URL (https://user:pw@github.com/...)
_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*://)[^/@\s]+@")


@dataclass(frozen=True)
class SessionContext:
    """Immutable context correlating log entries to one agent session.

    Attributes:
        session_id: Opaque session token minted by the caller.
        workspace_dir: Workspace container directory, when known.
        project_id: Owning project, when known.
    """

    session_id: str
    workspace_dir: str | None = None
    project_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert context to a dictionary for logging (excludes None values)."""
        result: dict[str, Any] = {"session_id": self.session_id}
        if self.workspace_dir is not None:
            result["workspace_dir"] = self.workspace_dir
        if self.project_id is not None:
            result["project_id"] = self.project_id
        return result


# ContextVar keeps concurrent workspace operations isolated from each other
_current_session: ContextVar[SessionContext | None] = ContextVar(
    "agentspace_session", default=None
)


def get_current_session() -> SessionContext | None:
    """Get the current SessionContext if set."""
    return _current_session.get()


@contextmanager
def with_session(ctx: SessionContext) -> Iterator[SessionContext]:
    """Set the SessionContext for the duration of a block.

    Args:
        ctx: The SessionContext to use for the block.

    Yields:
        The SessionContext that was set.
    """
    token = _current_session.set(ctx)
    try:
        yield ctx
    finally:
        _current_session.reset(token)


def redact_url(value: str) -> str:
    """Strip embedded credentials from any URLs inside ``value``."""
    return _URL_CREDENTIALS.sub(r"\g<scheme>***@", value)


def _sanitize_value(key: str, value: Any) -> Any:
    """Redact a value when its key looks sensitive or it embeds URL credentials."""
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    if isinstance(value, str) and "@" in value:
        return redact_url(value)
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that sanitizes sensitive fields."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {
                k: _sanitize_value(k, v) for k, v in value.items()
            }
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds an ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


def _add_session(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds SessionContext fields to log entries.

    Explicit bindings take precedence over context fields.
    """
    ctx = get_current_session()
    if ctx is not None:
        for key, value in ctx.to_dict().items():
            if key not in event_dict:
                event_dict[key] = value
    return event_dict


class AgentspaceLogger:
    """Component-bound logger wrapper around structlog.

    The underlying structlog logger is fetched lazily on every call so that
    loggers created at import time still respect configure_logging() called
    later at startup.
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> AgentspaceLogger:
        """Create a new logger with additional bound context."""
        new_logger = AgentspaceLogger.__new__(AgentspaceLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an exception with traceback; call from within an except block."""
        self._get_logger().exception(event, **kw)


def _build_processors(
    renderer: Processor,
    include_timestamps: bool,
    include_context: bool,
) -> list[Processor]:
    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,  # Filter before processing
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
    ]

    if include_context:
        processors.append(_add_session)

    if include_timestamps:
        processors.append(_add_timestamp)

    processors.extend([
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ])
    return processors


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    format: Literal["json", "console"] = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 50,
    backup_count: int = 5,
    include_timestamps: bool = True,
    include_context: bool = True,
) -> None:
    """Configure agentspace structured logging.

    Should be called once at application startup before any logging occurs.

    Args:
        level: Minimum log level to capture.
        format: "json" for structured output, "console" for human-readable.
        file_path: Optional rotating log file. Console output still goes to stderr.
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.
        include_timestamps: Whether to include ISO8601 timestamps.
        include_context: Whether to include SessionContext fields when one is active.
    """
    log_level = getattr(logging, level)

    handlers: list[logging.Handler] = []
    stream = sys.stderr if format == "console" else sys.stdout
    stream_handler = logging.StreamHandler(stream)
    stream_handler.setLevel(log_level)
    handlers.append(stream_handler)

    if file_path is not None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    renderer: Processor
    if format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    # cache_logger_on_first_use=False so module-level loggers pick up this config
    structlog.configure(
        processors=_build_processors(renderer, include_timestamps, include_context),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> AgentspaceLogger:
    """Get a logger bound to a component name.

    Args:
        component: The component name (e.g., "worktree", "workspace", "auto_merge").
        **initial_context: Additional context to bind.
    """
    return AgentspaceLogger(component, **initial_context)


__all__ = [
    "AgentspaceLogger",
    "SENSITIVE_PATTERNS",
    "SessionContext",
    "configure_logging",
    "get_current_session",
    "get_logger",
    "redact_url",
    "with_session",
]
