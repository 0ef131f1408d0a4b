"""
Structured logging configuration using structlog

Includes session-lifecycle logging with configurable verbosity levels:
- MINIMAL: Errors only
- STANDARD: + Session lifecycle (start/end/state changes)
- VERBOSE: + Latency measurements
- DEBUG: + Polling and room event details
"""

import logging
import sys
from enum import IntEnum
from typing import Dict, Optional

import structlog


class SessionLogLevel(IntEnum):
    """Session logging verbosity levels.

    Higher values include all lower level logs.
    """

    MINIMAL = 1  # Errors only
    STANDARD = 2  # + Session lifecycle
    VERBOSE = 3  # + Latency measurements
    DEBUG = 4  # + Polling and room events


_SESSION_LOG_LEVEL_MAP = {
    "MINIMAL": SessionLogLevel.MINIMAL,
    "STANDARD": SessionLogLevel.STANDARD,
    "VERBOSE": SessionLogLevel.VERBOSE,
    "DEBUG": SessionLogLevel.DEBUG,
}

_session_log_level: SessionLogLevel = SessionLogLevel.STANDARD


def get_session_log_level() -> SessionLogLevel:
    """Get the current session logging level."""
    return _session_log_level


def set_session_log_level(level: SessionLogLevel) -> None:
    """Set the session logging level (useful for testing)."""
    global _session_log_level
    _session_log_level = level


def configure_logging(debug: bool = False, session_log_level: str = "STANDARD") -> None:
    """Configure structured logging for the application"""
    log_level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    set_session_log_level(_SESSION_LOG_LEVEL_MAP.get(session_log_level.upper(), SessionLogLevel.STANDARD))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer() if debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None):
    """
    Get a structured logger instance

    Args:
        name: Logger name (usually __name__ of the module)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


# =============================================================================
# Session Lifecycle Logging
# =============================================================================


class SessionLogger:
    """
    Session-lifecycle logger with configurable verbosity levels.

    Usage:
        session_log = get_session_logger(__name__)

        # Always logged (errors)
        session_log.error("room_connect_failed", session_id="abc", error=str(e))

        # Logged at STANDARD+
        session_log.state_change(session_id="abc", from_state="idle", to_state="requesting")

        # Logged at VERBOSE+
        session_log.latency("session_request", duration_ms=180.2)

        # Logged at DEBUG only
        session_log.debug("capability_poll", attempts=20)
    """

    def __init__(self, name: str):
        self._logger = structlog.get_logger(name)
        self._name = name

    def _should_log(self, min_level: SessionLogLevel) -> bool:
        return _session_log_level >= min_level

    # -------------------------------------------------------------------------
    # MINIMAL level - Errors (always logged)
    # -------------------------------------------------------------------------

    def error(
        self,
        event: str,
        session_id: Optional[str] = None,
        error_code: Optional[str] = None,
        recoverable: bool = False,
        **kwargs,
    ):
        """Log session error (always logged at any level)."""
        self._logger.error(
            event,
            session_id=session_id,
            error_code=error_code,
            recoverable=recoverable,
            session_log_level="MINIMAL",
            **kwargs,
        )

    def warning(self, event: str, session_id: Optional[str] = None, **kwargs):
        """Log session warning (always logged at any level)."""
        self._logger.warning(event, session_id=session_id, session_log_level="MINIMAL", **kwargs)

    # -------------------------------------------------------------------------
    # STANDARD level - Session lifecycle
    # -------------------------------------------------------------------------

    def session_start(self, session_id: str, room_name: Optional[str] = None, **kwargs):
        """Log the start of a media-room session."""
        if not self._should_log(SessionLogLevel.STANDARD):
            return
        self._logger.info(
            "story_session_start",
            session_id=session_id,
            room_name=room_name,
            session_log_level="STANDARD",
            **kwargs,
        )

    def session_end(self, session_id: str, duration_ms: float, status: str = "completed", **kwargs):
        """Log the end of a media-room session."""
        if not self._should_log(SessionLogLevel.STANDARD):
            return
        self._logger.info(
            "story_session_end",
            session_id=session_id,
            duration_ms=round(duration_ms, 2),
            status=status,
            session_log_level="STANDARD",
            **kwargs,
        )

    def state_change(
        self,
        session_id: str,
        from_state: str,
        to_state: str,
        trigger: Optional[str] = None,
        **kwargs,
    ):
        """Log a controller state transition."""
        if not self._should_log(SessionLogLevel.STANDARD):
            return
        self._logger.info(
            "story_state_change",
            session_id=session_id,
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            session_log_level="STANDARD",
            **kwargs,
        )

    def info(self, event: str, session_id: Optional[str] = None, **kwargs):
        """Log generic session info at STANDARD level."""
        if not self._should_log(SessionLogLevel.STANDARD):
            return
        self._logger.info(event, session_id=session_id, session_log_level="STANDARD", **kwargs)

    # -------------------------------------------------------------------------
    # VERBOSE level - Latency measurements
    # -------------------------------------------------------------------------

    def latency(self, stage: str, duration_ms: float, session_id: Optional[str] = None, **kwargs):
        """Log lifecycle stage latency."""
        if not self._should_log(SessionLogLevel.VERBOSE):
            return
        self._logger.info(
            "story_latency",
            stage=stage,
            duration_ms=round(duration_ms, 2),
            session_id=session_id,
            session_log_level="VERBOSE",
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # DEBUG level - Polling and room events
    # -------------------------------------------------------------------------

    def debug(self, event: str, session_id: Optional[str] = None, **kwargs):
        """Log generic session debug message at DEBUG level."""
        if not self._should_log(SessionLogLevel.DEBUG):
            return
        self._logger.debug(event, session_id=session_id, session_log_level="DEBUG", **kwargs)


_session_loggers: Dict[str, SessionLogger] = {}


def get_session_logger(name: str = None) -> SessionLogger:
    """
    Get a session-lifecycle logger instance with configurable verbosity.

    Args:
        name: Logger name (usually __name__ of the module)

    Returns:
        SessionLogger instance
    """
    key = name or "__root__"
    if key not in _session_loggers:
        _session_loggers[key] = SessionLogger(name)
    return _session_loggers[key]
