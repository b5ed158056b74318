import os
import re
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional


class SecurityFilter(logging.Filter):
    """Filter to remove sensitive information from logs while preserving context"""

    SENSITIVE_PATTERNS = [
        # JWT tokens (eyJ...)
        (r'eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*', '[JWT_TOKEN]'),
        # Bearer tokens
        (r'Bearer\s+[A-Za-z0-9._-]+', 'Bearer [TOKEN]'),
        # Secret keys
        (r'secret["\s]*[:=]["\s]*[^,}\s]+', 'secret: [HIDDEN]'),
        # Check-in ticket tokens
        (r'token["\s]*[:=]["\s]*[23456789A-HJ-NP-Z]{6,}', 'token: [TICKET]'),
        # Payment provider references
        (r'provider_ref["\s]*[:=]["\s]*[^,}\s]+', 'provider_ref: [HIDDEN]'),
    ]

    def filter(self, record):
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                msg = re.sub(pattern, replacement, msg, flags=re.IGNORECASE)
            record.msg = msg
        return True


def setup_logging():
    """Configure application logging based on environment variables"""

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    sql_log_level = os.getenv("SQL_LOG_LEVEL", "WARNING").upper()
    log_format = os.getenv("LOG_FORMAT", "text").lower()

    # Resolve default log file within <repo>/logs/studiobook.log regardless of CWD
    default_log_path = Path(__file__).resolve().parents[2] / "logs" / "studiobook.log"
    log_file_path = os.getenv("LOG_FILE_PATH", str(default_log_path))
    log_to_file = os.getenv("LOG_TO_FILE", "true").lower() == "true"
    booking_log_events = os.getenv("BOOKING_LOG_EVENTS", "true").lower() == "true"
    enable_security_filter = os.getenv("ENABLE_SECURITY_FILTER", "false").lower() == "true"

    if log_format == "json":
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"module": "%(name)s", "message": "%(message)s", '
            '"line": %(lineno)d, "function": "%(funcName)s"}'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))
    root_logger.handlers.clear()

    security_filter = SecurityFilter() if enable_security_filter else None

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level, logging.INFO))
    console_handler.setFormatter(formatter)
    if security_filter:
        console_handler.addFilter(security_filter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(formatter)
        if security_filter:
            file_handler.addFilter(security_filter)
        root_logger.addHandler(file_handler)

    sql_logger = logging.getLogger('sqlalchemy.engine')
    sql_logger.setLevel(getattr(logging, sql_log_level, logging.WARNING))

    app_logger = logging.getLogger('studiobook')
    app_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Lifecycle transitions are audit-relevant; keep them at INFO unless disabled
    lifecycle_logger = logging.getLogger('studiobook.crud')
    lifecycle_logger.setLevel(logging.INFO if booking_log_events else logging.WARNING)

    root_logger.info(
        "Logging initialized level=%s sql=%s file=%s",
        log_level,
        sql_log_level,
        log_file_path if log_to_file else "disabled",
    )

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name"""
    return logging.getLogger(f"studiobook.{name}")


def log_booking_transition(event_type: str, booking_id: int, actor_role: str,
                           actor_id: Optional[int] = None, detail: str = ""):
    """Log a booking lifecycle transition"""
    lifecycle_logger = get_logger("crud.lifecycle")
    lifecycle_logger.info(
        "Booking %s %s by %s#%s %s",
        booking_id, event_type, actor_role, actor_id if actor_id is not None else "-", detail,
    )


def log_security_event(event_type: str, details: str, level: str = "WARNING"):
    """Log security-related events"""
    security_logger = get_logger("security")
    log_level = getattr(logging, level.upper(), logging.WARNING)
    security_logger.log(log_level, f"Security event: {event_type} - {details}")
