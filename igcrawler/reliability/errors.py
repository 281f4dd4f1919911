"""Error classification for the crawler.

Three scopes of failure:
- run: bad input, never retried
- task: navigation or identity timeouts and hook errors, retried via the frontier
- response: unparseable payloads, logged and skipped
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type
from datetime import datetime

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError
from pydantic import BaseModel, Field


class ErrorSeverity(str, Enum):
    CRITICAL = "critical"  # run cannot continue
    HIGH = "high"          # task failed
    MEDIUM = "medium"      # task may succeed on retry
    LOW = "low"            # one response skipped


class ErrorCategory(str, Enum):
    CONFIGURATION = "configuration"
    NETWORK = "network"
    BROWSER = "browser"
    PARSING = "parsing"
    TIMEOUT = "timeout"
    HOOK = "hook"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


class RecoveryStrategy(str, Enum):
    """What the frontier does with the failed task."""
    RETRY = "retry"
    RESTART_BROWSER = "restart_browser"
    SKIP = "skip"
    FAIL = "fail"


class ErrorContext(BaseModel):
    """Where a failure happened: run, request, page state and attempt."""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    run_id: Optional[str] = None
    request_id: Optional[str] = None
    worker_id: Optional[str] = None
    url: Optional[str] = None
    state: Optional[str] = None
    identity: Dict[str, Any] = Field(default_factory=dict)
    traceback: Optional[str] = None
    attempt_number: int = 1
    max_attempts: int = 4


class EnhancedError(Exception):
    """An error that knows its category, severity and how to recover."""

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.MEDIUM
    recovery_strategy = RecoveryStrategy.RETRY

    def __init__(
        self,
        message: str,
        *,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        recovery_strategy: Optional[RecoveryStrategy] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        if severity is not None:
            self.severity = severity
        if recovery_strategy is not None:
            self.recovery_strategy = recovery_strategy
        self.cause = cause
        self.context = context or ErrorContext()
        if cause is not None and not self.context.traceback:
            self.context.traceback = "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))

    @property
    def retryable(self) -> bool:
        return self.recovery_strategy in (RecoveryStrategy.RETRY, RecoveryStrategy.RESTART_BROWSER)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "recovery_strategy": self.recovery_strategy.value,
            "retryable": self.retryable,
            "context": self.context.model_dump(mode="json"),
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class ConfigurationError(EnhancedError):
    """Invalid run input. Aborts the whole run before scheduling."""
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL
    recovery_strategy = RecoveryStrategy.FAIL


class NoUrlsError(ConfigurationError):
    """Neither direct URLs nor search produced anything to crawl."""


class NavigationTimeout(EnhancedError):
    category = ErrorCategory.TIMEOUT


class ExtractionTimeout(EnhancedError):
    """The page never published its client state, or page handling ran out of time."""
    category = ErrorCategory.TIMEOUT


class ParsingError(EnhancedError):
    """A payload could not be interpreted."""
    category = ErrorCategory.PARSING
    severity = ErrorSeverity.LOW
    recovery_strategy = RecoveryStrategy.SKIP


class UnsupportedPageError(EnhancedError):
    """The page type cannot produce the requested results."""
    category = ErrorCategory.UNSUPPORTED
    severity = ErrorSeverity.HIGH
    recovery_strategy = RecoveryStrategy.FAIL


class HookError(EnhancedError):
    """The user-supplied output hook misbehaved inside the page."""
    category = ErrorCategory.HOOK
    severity = ErrorSeverity.HIGH


class BrowserError(EnhancedError):
    category = ErrorCategory.BROWSER
    severity = ErrorSeverity.HIGH
    recovery_strategy = RecoveryStrategy.RESTART_BROWSER


# Substrings of Playwright error messages, checked in order
_PLAYWRIGHT_MESSAGE_RULES: Tuple[Tuple[Tuple[str, ...], Type[EnhancedError], Optional[ErrorCategory]], ...] = (
    (("target closed", "crashed", "has been closed", "disconnected"), BrowserError, None),
    (("net::", "connection", "refused", "proxy"), EnhancedError, ErrorCategory.NETWORK),
)

_LOG_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


class ErrorHandler:
    """Turns task failures into EnhancedErrors, logs them and counts them."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.error_counts: Dict[str, int] = {}
        self.last_errors: Dict[str, datetime] = {}

    def handle_error(self, error: BaseException, context: Optional[ErrorContext] = None) -> EnhancedError:
        if isinstance(error, EnhancedError):
            enhanced = error
            if context is not None:
                enhanced.context = context.model_copy(update={"traceback": error.context.traceback})
        else:
            enhanced = self.classify(error, context)

        self.logger.log(_LOG_LEVELS[enhanced.severity], f"[{enhanced.category.value}] {enhanced.message}")
        key = f"{enhanced.category.value}:{enhanced.severity.value}"
        self.error_counts[key] = self.error_counts.get(key, 0) + 1
        self.last_errors[key] = datetime.utcnow()
        return enhanced

    @staticmethod
    def classify(error: BaseException, context: Optional[ErrorContext] = None) -> EnhancedError:
        """Map a plain exception onto the crawler's error taxonomy."""
        message = str(error) or type(error).__name__
        if isinstance(error, (asyncio.TimeoutError, PlaywrightTimeoutError)):
            return ExtractionTimeout(str(error) or "Operation timed out", context=context, cause=error)

        if isinstance(error, PlaywrightError):
            lowered = message.lower()
            for terms, error_cls, category in _PLAYWRIGHT_MESSAGE_RULES:
                if any(term in lowered for term in terms):
                    return error_cls(message, category=category, context=context, cause=error)

        return EnhancedError(message, context=context, cause=error)

    def get_error_stats(self) -> Dict[str, Any]:
        return {
            "error_counts": dict(self.error_counts),
            "recent_errors": {key: when.isoformat() for key, when in self.last_errors.items()},
        }
