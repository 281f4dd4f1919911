"""Reliability module: error taxonomy and classification for crawl tasks."""

from .errors import (
    ErrorHandler, ErrorContext, EnhancedError,
    ErrorCategory, ErrorSeverity, RecoveryStrategy,
    ConfigurationError, NoUrlsError, NavigationTimeout, ExtractionTimeout,
    ParsingError, UnsupportedPageError, HookError, BrowserError
)

__all__ = [
    'ErrorHandler', 'ErrorContext', 'EnhancedError',
    'ErrorCategory', 'ErrorSeverity', 'RecoveryStrategy',
    'ConfigurationError', 'NoUrlsError', 'NavigationTimeout', 'ExtractionTimeout',
    'ParsingError', 'UnsupportedPageError', 'HookError', 'BrowserError'
]
