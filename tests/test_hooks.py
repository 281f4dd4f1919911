import asyncio
import logging

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from igcrawler.hooks import PageHook
from igcrawler.identity import resolve_identity
from igcrawler.reliability import (
    BrowserError, EnhancedError, ErrorCategory, ErrorHandler, ExtractionTimeout, HookError,
    ParsingError, RecoveryStrategy, UnsupportedPageError,
)

from conftest import FakePage, profile_entry_data


class TestPageHook:

    @pytest.mark.asyncio
    async def test_returns_hook_object(self):
        page = FakePage(hook_result={"ok": True, "value": {"tag": "x"}})
        identity = resolve_identity(profile_entry_data(), 10)

        assert await PageHook("(i) => ({ tag: 'x' })").run(page, identity) == {"tag": "x"}
        assert page.hook_calls[0]["source"] == "(i) => ({ tag: 'x' })"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome, message", [
        ({"ok": False, "reason": "not_function"}, "did not evaluate to a function"),
        ({"ok": False, "reason": "not_object", "type": "array"}, "got array"),
    ])
    async def test_bad_outcomes_raise(self, outcome, message):
        page = FakePage(hook_result=outcome)
        with pytest.raises(HookError, match=message):
            await PageHook("() => []").run(page, resolve_identity(profile_entry_data(), 10))


class TestErrorHandler:

    def setup_method(self):
        self.handler = ErrorHandler(logging.getLogger("igcrawler.test"))

    def test_timeouts_become_extraction_timeouts(self):
        assert isinstance(self.handler.handle_error(PlaywrightTimeoutError("Timeout 30000ms")), ExtractionTimeout)
        assert isinstance(self.handler.handle_error(asyncio.TimeoutError()), ExtractionTimeout)

    def test_closed_target_restarts_browser(self):
        error = self.handler.handle_error(PlaywrightError("Target closed"))
        assert isinstance(error, BrowserError)
        assert error.recovery_strategy == RecoveryStrategy.RESTART_BROWSER
        assert error.retryable

    def test_proxy_failure_is_network(self):
        error = self.handler.handle_error(PlaywrightError("net::ERR_PROXY_CONNECTION_FAILED"))
        assert error.category == ErrorCategory.NETWORK

    def test_unknown_errors_are_retryable(self):
        error = self.handler.handle_error(RuntimeError("boom"))
        assert error.category == ErrorCategory.UNKNOWN
        assert error.retryable

    def test_enhanced_errors_pass_through(self):
        original = UnsupportedPageError("comments on a profile")
        assert self.handler.handle_error(original) is original
        assert not original.retryable
        assert not ParsingError("bad payload").retryable

    def test_counts_by_category(self):
        self.handler.handle_error(EnhancedError("a"))
        self.handler.handle_error(EnhancedError("b"))
        assert self.handler.get_error_stats()["error_counts"] == {"unknown:medium": 2}
