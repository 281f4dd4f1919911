"""User-supplied output hook (``extendOutputFunction``).

The hook is a JavaScript function expression run inside the page after the
target identity is known. It gets the identity as its only argument and must
return a plain object, which is merged over every record of that page.
"""

from __future__ import annotations

import re
from typing import Any, Dict, TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError

from .reliability import ConfigurationError, HookError

if TYPE_CHECKING:
    from .identity import TargetIdentity

_FUNCTION_EXPRESSION = re.compile(
    r"^\s*(async\s+)?(function\b|\([^()]*\)\s*=>|[A-Za-z_$][\w$]*\s*=>)",
    re.DOTALL,
)

# Evaluated with the hook source as data; the hook never sees crawler internals
_RUNNER = """
async ({ source, input }) => {
    const fn = (0, eval)('(' + source + ')');
    if (typeof fn !== 'function') return { ok: false, reason: 'not_function' };
    const value = await fn(input);
    if (value === undefined || value === null) return { ok: true, value: {} };
    if (typeof value !== 'object' || Array.isArray(value)) {
        return { ok: false, reason: 'not_object', type: Array.isArray(value) ? 'array' : typeof value };
    }
    return { ok: true, value };
}
"""


def validate_hook_source(source: str) -> None:
    """Reject anything that is not shaped like a function expression."""
    if not isinstance(source, str) or not _FUNCTION_EXPRESSION.match(source):
        raise ConfigurationError(
            "extendOutputFunction is not a function! Please fix it or use just default output!"
        )


class PageHook:
    """Runs the hook in page context and checks what comes back."""

    def __init__(self, source: str):
        validate_hook_source(source)
        self.source = source.strip()

    async def run(self, page, identity: "TargetIdentity") -> Dict[str, Any]:
        try:
            outcome = await page.evaluate(_RUNNER, {"source": self.source, "input": identity.to_dict()})
        except PlaywrightError as e:
            raise HookError(f"extendOutputFunction failed in page: {e}", cause=e) from e

        if not outcome.get("ok"):
            if outcome.get("reason") == "not_function":
                raise HookError("extendOutputFunction did not evaluate to a function")
            raise HookError(
                f"extendOutputFunction must return an object, got {outcome.get('type', 'unknown')}"
            )
        return dict(outcome.get("value") or {})
