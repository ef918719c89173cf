from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from broadcast_matchers.matchers import MatchResult


TEST_BACKEND_REQUIRED = "To use the broadcast matchers, the test-mode pub/sub backend must be active"


class UsageError(Exception):
    """
    Raised when a matcher or recorder is used incorrectly: a value passed where an action was expected,
    nested recording, reusing an evaluated matcher, invalid counts.
    """


class ConfigurationError(Exception):
    """
    Raised when the environment isn't set up for recording broadcasts,
    e.g. the live backend is installed instead of the test backend.
    """


class BroadcastAssertionError(AssertionError):
    """
    The normal "test failed" outcome of a broadcast matcher. Carries the generated description.
    """

    def __init__(self, message: str, result: MatchResult | None = None):
        super().__init__(message)
        self.result = result
