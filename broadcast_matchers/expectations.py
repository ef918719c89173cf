from __future__ import annotations

from typing import Any, Protocol

from broadcast_matchers.errors import BroadcastAssertionError
from broadcast_matchers.matchers import MatchResult


class Matcher(Protocol):
    def evaluate(self, action: Any, negated: bool = False) -> MatchResult: ...


class Expectation:
    """
    expect(action).to(matcher) raises BroadcastAssertionError when the matcher fails.
    Errors raised by the action, or by a predicate passed to with_(), propagate as they are.
    """

    def __init__(self, action: Any):
        self._action = action

    def to(self, matcher: Matcher) -> MatchResult:
        result = matcher.evaluate(self._action)
        if not result.success:
            raise BroadcastAssertionError(result.description, result)
        return result

    def not_to(self, matcher: Matcher) -> MatchResult:
        result = matcher.evaluate(self._action, negated=True)
        if not result.success:
            raise BroadcastAssertionError(result.description, result)
        return result

    to_not = not_to


def expect(action: Any) -> Expectation:
    return Expectation(action)
