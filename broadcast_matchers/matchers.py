from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Optional, Sequence

import attr

from broadcast_matchers.config import Config
from broadcast_matchers.constraints import (
    Count,
    CountConstraint,
    CustomPredicate,
    NoPayloadConstraint,
    PayloadConstraint,
    StructuralMatch,
)
from broadcast_matchers.errors import UsageError
from broadcast_matchers.matcher_context import MatcherContext, get_matcher_context
from broadcast_matchers.patterns import Equals, Pattern, to_pattern
from broadcast_matchers.pubsub import broadcasting_for, encode_payload
from broadcast_matchers.recorder import BroadcastRecorder, RecordedMessage

logger = logging.getLogger("broadcast_matchers.matchers")

Action = Callable[[], Any]

_UNSET: Any = object()


class MatchState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    FILTERED = "filtered"
    COUNT_CHECKED = "count_checked"
    PAYLOAD_CHECKED = "payload_checked"
    DONE = "done"
    # The action, a predicate or the recorder raised; the matcher can't be evaluated again
    ABORTED = "aborted"


@attr.define(frozen=True)
class MatchResult:
    success: bool = attr.field()
    actual_count: int = attr.field()
    description: str = attr.field()


def require_action(action: Any) -> Action:
    # Catches expect(value) where expect(lambda: ...) was meant
    if not callable(action):
        raise UsageError(
            f"Broadcast matchers need an action to run, e.g. expect(lambda: ...), but got the value {action!r}"
        )
    return action


class BroadcastMatcher:
    """
    Runs an action while recording broadcasts, then checks how many messages went to a stream
    and, optionally, what they contained.

    Build with have_broadcasted / broadcast / have_broadcasted_to, configure with the fluent methods,
    then evaluate once, usually through expect(action).to(matcher).
    """

    def __init__(self, target: Any, context: Optional[MatcherContext] = None):
        self._target = target
        self._channel_name: Optional[str] = None
        self._context = context
        self._count: Optional[CountConstraint] = None
        self._payload: PayloadConstraint = NoPayloadConstraint()
        self._state = MatchState.IDLE
        self._result: Optional[MatchResult] = None

    @property
    def stream(self) -> str:
        return broadcasting_for(self._target, self._channel_name)

    @property
    def state(self) -> MatchState:
        return self._state

    @property
    def result(self) -> Optional[MatchResult]:
        return self._result

    @property
    def count_constraint(self) -> Optional[CountConstraint]:
        return self._count

    @property
    def payload_constraint(self) -> PayloadConstraint:
        return self._payload

    def context(self) -> MatcherContext:
        if self._context is None:
            self._context = get_matcher_context()
        return self._context

    ### Configuration

    def exactly(self, count: Count) -> BroadcastMatcher:
        return self._set_count(CountConstraint.exactly(count))

    def at_least(self, count: Count) -> BroadcastMatcher:
        return self._set_count(CountConstraint.at_least(count))

    def at_most(self, count: Count) -> BroadcastMatcher:
        return self._set_count(CountConstraint.at_most(count))

    def once(self) -> BroadcastMatcher:
        return self.exactly("once")

    def twice(self) -> BroadcastMatcher:
        return self.exactly("twice")

    def thrice(self) -> BroadcastMatcher:
        return self.exactly("thrice")

    def with_(self, expected: Any = _UNSET, **fields: Any) -> BroadcastMatcher:
        """
        Constrains the payloads. Accepts a pattern (e.g. hash_including(...)), a plain value compared
        for equality, keyword fields compared for equality as a dict, or a callable run on every payload.
        """
        self._check_configurable()
        if expected is _UNSET and not fields:
            raise UsageError("with_() needs a pattern, a callable or keyword fields")
        if expected is not _UNSET and fields:
            raise UsageError("with_() takes either a pattern or keyword fields, not both")

        if fields:
            self._payload = StructuralMatch(Equals(fields))
        elif callable(expected) and not isinstance(expected, Pattern):
            self._payload = CustomPredicate(expected)
        else:
            self._payload = StructuralMatch(to_pattern(expected))
        return self

    def from_channel(self, channel_name: str) -> BroadcastMatcher:
        self._check_configurable()
        self._channel_name = channel_name
        return self

    def and_(self, other: BroadcastMatcher | CompoundMatcher) -> CompoundMatcher:
        return CompoundMatcher(self, other)

    __and__ = and_

    def _set_count(self, constraint: CountConstraint) -> BroadcastMatcher:
        self._check_configurable()
        self._count = constraint
        return self

    def _check_configurable(self) -> None:
        if self._state is not MatchState.IDLE:
            raise UsageError("This matcher has already been evaluated; build a new one to configure")

    ### Evaluation

    def matches(self, action: Action) -> bool:
        return self.evaluate(action).success

    def does_not_match(self, action: Action) -> bool:
        return self.evaluate(action, negated=True).success

    @property
    def failure_message(self) -> str:
        if self._result is None:
            raise UsageError("failure_message is only available after the matcher has been evaluated")
        return self._result.description

    failure_message_when_negated = failure_message

    def evaluate(self, action: Action, negated: bool = False) -> MatchResult:
        action = require_action(action)
        context = self.context()
        recorder = BroadcastRecorder(context.server, context.config.normalize_payloads)
        self._start()
        try:
            with recorder.recording() as recording:
                action()
            return self._evaluate_recorded(recording.messages, negated)
        finally:
            self._abort()

    def _start(self) -> None:
        if self._state is not MatchState.IDLE:
            raise UsageError("A broadcast matcher can only be evaluated once; build a new one for each expectation")
        self._state = MatchState.RECORDING

    def _abort(self) -> None:
        if self._state not in (MatchState.IDLE, MatchState.DONE):
            self._state = MatchState.ABORTED

    def _evaluate_recorded(self, messages: Sequence[RecordedMessage], negated: bool = False) -> MatchResult:
        if self._state is not MatchState.RECORDING:
            raise UsageError(f"Can't evaluate recorded broadcasts from the {self._state.value} state")
        config = self.context().config
        stream = self.stream

        matching = [message for message in messages if message.channel == stream]
        self._state = MatchState.FILTERED

        count = self._count if self._count is not None else CountConstraint.exactly(config.default_count)
        satisfied, phrase = count.evaluate(len(matching))
        self._state = MatchState.COUNT_CHECKED

        details: list[str] = []
        if satisfied and not isinstance(self._payload, NoPayloadConstraint):
            payload = self._payload
            if config.normalize_payloads:
                payload = payload.encoded(encode_payload)
            payload_result = payload.evaluate([message.payload for message in matching], color=config.color_diff)
            self._state = MatchState.PAYLOAD_CHECKED
            satisfied = payload_result.success
            details = payload_result.details

        result = MatchResult(
            success=satisfied != negated,
            actual_count=len(matching),
            description=self._describe(stream, phrase, matching, negated, details, config),
        )
        self._result = result
        self._state = MatchState.DONE
        logger.debug(
            f"Broadcast matcher for {stream}: {len(matching)} of {len(messages)} recorded messages,"
            f" {'passed' if result.success else 'failed'}"
        )
        return result

    def _describe(
        self,
        stream: str,
        phrase: str,
        matching: Sequence[RecordedMessage],
        negated: bool,
        details: list[str],
        config: Config,
    ) -> str:
        expectation = "expected not to broadcast" if negated else "expected to broadcast"
        message = f"{expectation} {phrase} messages to {stream}"
        payload_description = self._payload.describe()
        if payload_description is not None:
            message += f" with {payload_description}"
        message += f", but broadcast {len(matching)}"

        lines = [message, *details]
        if config.list_broadcasts and matching:
            lines.append(f"Broadcasted messages to {stream}:")
            listed = matching[: config.max_listed_messages]
            lines.extend(f"   {recorded.payload!r}" for recorded in listed)
            if len(matching) > len(listed):
                lines.append(f"   ...and {len(matching) - len(listed)} more")
        return "\n".join(lines)


class CompoundMatcher:
    """
    Several broadcast matchers checked against a single run of the action: the action is executed once
    and every matcher filters the same recorded messages by its own stream.
    """

    def __init__(self, *matchers: BroadcastMatcher | CompoundMatcher):
        self.matchers: list[BroadcastMatcher] = []
        for matcher in matchers:
            if isinstance(matcher, CompoundMatcher):
                self.matchers.extend(matcher.matchers)
            else:
                self.matchers.append(matcher)
        self._result: Optional[MatchResult] = None

    def and_(self, other: BroadcastMatcher | CompoundMatcher) -> CompoundMatcher:
        return CompoundMatcher(self, other)

    __and__ = and_

    def matches(self, action: Action) -> bool:
        return self.evaluate(action).success

    def does_not_match(self, action: Action) -> bool:
        return self.evaluate(action, negated=True).success

    @property
    def failure_message(self) -> str:
        if self._result is None:
            raise UsageError("failure_message is only available after the matcher has been evaluated")
        return self._result.description

    def evaluate(self, action: Action, negated: bool = False) -> MatchResult:
        if negated:
            raise UsageError("Compound broadcast matchers can't be negated; negate each expectation separately")
        action = require_action(action)

        servers = {id(matcher.context().server) for matcher in self.matchers}
        if len(servers) > 1:
            raise UsageError("Compound broadcast matchers must all record from the same server")
        context = self.matchers[0].context()
        recorder = BroadcastRecorder(context.server, context.config.normalize_payloads)

        try:
            for matcher in self.matchers:
                matcher._start()
            with recorder.recording() as recording:
                action()
            results = [matcher._evaluate_recorded(recording.messages) for matcher in self.matchers]
        finally:
            for matcher in self.matchers:
                matcher._abort()

        failures = [result.description for result in results if not result.success]
        self._result = MatchResult(
            success=not failures,
            actual_count=sum(result.actual_count for result in results),
            description="\n\n...and:\n\n".join(failures or [result.description for result in results]),
        )
        return self._result


def have_broadcasted(channel: str, context: Optional[MatcherContext] = None) -> BroadcastMatcher:
    return BroadcastMatcher(channel, context)


broadcast = have_broadcasted


def have_broadcasted_to(target: Any, context: Optional[MatcherContext] = None) -> BroadcastMatcher:
    """Like have_broadcasted, but target may be an object; combine with from_channel() for channel streams."""
    return BroadcastMatcher(target, context)


broadcast_to = have_broadcasted_to
