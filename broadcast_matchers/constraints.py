from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional, Sequence, Union

import attr
from attr import validators

from broadcast_matchers.errors import UsageError
from broadcast_matchers.patterns import Pattern, payload_diff

SYMBOLIC_COUNTS = {"once": 1, "twice": 2, "thrice": 3}

Count = Union[int, str]


def resolve_count(count: Count) -> int:
    if isinstance(count, str):
        if count not in SYMBOLIC_COUNTS:
            raise UsageError(f"Unknown count {count!r}; use an integer or one of {', '.join(SYMBOLIC_COUNTS)}")
        return SYMBOLIC_COUNTS[count]
    # bool is an int subclass, but exactly(True) is always a mistake
    if isinstance(count, bool) or not isinstance(count, int):
        raise UsageError(f"Expected count must be an integer, got {count!r}")
    if count < 0:
        raise UsageError(f"Expected count can't be negative, got {count}")
    return count


class CountKind(Enum):
    EXACTLY = "exactly"
    AT_LEAST = "at least"
    AT_MOST = "at most"


@attr.define(frozen=True)
class CountConstraint:
    kind: CountKind = attr.field(validator=validators.instance_of(CountKind))
    expected: int = attr.field(validator=[validators.instance_of(int), validators.ge(0)])

    @classmethod
    def exactly(cls, count: Count) -> CountConstraint:
        return cls(CountKind.EXACTLY, resolve_count(count))

    @classmethod
    def at_least(cls, count: Count) -> CountConstraint:
        return cls(CountKind.AT_LEAST, resolve_count(count))

    @classmethod
    def at_most(cls, count: Count) -> CountConstraint:
        return cls(CountKind.AT_MOST, resolve_count(count))

    @property
    def phrase(self) -> str:
        return f"{self.kind.value} {self.expected}"

    def is_satisfied_by(self, actual_count: int) -> bool:
        match self.kind:
            case CountKind.EXACTLY:
                return actual_count == self.expected
            case CountKind.AT_LEAST:
                return actual_count >= self.expected
            case CountKind.AT_MOST:
                return actual_count <= self.expected

    def evaluate(self, actual_count: int) -> tuple[bool, str]:
        return self.is_satisfied_by(actual_count), self.phrase


@attr.define(frozen=True)
class PayloadResult:
    success: bool = attr.field()
    details: list[str] = attr.field(factory=list)


class PayloadConstraint(ABC):
    @abstractmethod
    def describe(self) -> Optional[str]:
        """What gets appended after "with" in a failure message; None when there is nothing to say."""

    @abstractmethod
    def evaluate(self, payloads: Sequence[Any], color: bool = False) -> PayloadResult:
        pass

    def encoded(self, encode: Callable[[Any], Any]) -> PayloadConstraint:
        """The constraint to check recorded payloads with when they were encoded by encode."""
        return self


class NoPayloadConstraint(PayloadConstraint):
    def describe(self) -> Optional[str]:
        return None

    def evaluate(self, payloads: Sequence[Any], color: bool = False) -> PayloadResult:
        return PayloadResult(True)


class StructuralMatch(PayloadConstraint):
    def __init__(self, pattern: Pattern):
        self.pattern = pattern

    def describe(self) -> Optional[str]:
        return self.pattern.describe()

    def encoded(self, encode: Callable[[Any], Any]) -> PayloadConstraint:
        return StructuralMatch(self.pattern.encoded(encode))

    def evaluate(self, payloads: Sequence[Any], color: bool = False) -> PayloadResult:
        details: list[str] = []
        for index, payload in enumerate(payloads, start=1):
            if self.pattern.matches(payload):
                continue
            details.append(f"Message {index} didn't match {self.pattern.describe()}:")
            details.extend(f"  {line}" for line in self.pattern.mismatches(payload))
            details.extend(f"  {line}" for line in payload_diff(self.pattern, payload, color))
        return PayloadResult(not details, details)


class CustomPredicate(PayloadConstraint):
    """
    Hands each payload to caller code. Whatever the routine raises propagates untouched;
    an explicit False return is treated as a mismatch.
    """

    def __init__(self, routine: Callable[[Any], Any]):
        self.routine = routine

    @property
    def name(self) -> str:
        return getattr(self.routine, "__name__", repr(self.routine))

    def describe(self) -> Optional[str]:
        return f"data satisfying {self.name}"

    def evaluate(self, payloads: Sequence[Any], color: bool = False) -> PayloadResult:
        details: list[str] = []
        for index, payload in enumerate(payloads, start=1):
            if self.routine(payload) is False:
                details.append(f"Message {index} was rejected by {self.name}: {payload!r}")
        return PayloadResult(not details, details)
