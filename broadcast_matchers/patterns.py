from __future__ import annotations

import difflib
import pprint
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Callable, Optional

from termcolor import colored


def values_match(expected: Any, actual: Any) -> bool:
    """
    Compares an expected value to an actual one. Patterns nested anywhere in the expected value
    (dict values, list items) are asked to do the comparison themselves.
    Lists and tuples compare equal element-wise since recorded payloads are JSON data.
    """
    if isinstance(expected, Pattern):
        return expected.matches(actual)
    if isinstance(expected, Mapping) and isinstance(actual, Mapping):
        return expected.keys() == actual.keys() and all(
            values_match(value, actual[key]) for key, value in expected.items()
        )
    if isinstance(expected, (list, tuple)) and isinstance(actual, (list, tuple)):
        return len(expected) == len(actual) and all(
            values_match(item, actual_item) for item, actual_item in zip(expected, actual)
        )
    return expected == actual


def contains_pattern(value: Any) -> bool:
    if isinstance(value, Pattern):
        return True
    if isinstance(value, Mapping):
        return any(contains_pattern(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_pattern(item) for item in value)
    return False


def encode_expected(value: Any, encode: Callable[[Any], Any]) -> Any:
    """
    Encodes an expected value the way recorded payloads are encoded, so a UUID, datetime or model
    compares equal to its recorded JSON form. Patterns nested inside are kept and encode their own values.
    """
    if isinstance(value, Pattern):
        return value.encoded(encode)
    if not contains_pattern(value):
        return encode(value)
    if isinstance(value, Mapping):
        return {_encode_key(key, encode): encode_expected(item, encode) for key, item in value.items()}
    return [encode_expected(item, encode) for item in value]


def _encode_key(key: Any, encode: Callable[[Any], Any]) -> Any:
    # Keys are only converted as part of a dict, e.g. 1 becomes "1"
    (encoded,) = encode({key: None})
    return encoded


class Pattern(ABC):
    @abstractmethod
    def matches(self, actual: Any) -> bool:
        pass

    @abstractmethod
    def describe(self) -> str:
        pass

    def mismatches(self, actual: Any) -> list[str]:
        """Human readable lines explaining why actual doesn't match; empty when it does."""
        if self.matches(actual):
            return []
        return [f"expected: {self.describe()}", f"     got: {actual!r}"]

    def diff_view(self, actual: Any) -> Optional[tuple[Any, Any]]:
        """The (expected, actual) pair worth diffing, or None when a diff wouldn't help."""
        return None

    def encoded(self, encode: Callable[[Any], Any]) -> Pattern:
        """This pattern with its expected values encoded like recorded payloads."""
        return self

    def __repr__(self) -> str:
        return self.describe()


class Equals(Pattern):
    def __init__(self, expected: Any):
        self.expected = expected

    def matches(self, actual: Any) -> bool:
        return values_match(self.expected, actual)

    def describe(self) -> str:
        return repr(self.expected)

    def mismatches(self, actual: Any) -> list[str]:
        if self.matches(actual):
            return []
        if not (isinstance(self.expected, Mapping) and isinstance(actual, Mapping)):
            return super().mismatches(actual)

        lines: list[str] = []
        for key, value in self.expected.items():
            if key not in actual:
                lines.append(f"{key!r}: expected {value!r}, but key is missing")
            elif not values_match(value, actual[key]):
                lines.append(f"{key!r}: expected {value!r}, got {actual[key]!r}")
        for key in actual:
            if key not in self.expected:
                lines.append(f"{key!r}: unexpected key with value {actual[key]!r}")
        return lines

    def diff_view(self, actual: Any) -> Optional[tuple[Any, Any]]:
        return self.expected, actual

    def encoded(self, encode: Callable[[Any], Any]) -> Pattern:
        return Equals(encode_expected(self.expected, encode))


class HashIncluding(Pattern):
    """Partial match: only the given keys are checked, extra keys on the actual payload are ignored."""

    def __init__(self, expected: Mapping[str, Any]):
        self.expected = dict(expected)

    def matches(self, actual: Any) -> bool:
        if not isinstance(actual, Mapping):
            return False
        return all(key in actual and values_match(value, actual[key]) for key, value in self.expected.items())

    def describe(self) -> str:
        return f"a hash including {self.expected!r}"

    def mismatches(self, actual: Any) -> list[str]:
        if not isinstance(actual, Mapping):
            return [f"expected a dict, got {actual!r}"]
        lines: list[str] = []
        for key, value in self.expected.items():
            if key not in actual:
                lines.append(f"{key!r}: expected {value!r}, but key is missing")
            elif not values_match(value, actual[key]):
                lines.append(f"{key!r}: expected {value!r}, got {actual[key]!r}")
        return lines

    def diff_view(self, actual: Any) -> Optional[tuple[Any, Any]]:
        if not isinstance(actual, Mapping):
            return None
        # Only the checked keys; extra keys on the payload are not part of the match
        return self.expected, {key: actual[key] for key in self.expected if key in actual}

    def encoded(self, encode: Callable[[Any], Any]) -> Pattern:
        return HashIncluding(encode_expected(self.expected, encode))


class Anything(Pattern):
    def matches(self, actual: Any) -> bool:
        return True

    def describe(self) -> str:
        return "anything"


class InstanceOf(Pattern):
    def __init__(self, expected_type: type | tuple[type, ...]):
        self.expected_type = expected_type

    def matches(self, actual: Any) -> bool:
        return isinstance(actual, self.expected_type)

    def describe(self) -> str:
        if isinstance(self.expected_type, tuple):
            names = " or ".join(t.__name__ for t in self.expected_type)
        else:
            names = self.expected_type.__name__
        return f"an instance of {names}"


def hash_including(*args: Mapping[str, Any], **kwargs: Any) -> HashIncluding:
    expected: dict[str, Any] = {}
    for mapping in args:
        expected.update(mapping)
    expected.update(kwargs)
    return HashIncluding(expected)


a_hash_including = hash_including


def anything() -> Anything:
    return Anything()


def an_instance_of(expected_type: type | tuple[type, ...]) -> InstanceOf:
    return InstanceOf(expected_type)


def to_pattern(value: Any) -> Pattern:
    if isinstance(value, Pattern):
        return value
    return Equals(value)


def payload_diff(pattern: Pattern, actual: Any, color: bool = False) -> list[str]:
    view = pattern.diff_view(actual)
    if view is None:
        return []
    expected, actual = view
    expected_lines = pprint.pformat(expected, width=60).splitlines()
    actual_lines = pprint.pformat(actual, width=60).splitlines()
    if expected_lines == actual_lines:
        return []

    lines: list[str] = []
    for line in difflib.unified_diff(expected_lines, actual_lines, "expected", "actual", lineterm=""):
        if not color or line.startswith("---") or line.startswith("+++") or line.startswith("@@"):
            lines.append(line)
        elif line.startswith("-"):
            lines.append(colored(line, "red", force_color=True))
        elif line.startswith("+"):
            lines.append(colored(line, "green", force_color=True))
        else:
            lines.append(line)
    return lines
