from broadcast_matchers.errors import BroadcastAssertionError, ConfigurationError, UsageError
from broadcast_matchers.expectations import expect
from broadcast_matchers.matchers import (
    BroadcastMatcher,
    CompoundMatcher,
    MatchResult,
    broadcast,
    broadcast_to,
    have_broadcasted,
    have_broadcasted_to,
)
from broadcast_matchers.patterns import a_hash_including, an_instance_of, anything, hash_including
from broadcast_matchers.pubsub import Broadcast, MemoryBackend, TestBackend

__all__ = [
    "Broadcast",
    "BroadcastAssertionError",
    "BroadcastMatcher",
    "CompoundMatcher",
    "ConfigurationError",
    "MatchResult",
    "MemoryBackend",
    "TestBackend",
    "UsageError",
    "a_hash_including",
    "an_instance_of",
    "anything",
    "broadcast",
    "broadcast_to",
    "expect",
    "hash_including",
    "have_broadcasted",
    "have_broadcasted_to",
]


def __dir__():
    return __all__


# Make sure to bump this on Release x.y.z PR's!
__version__ = "0.1.0"
