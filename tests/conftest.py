import pytest

from broadcast_matchers.matcher_context import matcher_context
from broadcast_matchers.pubsub import Broadcast, MemoryBackend


class User:
    """Stands in for a model that knows its own stream parameter."""

    def __init__(self, id):
        self.id = id

    def to_gid_param(self):
        return f"gid://dummy/User/{self.id}"


@pytest.fixture
def user():
    return User(42)


@pytest.fixture
def live_server():
    """A server running the live backend instead of the test backend."""
    server = Broadcast(MemoryBackend())
    with matcher_context(server):
        yield server
