"""
pytest fixtures for asserting on broadcasts.

Enable with `pytest_plugins = ("broadcast_matchers.pytest_plugin",)` in your top-level conftest.py.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest

from broadcast_matchers.config import Config
from broadcast_matchers.logging_config import setup_logging
from broadcast_matchers.matcher_context import matcher_context
from broadcast_matchers.pubsub import Broadcast, TestBackend


def pytest_addoption(parser):
    group = parser.getgroup("broadcast_matchers")
    group.addoption(
        "--broadcast-debug",
        action="store_true",
        default=False,
        help="Log broadcast recording and matcher verdicts at debug level",
    )


def pytest_configure(config):
    if config.getoption("--broadcast-debug"):
        setup_logging(logging.DEBUG)


@pytest.fixture
def broadcast_config() -> Config:
    return Config.create(Path.cwd())


# ContextVars need to be set in a synchronous fixture due to pytest not propagating
# async fixture contexts to test contexts.
# https://github.com/pytest-dev/pytest-asyncio/issues/127
@pytest.fixture
def broadcast_server(broadcast_config: Config) -> Iterator[Broadcast]:
    """A server with the test backend installed, used by every matcher built during the test."""
    server = Broadcast(TestBackend(normalize_payloads=broadcast_config.normalize_payloads))
    with matcher_context(server, broadcast_config):
        yield server


@pytest.fixture
def make_broadcast(broadcast_server: Broadcast) -> Callable[[str, Any], None]:
    def make_broadcast(channel: str, message: Any) -> None:
        broadcast_server.publish(channel, message)

    return make_broadcast
