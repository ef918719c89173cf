from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import attr

from broadcast_matchers.config import Config
from broadcast_matchers.errors import ConfigurationError
from broadcast_matchers.pubsub import Broadcast

MATCHER_CONTEXT: ContextVar[MatcherContext] = ContextVar("broadcast_matchers:matcher_context")


@attr.define()
class MatcherContext:
    server: Broadcast = attr.field()
    config: Config = attr.field(factory=Config)


def get_matcher_context() -> MatcherContext:
    try:
        return MATCHER_CONTEXT.get()
    except LookupError:
        raise ConfigurationError(
            "No broadcast server available: pass context= to the matcher or use the broadcast_server fixture"
        ) from None


@contextmanager
def matcher_context(server: Broadcast, config: Optional[Config] = None) -> Iterator[MatcherContext]:
    """Makes server (and config) the ones matchers use for the duration of the block."""
    context = MatcherContext(server, config if config is not None else Config())
    token = MATCHER_CONTEXT.set(context)
    try:
        yield context
    finally:
        MATCHER_CONTEXT.reset(token)
