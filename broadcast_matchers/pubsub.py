# Adapted from https://github.com/encode/broadcaster
from __future__ import annotations

import asyncio
import copy
import logging
from asyncio import CancelledError, Queue
from collections import defaultdict
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterator, List, Optional, Set

import attr
from pydantic import TypeAdapter
from pydantic_core import PydanticSerializationError

if TYPE_CHECKING:
    from broadcast_matchers.recorder import BroadcastRecorder

logger = logging.getLogger("broadcast_matchers.pubsub")

Listener = Callable[[Any], None]

_payload_adapter: TypeAdapter[Any] = TypeAdapter(Any)


def encode_payload(message: Any, normalize: bool = True) -> Any:
    """A payload as it is recorded: JSON data, or a deep copy when normalization is off or impossible."""
    if normalize:
        try:
            return _payload_adapter.dump_python(message, mode="json")
        except PydanticSerializationError:
            logger.debug(f"Payload of type {type(message).__name__} isn't JSON serializable; recording a copy")
    return copy.deepcopy(message)


def broadcasting_for(target: Any, channel_name: Optional[str] = None) -> str:
    """
    The stream name used for a target: strings are used as is, objects that know their own
    stream parameter (to_gid_param) use it, anything else falls back to str().
    With a channel name the stream is namespaced as "<channel_name>:<param>".
    """
    if isinstance(target, str):
        stream = target
    elif hasattr(target, "to_gid_param"):
        stream = target.to_gid_param()
    else:
        stream = str(target)

    if channel_name:
        return f"{channel_name}:{stream}"
    return stream


@attr.define
class Event:
    channel: str = attr.field()
    message: Any = attr.field()


class Subscriber:
    def __init__(self, queue: Queue[Event]) -> None:
        self._queue = queue

    async def get(self) -> Event:
        return await self._queue.get()


class MemoryBackend:
    """The live in-process backend. Events for channels nobody listens to are held until someone subscribes."""

    def __init__(self):
        self._subscribed: Set[str] = set()
        self._missed_events: defaultdict[str, list[Event]] = defaultdict(list)
        self._published: Queue[Event] = Queue()

    def subscribe(self, channel: str) -> None:
        self._subscribed.add(channel)
        for event in self._missed_events[channel]:
            self._published.put_nowait(event)
        self._missed_events[channel].clear()

    def unsubscribe(self, channel: str) -> None:
        self._subscribed.remove(channel)

    # Since there is no maximum queue size, use the synchronous version of this function instead
    async def publish_async(self, channel: str, message: Any) -> None:
        event = Event(channel=channel, message=message)
        if channel in self._subscribed:
            await self._published.put(event)
        else:
            self._missed_events[channel].append(event)

    def publish(self, channel: str, message: Any) -> None:
        event = Event(channel=channel, message=message)
        if channel in self._subscribed:
            self._published.put_nowait(event)
        else:
            self._missed_events[channel].append(event)

    async def next_published(self) -> Event:
        event = await self._published.get()
        self._published.task_done()
        return event


class TestBackend(MemoryBackend):
    """
    Backend for test runs. Every publish is handed to the attached recorders and kept in a per-channel log,
    then delivered the same way MemoryBackend delivers it.
    """

    # Not a test class, despite the name
    __test__ = False

    def __init__(self, normalize_payloads: bool = True):
        super().__init__()
        self.normalize_payloads = normalize_payloads
        self._recorders: List[BroadcastRecorder] = []
        self._channels_data: defaultdict[str, list[Any]] = defaultdict(list)

    def attach(self, recorder: BroadcastRecorder) -> None:
        self._recorders.append(recorder)

    def detach(self, recorder: BroadcastRecorder) -> None:
        self._recorders.remove(recorder)

    def encode(self, message: Any) -> Any:
        return encode_payload(message, self.normalize_payloads)

    def _record(self, channel: str, message: Any) -> None:
        self._channels_data[channel].append(self.encode(message))
        # Recorders encode the message themselves, following their own normalization setting
        for recorder in list(self._recorders):
            recorder.record(channel, message)

    async def publish_async(self, channel: str, message: Any) -> None:
        self._record(channel, message)
        await super().publish_async(channel, message)

    def publish(self, channel: str, message: Any) -> None:
        self._record(channel, message)
        super().publish(channel, message)

    def broadcasts(self, channel: str) -> list[Any]:
        return list(self._channels_data[channel])

    def clear_messages(self, channel: str) -> None:
        self._channels_data[channel].clear()

    def clear(self) -> None:
        self._channels_data.clear()


class Broadcast:
    """
    In-process pub/sub server. The backend is passed in explicitly; pass a TestBackend to be able to
    assert on what gets published.

    Listeners added with add_listener are called synchronously during publish, so a listener that publishes
    again does so before the outer publish returns.
    """

    def __init__(self, backend: MemoryBackend | None = None):
        self._subscribers: Dict[str, set[Queue[Event]]] = {}
        self._listeners: defaultdict[str, list[Listener]] = defaultdict(list)
        self._backend = backend if backend is not None else MemoryBackend()
        self._listener_task: asyncio.Task[None] | None = None

    @property
    def backend(self) -> MemoryBackend:
        return self._backend

    def __enter__(self) -> Broadcast:
        self.connect()
        return self

    def __exit__(self, *args: Any, **kwargs: Any) -> None:
        self.disconnect()

    def connect(self) -> None:
        self._listener_task = asyncio.create_task(self._listener())

    def disconnect(self) -> None:
        if self._listener_task is None:
            return
        if self._listener_task.done():
            try:
                self._listener_task.result()
            except CancelledError:
                pass
        else:
            self._listener_task.cancel()
        self._listener_task = None

    async def _listener(self) -> None:
        while True:
            event = await self._backend.next_published()
            for queue in self._subscribers.get(event.channel, set()):
                queue.put_nowait(event)

    # Since there is no maximum queue size, use the synchronous version of this function instead
    async def publish_async(self, channel: str, message: Any) -> None:
        await self._backend.publish_async(channel, message)
        self._notify_listeners(channel, message)

    def publish(self, channel: str, message: Any) -> None:
        logger.debug(f"Publishing to {channel}")
        self._backend.publish(channel, message)
        self._notify_listeners(channel, message)

    def broadcast_to(self, target: Any, message: Any, channel_name: Optional[str] = None) -> None:
        self.publish(broadcasting_for(target, channel_name), message)

    def add_listener(self, channel: str, callback: Listener) -> None:
        self._listeners[channel].append(callback)

    def remove_listener(self, channel: str, callback: Listener) -> None:
        self._listeners[channel].remove(callback)

    def _notify_listeners(self, channel: str, message: Any) -> None:
        for callback in list(self._listeners.get(channel, [])):
            callback(message)

    @contextmanager
    def subscribe(self, channel: str) -> Iterator[Subscriber]:
        queue: Queue[Event] = Queue()

        if not self._subscribers.get(channel):
            self._backend.subscribe(channel)
            self._subscribers[channel] = set()

        self._subscribers[channel].add(queue)
        try:
            yield Subscriber(queue)
        finally:
            self._subscribers[channel].remove(queue)

            if not self._subscribers.get(channel):
                del self._subscribers[channel]
                self._backend.unsubscribe(channel)
