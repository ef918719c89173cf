from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional
from uuid import UUID, uuid4

import attr

from broadcast_matchers.errors import TEST_BACKEND_REQUIRED, ConfigurationError, UsageError
from broadcast_matchers.pubsub import Broadcast, TestBackend, encode_payload

logger = logging.getLogger("broadcast_matchers.recorder")


@attr.define(frozen=True)
class RecordedMessage:
    channel: str = attr.field()
    payload: Any = attr.field()
    sequence: int = attr.field()


@attr.define(frozen=True)
class RecordingHandle:
    started_at: int = attr.field()
    id: UUID = attr.field(factory=uuid4)


@attr.define
class Recording:
    """Yielded by BroadcastRecorder.recording(); messages is filled in when the block exits."""

    handle: RecordingHandle = attr.field()
    messages: list[RecordedMessage] = attr.field(factory=list)


class BroadcastRecorder:
    """
    Captures every message published on a server's TestBackend between begin_recording and end_recording.

    A recorder holds at most one recording at a time. Several recorders can be attached to the same backend;
    each only sees its own window.

    Messages are encoded as they are published, normalized to JSON data unless normalize_payloads is False.
    Left as None, the recorder follows the backend's own setting.
    """

    def __init__(self, server: Broadcast, normalize_payloads: Optional[bool] = None):
        self._server = server
        self._normalize_payloads = normalize_payloads
        self._backend: TestBackend | None = None
        self._handle: RecordingHandle | None = None
        self._messages: List[RecordedMessage] = []
        self._sequence = 0

    @property
    def active(self) -> bool:
        return self._handle is not None

    def begin_recording(self) -> RecordingHandle:
        backend = self._server.backend
        if not isinstance(backend, TestBackend):
            raise ConfigurationError(TEST_BACKEND_REQUIRED)
        if self._handle is not None:
            raise UsageError("Broadcasts are already being recorded; nested recording is not supported")

        self._handle = RecordingHandle(started_at=self._sequence)
        self._messages = []
        self._backend = backend
        backend.attach(self)
        logger.debug(f"Started recording broadcasts ({self._handle.id})")
        return self._handle

    def record(self, channel: str, message: Any) -> None:
        if self._handle is None or self._backend is None:
            raise UsageError("record() called while no recording is active")
        normalize = self._normalize_payloads
        if normalize is None:
            normalize = self._backend.normalize_payloads
        payload = encode_payload(message, normalize)
        self._messages.append(RecordedMessage(channel=channel, payload=payload, sequence=self._sequence))
        self._sequence += 1

    def end_recording(self, handle: RecordingHandle) -> list[RecordedMessage]:
        if self._handle is None or handle != self._handle:
            raise UsageError("end_recording() called with a handle that isn't the active recording")
        assert self._backend is not None
        self._backend.detach(self)

        messages = self._messages
        self._messages = []
        self._handle = None
        self._backend = None
        logger.debug(f"Stopped recording broadcasts ({handle.id}): {len(messages)} recorded")
        return messages

    @contextmanager
    def recording(self) -> Iterator[Recording]:
        handle = self.begin_recording()
        recording = Recording(handle)
        try:
            yield recording
        finally:
            recording.messages = self.end_recording(handle)
