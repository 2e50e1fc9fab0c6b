"""Lifecycle events and the bounded channel that carries them to one consumer.

The runner and the agent process are the only producers. Sends never raise
and never block forever: if the consumer is gone, or the queue stays full
past the send timeout, the event is dropped and a warning is logged.
"""

from __future__ import annotations

import enum
import logging
import queue
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Union

LOGGER = logging.getLogger(__name__)

DEFAULT_CHANNEL_SIZE = 100
DEFAULT_SEND_TIMEOUT_SECS = 10.0
_POLL_INTERVAL_SECS = 0.05


class CompletionReason(enum.Enum):
    ALL_STORIES_COMPLETE = "all_stories_complete"
    COMPLETION_PHRASE_DETECTED = "completion_phrase_detected"
    BOTH = "both"

    def __str__(self) -> str:
        return _COMPLETION_REASON_TEXT[self]


_COMPLETION_REASON_TEXT = {
    CompletionReason.ALL_STORIES_COMPLETE: "all stories complete",
    CompletionReason.COMPLETION_PHRASE_DETECTED: "completion phrase detected",
    CompletionReason.BOTH: "all stories complete and completion phrase detected",
}


@dataclass(frozen=True, slots=True)
class MaxIterations:
    def __str__(self) -> str:
        return "maximum iterations reached"


@dataclass(frozen=True, slots=True)
class Cancelled:
    def __str__(self) -> str:
        return "cancelled"


@dataclass(frozen=True, slots=True)
class FatalError:
    message: str

    def __str__(self) -> str:
        return f"fatal error: {self.message}"


@dataclass(frozen=True, slots=True)
class CircuitBreakerTriggered:
    consecutive_failures: int

    def __str__(self) -> str:
        return (
            "circuit breaker triggered after "
            f"{self.consecutive_failures} consecutive failures"
        )


StopReason = Union[MaxIterations, Cancelled, FatalError, CircuitBreakerTriggered]


@dataclass(frozen=True, slots=True)
class Started:
    max_iterations: int


@dataclass(frozen=True, slots=True)
class IterationStarted:
    iteration: int
    max_iterations: int


@dataclass(frozen=True, slots=True)
class AgentOutput:
    text: str
    is_stderr: bool = False


@dataclass(frozen=True, slots=True)
class AgentFinished:
    exit_code: int | None
    duration_secs: float


@dataclass(frozen=True, slots=True)
class RetryScheduled:
    backoff_secs: int
    attempt: int
    max_retries: int


@dataclass(frozen=True, slots=True)
class ChecklistUpdated:
    completed: int
    total: int
    next_story: str | None = None


@dataclass(frozen=True, slots=True)
class IterationFinished:
    iteration: int
    completion_detected: bool


@dataclass(frozen=True, slots=True)
class Warning:  # noqa: A001
    message: str


@dataclass(frozen=True, slots=True)
class Error:
    """A non-fatal error, such as a failed read from one agent stream."""

    message: str


@dataclass(frozen=True, slots=True)
class Completed:
    iterations: int
    reason: CompletionReason


@dataclass(frozen=True, slots=True)
class Stopped:
    iterations: int
    reason: StopReason


Event = Union[
    Started,
    IterationStarted,
    AgentOutput,
    AgentFinished,
    RetryScheduled,
    ChecklistUpdated,
    IterationFinished,
    Warning,
    Error,
    Completed,
    Stopped,
]


class _EndOfStream:
    pass


_END_OF_STREAM = _EndOfStream()


class _ChannelState:
    def __init__(self, size: int) -> None:
        self.queue: queue.Queue[Event | _EndOfStream] = queue.Queue(maxsize=size)
        self.sender_closed = threading.Event()
        self.receiver_closed = threading.Event()


class EventSender:
    """Producer side of an event channel."""

    def __init__(self, state: _ChannelState, *, send_timeout: float) -> None:
        self._state = state
        self.send_timeout = send_timeout

    def send(self, event: Event) -> bool:
        """Queue an event; return False when it was dropped."""
        if self._state.sender_closed.is_set():
            LOGGER.debug("event_dropped_sender_closed", extra={"event": type(event).__name__})
            return False
        return self._put(event)

    def close(self) -> None:
        """Mark end of stream. Later sends are dropped."""
        if self._state.sender_closed.is_set():
            return
        self._state.sender_closed.set()
        self._put(_END_OF_STREAM)

    @property
    def closed(self) -> bool:
        return self._state.sender_closed.is_set()

    def _put(self, item: Event | _EndOfStream) -> bool:
        deadline = time.monotonic() + self.send_timeout
        while not self._state.receiver_closed.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LOGGER.warning(
                    "event_dropped_channel_full",
                    extra={"event": type(item).__name__, "send_timeout": self.send_timeout},
                )
                return False
            try:
                self._state.queue.put(item, timeout=min(remaining, _POLL_INTERVAL_SECS))
            except queue.Full:
                continue
            return True
        return False


class EventReceiver:
    """Consumer side of an event channel."""

    def __init__(self, state: _ChannelState) -> None:
        self._state = state
        self._finished = False

    def recv(self, timeout: float | None = None) -> Event | None:
        """Return the next event, or None once the stream has ended.

        Raises ``queue.Empty`` if ``timeout`` elapses with nothing to read.
        """
        if self._finished:
            return None
        item = self._state.queue.get(timeout=timeout)
        if isinstance(item, _EndOfStream):
            self._finished = True
            return None
        return item

    def drain(self) -> list[Event]:
        """Return every event queued right now without blocking."""
        events: list[Event] = []
        while not self._finished:
            try:
                item = self._state.queue.get_nowait()
            except queue.Empty:
                break
            if isinstance(item, _EndOfStream):
                self._finished = True
                break
            events.append(item)
        return events

    def close(self) -> None:
        """Tell producers the consumer is gone; pending sends are dropped."""
        self._state.receiver_closed.set()

    def __iter__(self) -> Iterator[Event]:
        while True:
            event = self.recv()
            if event is None:
                return
            yield event


def channel(
    size: int = DEFAULT_CHANNEL_SIZE,
    *,
    send_timeout: float = DEFAULT_SEND_TIMEOUT_SECS,
) -> tuple[EventSender, EventReceiver]:
    """Create a bounded FIFO event channel and return its two ends."""
    if size < 1:
        raise ValueError("event channel size must be positive")
    state = _ChannelState(size)
    return EventSender(state, send_timeout=send_timeout), EventReceiver(state)
