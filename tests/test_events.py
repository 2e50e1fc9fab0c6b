from __future__ import annotations

import queue
import threading

import pytest

from wigglepuppy.events import (
    AgentOutput,
    Cancelled,
    CircuitBreakerTriggered,
    CompletionReason,
    FatalError,
    IterationStarted,
    MaxIterations,
    Started,
    channel,
)


def test_events_arrive_in_send_order() -> None:
    sender, receiver = channel(10)

    sender.send(Started(max_iterations=3))
    sender.send(IterationStarted(iteration=1, max_iterations=3))
    sender.send(AgentOutput(text="hello"))
    sender.close()

    assert list(receiver) == [
        Started(max_iterations=3),
        IterationStarted(iteration=1, max_iterations=3),
        AgentOutput(text="hello"),
    ]
    assert receiver.recv() is None


def test_send_after_close_is_dropped() -> None:
    sender, receiver = channel(10)
    sender.close()

    assert sender.closed is True
    assert sender.send(Started(max_iterations=1)) is False
    assert list(receiver) == []


def test_send_after_receiver_close_is_dropped() -> None:
    sender, receiver = channel(10)
    receiver.close()

    assert sender.send(Started(max_iterations=1)) is False


def test_full_channel_drops_after_send_timeout() -> None:
    sender, receiver = channel(1, send_timeout=0.05)

    assert sender.send(AgentOutput(text="first")) is True
    assert sender.send(AgentOutput(text="second")) is False
    assert receiver.drain() == [AgentOutput(text="first")]


def test_blocked_sender_resumes_when_consumer_reads() -> None:
    sender, receiver = channel(1, send_timeout=5.0)
    sender.send(AgentOutput(text="first"))
    results: list[bool] = []

    producer = threading.Thread(
        target=lambda: results.append(sender.send(AgentOutput(text="second")))
    )
    producer.start()
    assert receiver.recv(timeout=1.0) == AgentOutput(text="first")
    producer.join(timeout=5.0)

    assert results == [True]
    assert receiver.recv(timeout=1.0) == AgentOutput(text="second")


def test_recv_timeout_raises_empty() -> None:
    _sender, receiver = channel(1)

    with pytest.raises(queue.Empty):
        receiver.recv(timeout=0.01)


def test_drain_stops_at_end_of_stream() -> None:
    sender, receiver = channel(10)
    sender.send(AgentOutput(text="a"))
    sender.send(AgentOutput(text="b"))
    sender.close()

    assert receiver.drain() == [AgentOutput(text="a"), AgentOutput(text="b")]
    assert receiver.drain() == []
    assert receiver.recv() is None


def test_channel_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        channel(0)


@pytest.mark.parametrize(
    ("reason", "expected"),
    [
        (CompletionReason.ALL_STORIES_COMPLETE, "all stories complete"),
        (CompletionReason.COMPLETION_PHRASE_DETECTED, "completion phrase detected"),
        (CompletionReason.BOTH, "all stories complete and completion phrase detected"),
        (MaxIterations(), "maximum iterations reached"),
        (Cancelled(), "cancelled"),
        (FatalError("boom"), "fatal error: boom"),
        (
            CircuitBreakerTriggered(consecutive_failures=5),
            "circuit breaker triggered after 5 consecutive failures",
        ),
    ],
)
def test_reason_display(reason: object, expected: str) -> None:
    assert str(reason) == expected
