"""Data models returned to callers of the supervision loop."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Literal

from wigglepuppy.events import Completed, CompletionReason, Stopped, StopReason

OutcomeKind = Literal["completed", "stopped"]


@dataclass(frozen=True, slots=True)
class Outcome:
    """How a run ended; mirrors the terminal event sent to the consumer."""

    kind: OutcomeKind
    iterations: int
    reason: CompletionReason | StopReason

    @classmethod
    def completed(cls, iterations: int, reason: CompletionReason) -> Outcome:
        return cls(kind="completed", iterations=iterations, reason=reason)

    @classmethod
    def stopped(cls, iterations: int, reason: StopReason) -> Outcome:
        return cls(kind="stopped", iterations=iterations, reason=reason)

    @property
    def is_completed(self) -> bool:
        return self.kind == "completed"

    @property
    def is_stopped(self) -> bool:
        return self.kind == "stopped"

    def to_event(self) -> Completed | Stopped:
        if isinstance(self.reason, CompletionReason):
            return Completed(iterations=self.iterations, reason=self.reason)
        return Stopped(iterations=self.iterations, reason=self.reason)

    def __str__(self) -> str:
        return f"{self.kind} after {self.iterations} iteration(s): {self.reason}"


class RunnerHandle:
    """Cancels a run from another thread. Copies share the same flag."""

    def __init__(self, flag: threading.Event | None = None) -> None:
        self._flag = flag or threading.Event()

    def cancel(self) -> None:
        self._flag.set()

    def is_cancelled(self) -> bool:
        return self._flag.is_set()

    def wait(self, timeout: float) -> bool:
        """Block for up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._flag.wait(timeout)

    def clone(self) -> RunnerHandle:
        return RunnerHandle(self._flag)
