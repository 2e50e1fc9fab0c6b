"""Supervision loop that re-runs the agent until it completes or must stop."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from wigglepuppy import completion
from wigglepuppy.agent.models import Outcome, RunnerHandle
from wigglepuppy.checklist import Checklist
from wigglepuppy.config import RunConfig
from wigglepuppy.errors import RETRYABLE_AGENT_ERRORS, WigglePuppyError
from wigglepuppy.events import (
    DEFAULT_CHANNEL_SIZE,
    Cancelled,
    ChecklistUpdated,
    CircuitBreakerTriggered,
    CompletionReason,
    EventReceiver,
    EventSender,
    FatalError,
    IterationFinished,
    IterationStarted,
    MaxIterations,
    RetryScheduled,
    Started,
    StopReason,
    Warning,
    channel,
)
from wigglepuppy.process import AgentProcess, AgentResult, create_agent

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], None]


def calculate_backoff(attempt: int, initial_backoff_secs: int, multiplier: float) -> int:
    """Seconds to wait before retry ``attempt`` (1-based), truncated to an int."""
    return int(initial_backoff_secs * multiplier ** (attempt - 1))


class _StopRun(Exception):
    """Unwinds out of an iteration with the run's final outcome."""

    def __init__(self, outcome: Outcome) -> None:
        super().__init__(str(outcome))
        self.outcome = outcome


class Runner:
    """Runs the prompt/agent/check cycle for one configured run.

    Each iteration re-reads the prompt, checks the checklist, invokes the agent
    with retries and backoff, then decides between completing, stopping and
    looping again. Every decision is reported on the event channel and the
    terminal ``Completed``/``Stopped`` event is always the last one sent.
    """

    def __init__(
        self,
        config: RunConfig,
        events: EventSender,
        *,
        agent: AgentProcess | None = None,
        handle: RunnerHandle | None = None,
        load_checklist: completion.ChecklistLoader = Checklist.load,
        sleep: Sleep = time.sleep,
    ) -> None:
        self.config = config
        self.events = events
        self.agent = agent or create_agent(config)
        self.handle = handle or RunnerHandle()
        self.load_checklist = load_checklist
        self.sleep = sleep

    def run(self) -> Outcome:
        try:
            outcome = self._run_iterations()
        finally:
            self.events.close()
        LOGGER.info(
            "run_finished",
            extra={
                "outcome": outcome.kind,
                "iterations": outcome.iterations,
                "reason": str(outcome.reason),
            },
        )
        return outcome

    def _run_iterations(self) -> Outcome:
        config = self.config
        self.events.send(Started(max_iterations=config.max_iterations))
        LOGGER.info(
            "run_started",
            extra={"agent": self.agent.display, "max_iterations": config.max_iterations},
        )

        iteration = 0
        consecutive_failures = 0
        while True:
            if self.handle.is_cancelled():
                return self._stop(iteration, Cancelled())
            if iteration >= config.max_iterations:
                return self._stop(iteration, MaxIterations())

            iteration += 1
            self.events.send(
                IterationStarted(iteration=iteration, max_iterations=config.max_iterations)
            )

            try:
                prompt = config.resolve_prompt()
            except WigglePuppyError as exc:
                return self._stop(iteration, FatalError(f"failed to read prompt: {exc}"))

            if self._checklist_complete(stage="before"):
                # Only previously finished iterations count.
                return self._complete(iteration - 1, CompletionReason.ALL_STORIES_COMPLETE)

            try:
                result, consecutive_failures = self._attempt_with_retry(
                    prompt, iteration, consecutive_failures
                )
            except _StopRun as stop:
                return self._finish(stop.outcome)

            checklist_done = self._checklist_complete(stage="after")
            reason = completion.evaluate(result, config.completion_phrase, checklist_done)
            LOGGER.info(
                "iteration_finished",
                extra={
                    "iteration": iteration,
                    "empty_result": result.is_empty,
                    "completion": reason.value if reason is not None else None,
                },
            )
            self.events.send(
                IterationFinished(iteration=iteration, completion_detected=reason is not None)
            )
            if reason is not None:
                return self._complete(iteration, reason)

            if config.delay_secs > 0:
                self.handle.wait(config.delay_secs)
            if self.handle.is_cancelled():
                return self._stop(iteration, Cancelled())

    def _attempt_with_retry(
        self, prompt: str, iteration: int, consecutive_failures: int
    ) -> tuple[AgentResult, int]:
        config = self.config
        retry_attempt = 0
        while True:
            threshold = config.circuit_breaker_threshold
            if threshold > 0 and consecutive_failures >= threshold:
                raise _StopRun(
                    Outcome.stopped(iteration, CircuitBreakerTriggered(consecutive_failures))
                )

            try:
                result = self.agent.run(prompt, self.events)
            except RETRYABLE_AGENT_ERRORS as exc:
                retry_attempt += 1
                consecutive_failures += 1
                LOGGER.warning(
                    "agent_attempt_failed",
                    extra={
                        "iteration": iteration,
                        "attempt": retry_attempt,
                        "consecutive_failures": consecutive_failures,
                        "error": str(exc),
                    },
                )
                if retry_attempt > config.max_retries:
                    self.events.send(
                        Warning(
                            f"iteration {iteration}: giving up after "
                            f"{config.max_retries} retries: {exc}"
                        )
                    )
                    return AgentResult.empty(), consecutive_failures

                backoff = calculate_backoff(
                    retry_attempt, config.initial_backoff_secs, config.backoff_multiplier
                )
                self.events.send(
                    RetryScheduled(
                        backoff_secs=backoff,
                        attempt=retry_attempt,
                        max_retries=config.max_retries,
                    )
                )
                self.sleep(backoff)
            except WigglePuppyError as exc:
                raise _StopRun(
                    Outcome.stopped(iteration, FatalError(f"agent failed: {exc}"))
                ) from exc
            else:
                return result, 0

    def _checklist_complete(self, *, stage: str) -> bool:
        path = self.config.checklist_path
        if path is None:
            return False
        state = completion.checklist_state(path, self.load_checklist)
        if not state.loaded:
            suffix = " after agent" if stage == "after" else ""
            self.events.send(Warning(f"failed to read checklist{suffix}: {state.error}"))
            LOGGER.warning("checklist_load_failed", extra={"stage": stage, "error": state.error})
            return False
        self.events.send(
            ChecklistUpdated(
                completed=state.completed, total=state.total, next_story=state.next_story
            )
        )
        return state.complete

    def _complete(self, iterations: int, reason: CompletionReason) -> Outcome:
        return self._finish(Outcome.completed(iterations, reason))

    def _stop(self, iterations: int, reason: StopReason) -> Outcome:
        return self._finish(Outcome.stopped(iterations, reason))

    def _finish(self, outcome: Outcome) -> Outcome:
        self.events.send(outcome.to_event())
        return outcome


def create_runner(
    config: RunConfig,
    *,
    agent: AgentProcess | None = None,
    channel_size: int = DEFAULT_CHANNEL_SIZE,
) -> tuple[Runner, EventReceiver, RunnerHandle]:
    """Build a runner with a fresh event channel and cancellation handle."""
    sender, receiver = channel(channel_size)
    handle = RunnerHandle()
    runner = Runner(config.validate(), sender, agent=agent, handle=handle)
    return runner, receiver, handle
