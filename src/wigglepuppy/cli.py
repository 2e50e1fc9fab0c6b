"""Command-line interface for wigglepuppy."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TextIO, cast

from tqdm import tqdm

from . import events as ev
from .agent.loop import create_runner
from .agent.models import Outcome
from .config import RunConfig, log_level_from_env, split_agent_args
from .errors import ConfigError

LOGGER = logging.getLogger(__name__)


class CLIArgs(argparse.Namespace):
    prompt_file: str | None
    prompt: str | None
    agent: str | None
    agent_args: str | None
    max_iterations: int | None
    state: str | None
    completion: str | None
    delay: float | None
    verbose: bool
    no_auto_instruction: bool
    timeout: float | None
    error_patterns: list[str] | None
    max_retries: int | None
    initial_backoff: int | None
    backoff_multiplier: float | None
    circuit_breaker: int | None
    working_directory: str | None


def format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        minutes = int(seconds // 60)
        return f"{minutes}m {seconds % 60:.1f}s"
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    return f"{hours}h {minutes}m {seconds % 60:.0f}s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wigglepuppy",
        description="Run an AI agent in a loop until it signals completion",
    )
    prompt_group = parser.add_mutually_exclusive_group()
    prompt_group.add_argument(
        "prompt_file",
        nargs="?",
        help="Prompt file, re-read before every iteration",
    )
    prompt_group.add_argument("-p", "--prompt", help="Inline prompt text instead of a file")
    parser.add_argument("-a", "--agent", help="Agent command to run (default: claude)")
    parser.add_argument(
        "--agent-args",
        help="Arguments passed to the agent before the prompt (default: -p)",
    )
    parser.add_argument("-m", "--max-iterations", type=int, help="Iteration limit (default: 20)")
    parser.add_argument(
        "-s",
        "--state",
        help="Checklist JSON file; the run completes once every story passes",
    )
    parser.add_argument(
        "-c",
        "--completion",
        help="Completion phrase to look for (default: <promise>COMPLETE</promise>)",
    )
    parser.add_argument(
        "-d", "--delay", type=float, help="Seconds to wait between iterations (default: 2)"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Print agent output as it streams"
    )
    parser.add_argument(
        "--no-auto-instruction",
        action="store_true",
        help="Do not append the completion instruction to the prompt",
    )
    parser.add_argument(
        "--timeout", type=float, help="Per-invocation agent timeout in seconds (default: 1800)"
    )
    parser.add_argument(
        "-e",
        "--error-pattern",
        dest="error_patterns",
        action="append",
        help="Output substring that marks a failed attempt; may be repeated",
    )
    parser.add_argument("--max-retries", type=int, help="Retries per iteration (default: 3)")
    parser.add_argument(
        "--initial-backoff", type=int, help="First retry delay in seconds (default: 5)"
    )
    parser.add_argument(
        "--backoff-multiplier", type=float, help="Retry delay growth factor (default: 2.0)"
    )
    parser.add_argument(
        "--circuit-breaker",
        type=int,
        help="Stop after this many consecutive failed attempts; 0 disables (default: 5)",
    )
    parser.add_argument(
        "--cwd",
        dest="working_directory",
        help="Working directory for the agent process",
    )
    return parser


def config_from_args(args: CLIArgs) -> RunConfig:
    """Merge CLI options over ``RunConfig.from_env``; unset options fall through."""
    working_directory: Path | None = None
    if args.working_directory is not None:
        working_directory = Path(args.working_directory).expanduser().resolve()
        if not working_directory.is_dir():
            raise ConfigError(f"invalid working directory: {args.working_directory}")

    return RunConfig.from_env(
        agent_command=args.agent,
        agent_args=split_agent_args(args.agent_args) if args.agent_args is not None else None,
        max_iterations=args.max_iterations,
        delay_secs=args.delay,
        completion_phrase=args.completion,
        checklist_path=Path(args.state) if args.state else None,
        prompt_path=Path(args.prompt_file) if args.prompt_file else None,
        prompt_text=args.prompt,
        auto_completion_instruction=False if args.no_auto_instruction else None,
        agent_timeout_secs=args.timeout,
        error_patterns=tuple(args.error_patterns) if args.error_patterns else None,
        max_retries=args.max_retries,
        initial_backoff_secs=args.initial_backoff,
        backoff_multiplier=args.backoff_multiplier,
        circuit_breaker_threshold=args.circuit_breaker,
        working_directory=working_directory,
    )


class ProgressRenderer:
    """Turns runner events into terminal output with a tqdm iteration bar."""

    def __init__(self, *, verbose: bool = False, file: TextIO | None = None) -> None:
        self.verbose = verbose
        self.file = file or sys.stdout
        self._bar: tqdm | None = None

    def handle(self, event: ev.Event) -> None:
        if isinstance(event, ev.Started):
            self._bar = tqdm(
                total=event.max_iterations,
                desc="iterations",
                unit="it",
                file=self.file,
                leave=False,
            )
        elif isinstance(event, ev.IterationStarted):
            if self._bar is not None:
                self._bar.set_description(
                    f"iteration {event.iteration}/{event.max_iterations}"
                )
        elif isinstance(event, ev.AgentOutput):
            if self.verbose:
                prefix = "[stderr] " if event.is_stderr else ""
                self._write(f"{prefix}{event.text}")
        elif isinstance(event, ev.AgentFinished):
            code = "none" if event.exit_code is None else str(event.exit_code)
            self._write(
                f"agent finished in {format_duration(event.duration_secs)} (exit code: {code})"
            )
        elif isinstance(event, ev.RetryScheduled):
            self._write(
                f"retry {event.attempt}/{event.max_retries} scheduled in {event.backoff_secs}s"
            )
        elif isinstance(event, ev.ChecklistUpdated):
            if self._bar is not None:
                postfix = f"stories {event.completed}/{event.total}"
                if event.next_story is not None:
                    postfix += f", next {event.next_story}"
                self._bar.set_postfix_str(postfix)
        elif isinstance(event, ev.IterationFinished):
            if self._bar is not None:
                self._bar.update(1)
        elif isinstance(event, ev.Warning):
            self._write(f"warning: {event.message}")
        elif isinstance(event, ev.Error):
            self._write(f"error: {event.message}")
        elif isinstance(event, ev.Completed):
            self._close_bar()
            self._write(f"completed after {event.iterations} iteration(s): {event.reason}")
        elif isinstance(event, ev.Stopped):
            self._close_bar()
            self._write(f"stopped after {event.iterations} iteration(s): {event.reason}")

    def _write(self, text: str) -> None:
        tqdm.write(text, file=self.file)

    def _close_bar(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args(argv))
    logging.basicConfig(
        level=log_level_from_env(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        config = config_from_args(args)
        runner, events, handle = create_runner(config)
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        return 2

    renderer = ProgressRenderer(verbose=args.verbose)
    outcome_box: list[Outcome] = []
    failure_box: list[BaseException] = []

    def work() -> None:
        try:
            outcome_box.append(runner.run())
        except BaseException as exc:  # noqa: BLE001
            failure_box.append(exc)

    worker = threading.Thread(target=work, name="wigglepuppy-runner", daemon=True)
    previous_handler = _install_interrupt_handler(handle.cancel)
    try:
        worker.start()
        for event in events:
            renderer.handle(event)
        worker.join()
    finally:
        events.close()
        _restore_interrupt_handler(previous_handler)

    if failure_box:
        raise failure_box[0]
    outcome = outcome_box[0]
    LOGGER.debug("cli_outcome", extra={"outcome": str(outcome)})
    return 0 if outcome.is_completed else 1


def _install_interrupt_handler(cancel: Callable[[], None]) -> object:
    if threading.current_thread() is not threading.main_thread():
        return None

    def on_interrupt(_signum: int, _frame: object) -> None:
        tqdm.write("interrupt received; stopping after the current iteration", file=sys.stderr)
        cancel()

    return signal.signal(signal.SIGINT, on_interrupt)


def _restore_interrupt_handler(previous: object) -> None:
    if previous is None or threading.current_thread() is not threading.main_thread():
        return
    signal.signal(signal.SIGINT, previous)


if __name__ == "__main__":
    raise SystemExit(main())
