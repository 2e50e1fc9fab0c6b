from __future__ import annotations

import io
import os
import shlex
import sys
from pathlib import Path

import pytest

from wigglepuppy import cli
from wigglepuppy.events import (
    AgentOutput,
    ChecklistUpdated,
    CircuitBreakerTriggered,
    Completed,
    CompletionReason,
    IterationFinished,
    IterationStarted,
    RetryScheduled,
    Started,
    Stopped,
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for key in list(os.environ):
        if key.startswith("WIGGLE_PUPPY_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def write_agent(tmp_path: Path, body: str) -> str:
    script = tmp_path / "agent.py"
    script.write_text(body, encoding="utf-8")
    return shlex.quote(str(script))


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args([])

    assert args.prompt_file is None
    assert args.prompt is None
    assert args.agent is None
    assert args.max_iterations is None
    assert args.error_patterns is None
    assert args.working_directory is None
    assert args.verbose is False


def test_parser_collects_options() -> None:
    args = cli.build_parser().parse_args(
        [
            "PROMPT.md",
            "-a",
            "aider",
            "--agent-args",
            "--yes --no-auto-commits",
            "-m",
            "7",
            "-e",
            "rate limit",
            "-e",
            "overloaded",
            "--cwd",
            "./sandbox",
        ]
    )

    assert args.prompt_file == "PROMPT.md"
    assert args.agent == "aider"
    assert args.agent_args == "--yes --no-auto-commits"
    assert args.max_iterations == 7
    assert args.error_patterns == ["rate limit", "overloaded"]
    assert args.working_directory == "./sandbox"


def test_prompt_file_and_inline_prompt_are_exclusive(
    capsys: pytest.CaptureFixture[str],
) -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["PROMPT.md", "-p", "inline"])

    assert "not allowed with" in capsys.readouterr().err


def test_config_from_args_overrides_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("WIGGLE_PUPPY_AGENT", "codex")
    monkeypatch.setenv("WIGGLE_PUPPY_MAX_ITERATIONS", "4")
    args = cli.build_parser().parse_args(
        ["-p", "inline", "-m", "9", "--no-auto-instruction", "--cwd", str(tmp_path)]
    )

    config = cli.config_from_args(args)

    assert config.agent_command == "codex"
    assert config.max_iterations == 9
    assert config.prompt_text == "inline"
    assert config.auto_completion_instruction is False
    assert config.working_directory == tmp_path.resolve()


def test_main_rejects_invalid_cwd(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["-p", "hi", "--cwd", "./definitely-missing-dir"]) == 2

    assert "invalid working directory" in capsys.readouterr().err


def test_main_rejects_invalid_option_values(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["-p", "hi", "--backoff-multiplier", "0.5"]) == 2

    assert "configuration error" in capsys.readouterr().err


def test_main_completes_when_agent_prints_phrase(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    script = write_agent(tmp_path, "print('done <promise>COMPLETE</promise>')\n")

    exit_code = cli.main(
        ["-p", "hi", "-a", sys.executable, "--agent-args", script, "-d", "0", "-v"]
    )

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "done <promise>COMPLETE</promise>" in out
    assert "completed after 1 iteration(s): completion phrase detected" in out


def test_main_returns_one_when_stopped(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    script = write_agent(tmp_path, "print('still working')\n")

    exit_code = cli.main(
        ["-p", "hi", "-a", sys.executable, "--agent-args", script, "-d", "0", "-m", "2"]
    )

    assert exit_code == 1
    out = capsys.readouterr().out
    assert "still working" not in out
    assert "stopped after 2 iteration(s): maximum iterations reached" in out


def test_renderer_messages() -> None:
    buffer = io.StringIO()
    renderer = cli.ProgressRenderer(verbose=True, file=buffer)

    renderer.handle(Started(max_iterations=3))
    renderer.handle(IterationStarted(iteration=1, max_iterations=3))
    renderer.handle(AgentOutput(text="oops", is_stderr=True))
    renderer.handle(RetryScheduled(backoff_secs=5, attempt=1, max_retries=3))
    renderer.handle(IterationFinished(iteration=1, completion_detected=True))
    renderer.handle(Completed(iterations=1, reason=CompletionReason.BOTH))

    text = buffer.getvalue()
    assert "[stderr] oops" in text
    assert "retry 1/3 scheduled in 5s" in text
    assert (
        "completed after 1 iteration(s): all stories complete and completion phrase detected"
        in text
    )


def test_renderer_shows_next_story() -> None:
    buffer = io.StringIO()
    renderer = cli.ProgressRenderer(file=buffer)

    renderer.handle(Started(max_iterations=3))
    renderer.handle(ChecklistUpdated(completed=1, total=3, next_story="S2"))

    assert "stories 1/3, next S2" in buffer.getvalue()


def test_renderer_reports_stop_reason() -> None:
    buffer = io.StringIO()
    renderer = cli.ProgressRenderer(file=buffer)

    renderer.handle(Stopped(iterations=2, reason=CircuitBreakerTriggered(5)))

    assert "circuit breaker triggered after 5 consecutive failures" in buffer.getvalue()


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(5, "5.0s"), (90, "1m 30.0s"), (3725, "1h 2m 5s")],
)
def test_format_duration(seconds: float, expected: str) -> None:
    assert cli.format_duration(seconds) == expected
