"""Exception hierarchy shared by the runner, the agent process and collaborators."""

from __future__ import annotations

from pathlib import Path


class WigglePuppyError(Exception):
    """Base class for every error raised by wigglepuppy."""


class ConfigError(WigglePuppyError):
    def __init__(self, message: str) -> None:
        super().__init__(f"configuration error: {message}")
        self.message = message


class NoPromptError(WigglePuppyError):
    def __init__(self) -> None:
        super().__init__(
            "no prompt provided: specify either a prompt file or inline prompt text"
        )


class PromptReadError(WigglePuppyError):
    def __init__(self, path: str | Path, cause: OSError | UnicodeDecodeError) -> None:
        super().__init__(f"failed to read prompt file '{path}': {cause}")
        self.path = Path(path)
        self.cause = cause


class ChecklistReadError(WigglePuppyError):
    def __init__(self, path: str | Path, cause: OSError) -> None:
        super().__init__(f"failed to read checklist file '{path}': {cause}")
        self.path = Path(path)
        self.cause = cause


class ChecklistParseError(WigglePuppyError):
    def __init__(self, path: str | Path, detail: str) -> None:
        super().__init__(f"failed to parse checklist JSON from '{path}': {detail}")
        self.path = Path(path)
        self.detail = detail


class ChecklistWriteError(WigglePuppyError):
    def __init__(self, path: str | Path, cause: OSError) -> None:
        super().__init__(f"failed to write checklist file '{path}': {cause}")
        self.path = Path(path)
        self.cause = cause


class AgentError(WigglePuppyError):
    """The agent process could not be spawned or waited for."""

    def __init__(self, message: str) -> None:
        super().__init__(f"agent execution failed: {message}")
        self.message = message


class AgentNotFoundError(WigglePuppyError):
    def __init__(self, command: str) -> None:
        super().__init__(f"agent command not found: '{command}'")
        self.command = command


class AgentErrorDetected(WigglePuppyError):
    """A configured error pattern showed up in the agent output."""

    def __init__(self, pattern: str, line: str) -> None:
        super().__init__(f"agent error detected: pattern '{pattern}' matched: {line}")
        self.pattern = pattern
        self.line = line


class AgentTimeoutError(WigglePuppyError):
    def __init__(self, timeout_secs: float) -> None:
        super().__init__(f"agent timed out after {timeout_secs:g}s")
        self.timeout_secs = timeout_secs


RETRYABLE_AGENT_ERRORS: tuple[type[WigglePuppyError], ...] = (
    AgentErrorDetected,
    AgentTimeoutError,
)
