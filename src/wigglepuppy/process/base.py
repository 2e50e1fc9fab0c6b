"""Agent process primitives: the captured result and the abstract runner."""

from __future__ import annotations

import abc
import logging
import re
import time
from dataclasses import dataclass

from wigglepuppy.events import EventSender

LOGGER = logging.getLogger(__name__)

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^(--?(?:password|token|secret|api[-_]?key)=)(.+)$",
        r"^((?:password|token|secret|api[-_]?key)=)(.+)$",
    )
]
_SECRET_FLAG = re.compile(r"^--?(?:password|token|secret|api[-_]?key)$", re.IGNORECASE)


@dataclass(slots=True)
class AgentResult:
    """Output captured from one agent invocation."""

    stdout: str
    stderr: str
    combined: str
    exit_code: int | None
    duration_secs: float

    @classmethod
    def empty(cls) -> AgentResult:
        """Placeholder for an iteration that ran out of retries."""
        return cls(stdout="", stderr="", combined="", exit_code=None, duration_secs=0.0)

    @property
    def is_empty(self) -> bool:
        return not self.combined and self.exit_code is None

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def line_count(self) -> int:
        return len(self.combined.splitlines())


class AgentProcess(abc.ABC):
    """Runs an agent once per call with a prompt and reports what it printed."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Command name used in logs and error messages."""

    @property
    def display(self) -> str:
        return self.name

    @abc.abstractmethod
    def run(self, prompt: str, events: EventSender) -> AgentResult:
        """Invoke the agent with ``prompt`` and return its captured output.

        Raises ``AgentNotFoundError`` or ``AgentError`` when the process cannot
        be started or reaped, and ``AgentErrorDetected`` or ``AgentTimeoutError``
        for the retryable failures.
        """

    def log_request(self, argv: list[str], *, prompt: str, timeout: float | None) -> None:
        LOGGER.info(
            "agent_request",
            extra={
                "agent": self.name,
                "argv": self.sanitize_args(argv[:-1]),
                "prompt_length": len(prompt),
                "timeout": timeout,
            },
        )

    def log_result(self, result: AgentResult) -> None:
        LOGGER.info(
            "agent_result",
            extra={
                "agent": self.name,
                "exit_code": result.exit_code,
                "duration_secs": round(result.duration_secs, 4),
                "stdout_length": len(result.stdout),
                "stderr_length": len(result.stderr),
            },
        )

    @staticmethod
    def monotonic_now() -> float:
        return time.monotonic()

    @staticmethod
    def sanitize_args(args: list[str]) -> list[str]:
        sanitized: list[str] = []
        hide_next = False
        for arg in args:
            if hide_next:
                sanitized.append("***")
                hide_next = False
                continue
            if _SECRET_FLAG.match(arg):
                hide_next = True
                sanitized.append(arg)
                continue
            for pattern in _SECRET_PATTERNS:
                arg = pattern.sub(r"\1***", arg)
            sanitized.append(arg)
        return sanitized
