"""Agent runner backed by a child process whose two pipes are drained concurrently."""

from __future__ import annotations

import locale
import logging
import queue
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from wigglepuppy.errors import (
    AgentError,
    AgentErrorDetected,
    AgentNotFoundError,
    AgentTimeoutError,
)
from wigglepuppy.events import AgentFinished, AgentOutput, Error, EventSender

from .base import AgentProcess, AgentResult

LOGGER = logging.getLogger(__name__)

READER_JOIN_TIMEOUT_SECS = 1.0


@dataclass(frozen=True, slots=True)
class _StreamItem:
    """One message from a reader thread: a line, a read error, or end of stream."""

    is_stderr: bool
    data: bytes | None = None
    error: str | None = None

    @property
    def closed(self) -> bool:
        return self.data is None and self.error is None


class SubprocessAgent(AgentProcess):
    """Spawns ``command *args prompt`` and supervises it until it exits.

    Both pipes are read by their own thread into one merge queue, so a child
    that floods one stream cannot stall the other. Every line is captured,
    forwarded as an ``AgentOutput`` event and scanned for error patterns.
    The timeout bounds only the wait for exit once both streams have closed;
    a child that keeps streaming is never cut off by it.
    """

    def __init__(
        self,
        command: str,
        args: tuple[str, ...] | list[str] = (),
        *,
        error_patterns: tuple[str, ...] | list[str] = (),
        timeout_secs: float = 1800.0,
        working_directory: str | Path | None = None,
    ) -> None:
        self.command = command
        self.args = tuple(args)
        self.error_patterns = tuple(error_patterns)
        self.timeout_secs = timeout_secs
        self.working_directory = working_directory

    @property
    def name(self) -> str:
        return self.command

    @property
    def display(self) -> str:
        return " ".join([self.command, *self.args])

    def run(self, prompt: str, events: EventSender) -> AgentResult:
        argv = [self.command, *self.args, prompt]
        self.log_request(argv, prompt=prompt, timeout=self.timeout_secs)
        started = self.monotonic_now()
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self.working_directory,
            )
        except FileNotFoundError as exc:
            # A missing cwd also surfaces as FileNotFoundError; only the
            # binary itself counts as "agent not found".
            if self.working_directory is not None and str(exc.filename) == str(
                self.working_directory
            ):
                raise AgentError(f"failed to spawn agent process: {exc}") from exc
            raise AgentNotFoundError(self.command) from exc
        except OSError as exc:
            raise AgentError(f"failed to spawn agent process: {exc}") from exc

        merged: queue.Queue[_StreamItem] = queue.Queue()
        readers = [
            _start_reader(process.stdout, is_stderr=False, sink=merged),
            _start_reader(process.stderr, is_stderr=True, sink=merged),
        ]
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        combined_lines: list[str] = []

        try:
            open_streams = len(readers)
            while open_streams:
                item = merged.get()
                if item.closed:
                    open_streams -= 1
                    continue
                if item.error is not None:
                    stream_name = "stderr" if item.is_stderr else "stdout"
                    events.send(Error(f"error reading {stream_name}: {item.error}"))
                    continue

                text = _decode_line(item.data or b"")
                (stderr_lines if item.is_stderr else stdout_lines).append(text)
                combined_lines.append(text)
                events.send(AgentOutput(text=text, is_stderr=item.is_stderr))

                pattern = self._match_error_pattern(text)
                if pattern is not None:
                    LOGGER.warning(
                        "agent_error_pattern_detected",
                        extra={"agent": self.name, "pattern": pattern},
                    )
                    self._kill(process, reason="error_pattern")
                    raise AgentErrorDetected(pattern, text)

            try:
                exit_code = process.wait(timeout=self.timeout_secs)
            except subprocess.TimeoutExpired as exc:
                self._kill(process, reason="timeout")
                raise AgentTimeoutError(self.timeout_secs) from exc
            except OSError as exc:
                self._kill(process, reason="wait_failed")
                raise AgentError(f"failed to wait for agent process: {exc}") from exc
        finally:
            _finish_readers(process, readers)

        duration_secs = self.monotonic_now() - started
        events.send(AgentFinished(exit_code=exit_code, duration_secs=duration_secs))
        result = AgentResult(
            stdout="\n".join(stdout_lines),
            stderr="\n".join(stderr_lines),
            combined="\n".join(combined_lines),
            exit_code=exit_code,
            duration_secs=duration_secs,
        )
        self.log_result(result)
        return result

    def _match_error_pattern(self, line: str) -> str | None:
        for pattern in self.error_patterns:
            if pattern in line:
                return pattern
        return None

    def _kill(self, process: subprocess.Popen[bytes], *, reason: str) -> None:
        LOGGER.info("agent_kill", extra={"agent": self.name, "pid": process.pid, "reason": reason})
        process.kill()
        process.wait()


def _start_reader(
    stream: IO[bytes] | None, *, is_stderr: bool, sink: queue.Queue[_StreamItem]
) -> threading.Thread:
    thread = threading.Thread(
        target=_pump_lines,
        args=(stream, is_stderr, sink),
        name=f"agent-{'stderr' if is_stderr else 'stdout'}-reader",
        daemon=True,
    )
    thread.start()
    return thread


def _pump_lines(
    stream: IO[bytes] | None, is_stderr: bool, sink: queue.Queue[_StreamItem]
) -> None:
    try:
        if stream is not None:
            for raw in iter(stream.readline, b""):
                sink.put(_StreamItem(is_stderr=is_stderr, data=raw))
    except (OSError, ValueError) as exc:
        sink.put(_StreamItem(is_stderr=is_stderr, error=str(exc)))
    finally:
        sink.put(_StreamItem(is_stderr=is_stderr))


def _finish_readers(process: subprocess.Popen[bytes], readers: list[threading.Thread]) -> None:
    for reader in readers:
        reader.join(timeout=READER_JOIN_TIMEOUT_SECS)
    if any(reader.is_alive() for reader in readers):
        # A grandchild can keep the pipe open after the agent is killed.
        LOGGER.warning("agent_reader_still_running", extra={"pid": process.pid})
        return
    for stream in (process.stdout, process.stderr):
        if stream is not None:
            stream.close()


def _decode_line(payload: bytes) -> str:
    line = payload[:-1] if payload.endswith(b"\n") else payload
    if line.endswith(b"\r"):
        line = line[:-1]
    for encoding in ("utf-8", locale.getpreferredencoding(False)):
        try:
            return line.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return line.decode("utf-8", errors="replace")
