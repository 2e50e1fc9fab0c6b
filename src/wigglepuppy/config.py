"""Run configuration backed by defaults, a JSON config file and the environment."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigError, NoPromptError, PromptReadError

DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_AGENT_ARGS: tuple[str, ...] = ("-p",)
DEFAULT_MAX_ITERATIONS = 20
DEFAULT_DELAY_SECS = 2.0
DEFAULT_COMPLETION_PHRASE = "<promise>COMPLETE</promise>"
DEFAULT_AGENT_TIMEOUT_SECS = 1800.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF_SECS = 5
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_CIRCUIT_BREAKER_THRESHOLD = 5

COMPLETION_INSTRUCTION_TEMPLATE = (
    "\n\nIMPORTANT: When you have completed ALL tasks in this prompt and there is"
    " nothing left to do, output exactly: {phrase}\n"
    "Do NOT output this phrase until every single task is fully complete."
    " Only output it once at the very end."
)

ENV_PREFIX = "WIGGLE_PUPPY_"


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Immutable settings for one supervised run."""

    agent_command: str = DEFAULT_AGENT_COMMAND
    agent_args: tuple[str, ...] = DEFAULT_AGENT_ARGS
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    delay_secs: float = DEFAULT_DELAY_SECS
    completion_phrase: str = DEFAULT_COMPLETION_PHRASE
    checklist_path: Path | None = None
    prompt_path: Path | None = None
    prompt_text: str | None = None
    auto_completion_instruction: bool = True
    agent_timeout_secs: float = DEFAULT_AGENT_TIMEOUT_SECS
    error_patterns: tuple[str, ...] = ()
    max_retries: int = DEFAULT_MAX_RETRIES
    initial_backoff_secs: int = DEFAULT_INITIAL_BACKOFF_SECS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    circuit_breaker_threshold: int = DEFAULT_CIRCUIT_BREAKER_THRESHOLD
    working_directory: Path | None = None

    def __post_init__(self) -> None:
        # Accept lists and plain strings from callers; store hashable tuples/Paths.
        object.__setattr__(self, "agent_args", tuple(self.agent_args))
        object.__setattr__(self, "error_patterns", tuple(self.error_patterns))
        for name in ("checklist_path", "prompt_path", "working_directory"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))

    def validate(self) -> RunConfig:
        """Raise ``ConfigError`` when a field is out of range; return self otherwise."""
        if not self.agent_command.strip():
            raise ConfigError("agent command must not be empty")
        if not self.completion_phrase:
            raise ConfigError("completion phrase must not be empty")
        if self.max_iterations < 0:
            raise ConfigError("max_iterations must not be negative")
        if self.delay_secs < 0:
            raise ConfigError("delay must not be negative")
        if self.agent_timeout_secs <= 0:
            raise ConfigError("agent timeout must be positive")
        if self.max_retries < 0:
            raise ConfigError("max_retries must not be negative")
        if self.initial_backoff_secs < 0:
            raise ConfigError("initial backoff must not be negative")
        if self.backoff_multiplier < 1.0:
            raise ConfigError("backoff multiplier must be at least 1.0")
        if self.circuit_breaker_threshold < 0:
            raise ConfigError("circuit breaker threshold must not be negative")
        if any(not pattern for pattern in self.error_patterns):
            raise ConfigError("error patterns must not be empty strings")
        return self

    def with_changes(self, **changes: object) -> RunConfig:
        """Return a validated copy with the given fields replaced."""
        try:
            updated = dataclasses.replace(self, **changes)
        except TypeError as exc:
            raise ConfigError(str(exc)) from exc
        return updated.validate()

    def agent_display(self) -> str:
        if not self.agent_args:
            return self.agent_command
        return f"{self.agent_command} {' '.join(self.agent_args)}"

    def has_prompt(self) -> bool:
        return self.prompt_path is not None or self.prompt_text is not None

    def resolve_prompt(self) -> str:
        """Return the current prompt, re-reading the prompt file on every call.

        ``prompt_path`` wins over ``prompt_text``. When the auto-completion
        instruction is enabled it is appended, naming the configured phrase.
        """
        if self.prompt_path is not None:
            try:
                base_prompt = self.prompt_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise PromptReadError(self.prompt_path, exc) from exc
        elif self.prompt_text is not None:
            base_prompt = self.prompt_text
        else:
            raise NoPromptError()

        if self.auto_completion_instruction:
            return base_prompt + COMPLETION_INSTRUCTION_TEMPLATE.format(
                phrase=self.completion_phrase
            )
        return base_prompt

    @classmethod
    def from_env(cls, **overrides: object) -> RunConfig:
        """Build a config from defaults, the config file, env vars, then overrides.

        Overrides whose value is ``None`` are ignored so callers can pass
        unset CLI options straight through.
        """
        file_config = _load_preferred_file_config()

        def pick(key: str) -> object | None:
            env_value = os.getenv(ENV_PREFIX + key.upper())
            if env_value is not None and env_value.strip():
                return env_value
            return file_config.get(key)

        agent_args_value = pick("agent_args")
        error_patterns_value = pick("error_patterns")
        values: dict[str, object] = {
            "agent_command": _to_optional_string(pick("agent")) or DEFAULT_AGENT_COMMAND,
            "agent_args": (
                _to_string_tuple(agent_args_value)
                if agent_args_value is not None
                else DEFAULT_AGENT_ARGS
            ),
            "max_iterations": _to_int(
                pick("max_iterations"), default=DEFAULT_MAX_ITERATIONS, minimum=0
            ),
            "delay_secs": _to_float(pick("delay"), default=DEFAULT_DELAY_SECS, minimum=0.0),
            "completion_phrase": (
                _to_optional_string(pick("completion_phrase")) or DEFAULT_COMPLETION_PHRASE
            ),
            "checklist_path": _to_optional_path(pick("checklist")),
            "prompt_path": _to_optional_path(pick("prompt_file")),
            "prompt_text": _to_optional_string(pick("prompt")),
            "auto_completion_instruction": _to_bool(
                pick("auto_completion_instruction"), default=True
            ),
            "agent_timeout_secs": _to_float(
                pick("timeout"), default=DEFAULT_AGENT_TIMEOUT_SECS, minimum=0.001
            ),
            "error_patterns": (
                _to_pattern_tuple(error_patterns_value)
                if error_patterns_value is not None
                else ()
            ),
            "max_retries": _to_int(pick("max_retries"), default=DEFAULT_MAX_RETRIES, minimum=0),
            "initial_backoff_secs": _to_int(
                pick("initial_backoff"), default=DEFAULT_INITIAL_BACKOFF_SECS, minimum=0
            ),
            "backoff_multiplier": _to_float(
                pick("backoff_multiplier"), default=DEFAULT_BACKOFF_MULTIPLIER, minimum=1.0
            ),
            "circuit_breaker_threshold": _to_int(
                pick("circuit_breaker"), default=DEFAULT_CIRCUIT_BREAKER_THRESHOLD, minimum=0
            ),
            "working_directory": _to_optional_path(pick("cwd")),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        try:
            config = cls(**values)
        except TypeError as exc:
            raise ConfigError(str(exc)) from exc
        return config.validate()


def split_agent_args(value: str) -> tuple[str, ...]:
    """Split a shell-style argument string such as ``"--yes --model 'x y'"``."""
    try:
        return tuple(shlex.split(value))
    except ValueError as exc:
        raise ConfigError(f"invalid agent arguments {value!r}: {exc}") from exc


def log_level_from_env() -> int:
    name = (os.getenv(f"{ENV_PREFIX}LOG_LEVEL") or "WARNING").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


def _to_bool(value: object, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _to_optional_path(value: object) -> Path | None:
    text = _to_optional_string(value)
    return Path(text).expanduser() if text else None


def _to_string_tuple(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return split_agent_args(value)
    if isinstance(value, list):
        return tuple(str(item) for item in value)
    return DEFAULT_AGENT_ARGS


def _to_pattern_tuple(value: object) -> tuple[str, ...]:
    # Env vars carry one pattern per line; the config file uses a JSON list.
    if isinstance(value, str):
        return tuple(line for line in value.splitlines() if line)
    if isinstance(value, list):
        return tuple(str(item) for item in value if str(item))
    return ()


def _to_int(value: object, *, default: int, minimum: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value >= minimum else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed >= minimum else default
    return default


def _to_float(value: object, *, default: float, minimum: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value >= minimum else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed >= minimum else default
    return default


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv(f"{ENV_PREFIX}CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("wigglepuppy.config.json")
    local_override = _load_file_config("wigglepuppy.config.local.json")
    return {**shared_config, **local_override}
