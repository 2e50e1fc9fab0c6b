"""Agent process implementations."""

from wigglepuppy.config import RunConfig

from .base import AgentProcess, AgentResult
from .subprocess_agent import SubprocessAgent


def create_agent(config: RunConfig) -> AgentProcess:
    return SubprocessAgent(
        config.agent_command,
        config.agent_args,
        error_patterns=config.error_patterns,
        timeout_secs=config.agent_timeout_secs,
        working_directory=config.working_directory,
    )


__all__ = [
    "AgentProcess",
    "AgentResult",
    "SubprocessAgent",
    "create_agent",
]
