"""Completion decisions, kept free of process I/O so they can be tested alone."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from .checklist import Checklist
from .errors import WigglePuppyError
from .events import CompletionReason
from .process.base import AgentResult

ChecklistLoader = Callable[[Path], Checklist]


@dataclass(frozen=True, slots=True)
class ChecklistState:
    """Outcome of one checklist load; ``error`` is set when loading failed."""

    complete: bool
    completed: int = 0
    total: int = 0
    next_story: str | None = None
    error: str | None = None

    @property
    def loaded(self) -> bool:
        return self.error is None


def phrase_detected(transcript: str, phrase: str) -> bool:
    """Literal, case-sensitive substring test with no trimming."""
    return phrase in transcript


def decide(phrase_found: bool, checklist_complete: bool) -> CompletionReason | None:
    if phrase_found and checklist_complete:
        return CompletionReason.BOTH
    if checklist_complete:
        return CompletionReason.ALL_STORIES_COMPLETE
    if phrase_found:
        return CompletionReason.COMPLETION_PHRASE_DETECTED
    return None


def evaluate(
    result: AgentResult, phrase: str, checklist_complete: bool
) -> CompletionReason | None:
    return decide(phrase_detected(result.combined, phrase), checklist_complete)


def checklist_state(path: Path, load: ChecklistLoader) -> ChecklistState:
    """Run ``load`` and summarise it; a failed load counts as incomplete."""
    try:
        checklist = load(path)
    except WigglePuppyError as exc:
        return ChecklistState(complete=False, error=str(exc))
    next_story = checklist.next_story()
    return ChecklistState(
        complete=checklist.is_complete(),
        completed=checklist.completed_count(),
        total=len(checklist.stories),
        next_story=next_story.id if next_story is not None else None,
    )
