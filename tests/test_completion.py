from __future__ import annotations

from pathlib import Path

import pytest

from wigglepuppy.checklist import Checklist, Story
from wigglepuppy.completion import checklist_state, decide, evaluate, phrase_detected
from wigglepuppy.errors import ChecklistReadError
from wigglepuppy.events import CompletionReason
from wigglepuppy.process import AgentResult

PHRASE = "<promise>COMPLETE</promise>"


@pytest.mark.parametrize(
    ("phrase_found", "checklist_complete", "expected"),
    [
        (True, True, CompletionReason.BOTH),
        (False, True, CompletionReason.ALL_STORIES_COMPLETE),
        (True, False, CompletionReason.COMPLETION_PHRASE_DETECTED),
        (False, False, None),
    ],
)
def test_decide(
    phrase_found: bool, checklist_complete: bool, expected: CompletionReason | None
) -> None:
    assert decide(phrase_found, checklist_complete) is expected


def test_phrase_is_literal_case_sensitive_substring() -> None:
    assert phrase_detected(f"Done!\n{PHRASE}\n", PHRASE)
    assert phrase_detected(f"prefix {PHRASE} suffix", PHRASE)
    assert not phrase_detected(PHRASE.upper(), PHRASE)
    assert not phrase_detected("<promise> COMPLETE</promise>", PHRASE)
    assert not phrase_detected("", PHRASE)


def test_evaluate_uses_combined_transcript() -> None:
    result = AgentResult(
        stdout="working",
        stderr=PHRASE,
        combined=f"working\n{PHRASE}",
        exit_code=1,
        duration_secs=0.1,
    )

    assert evaluate(result, PHRASE, False) is CompletionReason.COMPLETION_PHRASE_DETECTED
    assert evaluate(AgentResult.empty(), PHRASE, False) is None
    assert evaluate(AgentResult.empty(), PHRASE, True) is CompletionReason.ALL_STORIES_COMPLETE
    assert AgentResult.empty().is_empty
    assert not result.is_empty


def test_checklist_state_summarises_loaded_checklist() -> None:
    def load(_path: Path) -> Checklist:
        return Checklist(
            name="demo", stories=[Story(id="a", passes=True), Story(id="b")]
        )

    state = checklist_state(Path("prd.json"), load)

    assert state.loaded
    assert state.complete is False
    assert (state.completed, state.total) == (1, 2)
    assert state.next_story == "b"


def test_checklist_state_reports_load_failure() -> None:
    def load(path: Path) -> Checklist:
        raise ChecklistReadError(path, FileNotFoundError("gone"))

    state = checklist_state(Path("prd.json"), load)

    assert not state.loaded
    assert state.complete is False
    assert "prd.json" in (state.error or "")
